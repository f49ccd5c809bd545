"""
Path resolution and file descriptors for both save layouts.

Pure helpers over explicit arguments: nothing here reads engine state, so
the engine can resolve paths with the settings recorded for a save
instead of its current ones.

Layout rules (extension comes from the format alone)
- SINGLE_FILE:  {root}/{save_id}{ext}, metadata in {root}/{save_id}_metadata.json
- FOLDER_BASED: {root}/{save_id}/{data_key}{ext}, metadata in {root}/{save_id}/_metadata.json
"""

from __future__ import annotations

from datetime import datetime, UTC
from pathlib import Path
from typing import Iterator, Optional

from .codecs import JSON_EXTENSION, extension_for
from .errors import ConfigurationError
from .models import Layout, SaveFileInfo, SaveFormat


DEFAULT_DATA_KEY = "main"
METADATA_KEY = "_metadata"
SINGLE_FILE_METADATA_SUFFIX = "_metadata"


def _validate_name(value: str, what: str) -> str:
    if not value or not value.strip():
        raise ConfigurationError(f"{what} must not be empty")
    if value in (".", "..") or "/" in value or "\\" in value or "\x00" in value:
        raise ConfigurationError(f"{what} is not a safe file name: {value!r}")
    return value


def validate_save_id(save_id: str) -> str:
    _validate_name(save_id, "save id")
    if save_id.endswith(SINGLE_FILE_METADATA_SUFFIX):
        raise ConfigurationError(
            f"save id may not end with {SINGLE_FILE_METADATA_SUFFIX!r}: {save_id!r}"
        )
    return save_id


def validate_data_key(data_key: str) -> str:
    _validate_name(data_key, "data key")
    if data_key == METADATA_KEY:
        raise ConfigurationError(f"data key {METADATA_KEY!r} is reserved")
    return data_key


def save_folder_path(root: Path, save_id: str) -> Path:
    return Path(root) / validate_save_id(save_id)


def save_file_path(
    root: Path,
    save_id: str,
    layout: Layout,
    fmt: SaveFormat,
    data_key: Optional[str] = None,
) -> Path:
    """Location of one data payload. `data_key` only matters for FOLDER_BASED."""
    ext = extension_for(fmt)
    if layout is Layout.FOLDER_BASED:
        key = validate_data_key(data_key or DEFAULT_DATA_KEY)
        return save_folder_path(root, save_id) / f"{key}{ext}"
    return Path(root) / f"{validate_save_id(save_id)}{ext}"


def metadata_path(root: Path, save_id: str, layout: Layout) -> Path:
    if layout is Layout.FOLDER_BASED:
        return save_folder_path(root, save_id) / f"{METADATA_KEY}{JSON_EXTENSION}"
    return Path(root) / f"{validate_save_id(save_id)}{SINGLE_FILE_METADATA_SUFFIX}{JSON_EXTENSION}"


def is_metadata_file(path: Path) -> bool:
    """True for both the folder (`_metadata`) and single-file (`*_metadata`) record files."""
    return path.stem == METADATA_KEY or path.stem.endswith(SINGLE_FILE_METADATA_SUFFIX)


def iter_data_files(folder: Path) -> Iterator[Path]:
    """Data entry files of a folder save, metadata excluded."""
    for child in folder.iterdir():
        if child.is_file() and child.stem != METADATA_KEY:
            yield child


def _created(stat_result) -> datetime:
    # st_birthtime is not available everywhere; ctime is the closest fallback
    ts = getattr(stat_result, "st_birthtime", None) or stat_result.st_ctime
    return datetime.fromtimestamp(ts, UTC)


def file_info(path: Path, save_id: str, data_key: Optional[str] = None) -> SaveFileInfo:
    """Descriptor of a single file. Raises FileNotFoundError if it is missing."""
    st = path.stat()
    return SaveFileInfo(
        save_id=save_id,
        data_key=data_key,
        path=path,
        size_bytes=st.st_size,
        created_at=_created(st),
        modified_at=datetime.fromtimestamp(st.st_mtime, UTC),
    )


def folder_info(folder: Path, save_id: str) -> SaveFileInfo:
    """Aggregate descriptor of a folder save: total size and latest write of its entries."""
    st = folder.stat()
    total = 0
    latest: Optional[datetime] = None
    for entry in iter_data_files(folder):
        est = entry.stat()
        total += est.st_size
        written = datetime.fromtimestamp(est.st_mtime, UTC)
        if latest is None or written > latest:
            latest = written
    return SaveFileInfo(
        save_id=save_id,
        path=folder,
        size_bytes=total,
        created_at=_created(st),
        modified_at=latest or datetime.fromtimestamp(st.st_mtime, UTC),
    )
