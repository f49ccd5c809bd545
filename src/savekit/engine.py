from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel

from . import cipher
from .cache import DataCache
from .codecs import Codec, get_codec
from .errors import ConfigurationError, SaveKitError
from .metadata import MetadataStore
from .models import EngineConfig, EntryRecord, Layout, SaveFileInfo, SaveFormat, SaveMetadata, utcnow
from .paths import (
    DEFAULT_DATA_KEY,
    file_info,
    folder_info,
    is_metadata_file,
    iter_data_files,
    save_file_path,
    save_folder_path,
    validate_save_id,
)


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Environment variable naming the default save root
ENV_SAVE_DIR = "SAVEKIT_DIR"
DEFAULT_SAVE_DIR = "saves"
DEFAULT_ENCRYPTION_KEY = "savekit-default-key"


def _default_root() -> Path:
    base = os.environ.get(ENV_SAVE_DIR)
    return Path(base) if base else Path(DEFAULT_SAVE_DIR)


def _coerce_layout(layout: Layout | str) -> Layout:
    try:
        return Layout(layout)
    except ValueError as ex:
        raise ConfigurationError(f"Unsupported layout: {layout!r}") from ex


class SaveEngine:
    """
    Filesystem persistence for pydantic models with pluggable formats.

    Usage
    - `engine = SaveEngine("/path/to/saves")`; the root is created on first use.
    - Configure with `set_root_path`, `set_layout`, `set_codec`, `set_encryption`.
    - `save(save_id, value, data_key=...)` / `load(save_id, Model, data_key=...)`,
      plus `delete`, `delete_all`, `list`, `list_data_keys`, `get_info`.

    Layouts
    - SINGLE_FILE: one payload file per save; `data_key` is ignored.
    - FOLDER_BASED: one directory per save, one file per data key.

    Every save records its layout, format and encryption state in metadata.
    Loads, deletes and info lookups resolve paths with those recorded values,
    so a save stays reachable after the engine settings change. The engine
    configuration itself is never touched by those calls.

    Error policy
    - ConfigurationError (bad root, save id, data key, layout or format) raises.
    - Missing saves give None / False / [] and a warning.
    - `load` raises CodecError / CryptoError on undecodable payloads.
    - `save` and other data calls log filesystem and encoding failures and
      report them as False / None / [] instead.

    Not thread-safe: configuration and caches are plain attributes, callers
    sharing an engine across threads must serialize access themselves.
    """

    def __init__(
        self,
        root_path: Optional[os.PathLike[str] | str] = None,
        *,
        layout: Layout | str = Layout.SINGLE_FILE,
        format: SaveFormat | str = SaveFormat.JSON,
        encryption_enabled: bool = False,
        encryption_key: Optional[str] = None,
    ) -> None:
        self._root: Optional[Path] = Path(root_path) if root_path else None
        self._layout = _coerce_layout(layout)
        self._codec: Codec = get_codec(format)
        self._encryption_enabled = bool(encryption_enabled)
        self._encryption_key = encryption_key or DEFAULT_ENCRYPTION_KEY
        self._initialized = False
        self._metadata = MetadataStore(self._root or Path("."))
        self._cache = DataCache()

    @classmethod
    def from_config(cls, config: EngineConfig) -> "SaveEngine":
        return cls(
            config.root_path,
            layout=config.layout,
            format=config.format,
            encryption_enabled=config.encryption_enabled,
            encryption_key=config.encryption_key or None,
        )

    # -------- Configuration --------
    def initialize(self, root_path: Optional[os.PathLike[str] | str] = None) -> None:
        """Create the root directory on first use. Later calls are no-ops."""
        if self._initialized:
            return
        root = Path(root_path) if root_path else (self._root or _default_root())
        self._apply_root(root)
        self._initialized = True
        logger.info("Save engine initialized at %s", root)

    def set_root_path(self, path: os.PathLike[str] | str) -> None:
        if not path or not str(path).strip():
            raise ConfigurationError("Save root path must not be empty")
        self._apply_root(Path(path))
        self._initialized = True
        logger.info("Save root changed to %s", self._root)

    def set_layout(self, layout: Layout | str) -> None:
        self._layout = _coerce_layout(layout)
        self._ensure_root()
        logger.info("Save layout set to %s", self._layout.value)

    def set_codec(self, fmt: SaveFormat | str) -> None:
        self._codec = get_codec(fmt)
        self._ensure_root()
        logger.info("Save format set to %s", self._codec.format.value)

    def set_encryption(self, enabled: bool, key: Optional[str] = None) -> None:
        """Toggle encryption. A non-empty `key` replaces the held passphrase;
        it is kept when encryption is later disabled so older saves stay readable."""
        self._encryption_enabled = bool(enabled)
        if key:
            self._encryption_key = key
        self._ensure_root()
        logger.info("Save encryption %s", "enabled" if enabled else "disabled")

    def _apply_root(self, root: Path) -> None:
        root.mkdir(parents=True, exist_ok=True)
        self._root = root
        self._metadata.root = root
        self._cache.clear()

    def _ensure_root(self) -> Path:
        if not self._initialized:
            self.initialize()
        assert self._root is not None
        if not self._root.is_dir():
            self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    @property
    def config(self) -> EngineConfig:
        return EngineConfig(
            root_path=self._root or _default_root(),
            layout=self._layout,
            format=self._codec.format,
            encryption_enabled=self._encryption_enabled,
            encryption_key=self._encryption_key,
        )

    @property
    def root_path(self) -> Path:
        return self._ensure_root()

    @property
    def layout(self) -> Layout:
        return self._layout

    @property
    def format(self) -> SaveFormat:
        return self._codec.format

    @property
    def encryption_enabled(self) -> bool:
        return self._encryption_enabled

    # -------- Metadata helpers --------
    def _read_metadata(self, save_id: str) -> Optional[SaveMetadata]:
        """Metadata for lookups that must not raise; unreadable records count as absent."""
        try:
            return self._metadata.load(save_id, passphrase=self._encryption_key)
        except (SaveKitError, OSError) as ex:
            logger.warning("Ignoring unreadable metadata of %s: %s", save_id, ex)
            return None

    def _effective(
        self, record: Optional[SaveMetadata], data_key: str
    ) -> Tuple[Layout, SaveFormat, bool]:
        """Layout, format and encryption a stored payload was written with."""
        if record is None:
            return self._layout, self._codec.format, self._encryption_enabled
        entry = record.entries.get(data_key) if record.layout is Layout.FOLDER_BASED else None
        if entry is not None:
            return record.layout, entry.format, entry.encrypted
        return record.layout, record.format, record.encrypted

    def get_metadata(self, save_id: str) -> Optional[SaveMetadata]:
        self._ensure_root()
        validate_save_id(save_id)
        return self._read_metadata(save_id)

    # -------- Data operations --------
    def save(
        self,
        save_id: str,
        value: BaseModel,
        *,
        data_key: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> bool:
        """Write `value` under the current settings; True on success.

        Invalid ids and directory creation failures raise; every other
        failure is logged and reported as False.
        """
        root = self._ensure_root()
        layout, codec, encrypted = self._layout, self._codec, self._encryption_enabled
        key = data_key or DEFAULT_DATA_KEY
        path = save_file_path(root, save_id, layout, codec.format, key)
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            payload = codec.serialize(value)
            if encrypted:
                payload = cipher.encrypt(payload, self._encryption_key)

            previous = self._read_metadata(save_id)
            record = self._metadata.get_or_create(
                save_id, name, description, passphrase=self._encryption_key
            )
            now = utcnow()
            record.modified_at = now
            record.layout = layout
            record.format = codec.format
            record.encrypted = encrypted
            if layout is Layout.FOLDER_BASED:
                record.entries[key] = EntryRecord(
                    format=codec.format, encrypted=encrypted, modified_at=now
                )
            else:
                record.entries = {}

            self._metadata.persist(record, encrypt=encrypted, passphrase=self._encryption_key)
            path.write_text(payload, encoding="utf-8")
            self._remove_stale_payload(root, previous, path, key)
            if previous is not None and previous.layout is not layout:
                self._remove_payloads(root, save_id, (previous.layout,))
        except (SaveKitError, OSError) as ex:
            logger.error("Failed to save %s: %s", save_id, ex, exc_info=True)
            return False

        if layout is Layout.FOLDER_BASED:
            self._cache.put(save_id, key, value)
        else:
            self._cache.invalidate(save_id)
        logger.info("Saved %s (%s, %s)", save_id, layout.value, codec.format.value)
        return True

    def _remove_stale_payload(
        self, root: Path, previous: Optional[SaveMetadata], written: Path, data_key: str
    ) -> None:
        """Drop the copy of the same payload left under another extension."""
        if previous is None:
            return
        layout, fmt, _ = self._effective(previous, data_key)
        if layout is not self._layout:
            return
        old = save_file_path(root, previous.save_id, layout, fmt, data_key)
        if old != written and old.is_file():
            old.unlink()
            logger.debug("Removed stale payload %s", old)

    def load(
        self, save_id: str, model: Type[M], *, data_key: Optional[str] = None
    ) -> Optional[M]:
        """Read one payload back as `model`; None if it does not exist.

        The path and decoding follow the settings recorded in the save's
        metadata (current engine settings when there is none).

        Raises CodecError / CryptoError when the payload cannot be decoded.
        """
        root = self._ensure_root()
        validate_save_id(save_id)
        key = data_key or DEFAULT_DATA_KEY

        record = self._metadata.load(save_id, passphrase=self._encryption_key)
        layout, fmt, encrypted = self._effective(record, key)

        if layout is Layout.FOLDER_BASED:
            cached = self._cache.get(save_id, key, model)
            if cached is not None:
                return cached

        path = save_file_path(root, save_id, layout, fmt, key)
        try:
            payload = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Save not found: %s (%s)", save_id, path.name)
            return None
        except OSError as ex:
            logger.error("Failed to read %s: %s", path, ex, exc_info=True)
            return None

        if encrypted:
            payload = cipher.decrypt(payload, self._encryption_key)
        value = get_codec(fmt).deserialize(payload, model)

        if layout is Layout.FOLDER_BASED:
            self._cache.put(save_id, key, value)
        logger.debug("Loaded %s from %s", save_id, path)
        return value

    def exists(self, save_id: str, data_key: Optional[str] = None) -> bool:
        """Whether the save (or, for folder saves, the given entry) exists on disk."""
        root = self._ensure_root()
        record = self._read_metadata(validate_save_id(save_id))
        key = data_key or DEFAULT_DATA_KEY
        layout, fmt, _ = self._effective(record, key)
        if layout is Layout.FOLDER_BASED and data_key is None:
            return save_folder_path(root, save_id).is_dir()
        return save_file_path(root, save_id, layout, fmt, key).is_file()

    def delete(self, save_id: str, data_key: Optional[str] = None) -> bool:
        """Delete a whole save (`data_key=None`) or a single folder entry.

        Missing targets are reported as False with a warning.
        """
        root = self._ensure_root()
        validate_save_id(save_id)
        record = self._read_metadata(save_id)
        layout, fmt, _ = self._effective(record, data_key or DEFAULT_DATA_KEY)
        # data_key only narrows the delete for folder saves
        whole = layout is Layout.SINGLE_FILE or data_key is None

        try:
            if not whole:
                return self._delete_entry(root, record, save_id, data_key, fmt)

            # both layouts: a save may have been written under either
            removed = self._remove_payloads(
                root, save_id, (Layout.FOLDER_BASED, Layout.SINGLE_FILE)
            )
            self._metadata.delete(save_id)
            if not removed:
                logger.warning("Save to delete does not exist: %s", save_id)
                return False
        except OSError as ex:
            logger.error("Failed to delete %s: %s", save_id, ex, exc_info=True)
            return False
        finally:
            self._cache.invalidate(save_id, None if whole else data_key)
            if whole:
                self._metadata.forget(save_id)

        logger.info("Deleted save %s", save_id)
        return True

    def _remove_payloads(
        self, root: Path, save_id: str, layouts: Tuple[Layout, ...]
    ) -> bool:
        """Remove every payload of `save_id` stored under `layouts`; True if any was found."""
        removed = False
        for layout in layouts:
            if layout is Layout.FOLDER_BASED:
                folder = save_folder_path(root, save_id)
                if folder.is_dir():
                    shutil.rmtree(folder)
                    removed = True
                continue
            for fmt in SaveFormat:
                path = save_file_path(root, save_id, Layout.SINGLE_FILE, fmt)
                if path.is_file():
                    path.unlink()
                    removed = True
        if removed:
            logger.debug(
                "Removed %s payloads of %s", "/".join(lay.value for lay in layouts), save_id
            )
        return removed

    def _delete_entry(
        self,
        root: Path,
        record: Optional[SaveMetadata],
        save_id: str,
        data_key: str,
        fmt: SaveFormat,
    ) -> bool:
        path = save_file_path(root, save_id, Layout.FOLDER_BASED, fmt, data_key)
        if not path.is_file():
            logger.warning("Data entry to delete does not exist: %s/%s", save_id, data_key)
            return False
        path.unlink()
        if record is not None and record.entries.pop(data_key, None) is not None:
            try:
                self._metadata.persist(
                    record, encrypt=record.encrypted, passphrase=self._encryption_key
                )
            except SaveKitError as ex:
                logger.error("Failed to update metadata of %s: %s", save_id, ex)
        logger.info("Deleted data entry %s/%s", save_id, data_key)
        return True

    def delete_all(self) -> int:
        """Remove every save of the current layout under the root.

        Best-effort: failures are logged and the sweep continues. Returns the
        number of saves removed, so a second call returns 0.
        """
        root = self._ensure_root()
        removed = 0
        try:
            children = list(root.iterdir())
        except OSError as ex:
            logger.error("Failed to list %s: %s", root, ex, exc_info=True)
            children = []

        for child in children:
            try:
                if self._layout is Layout.FOLDER_BASED and child.is_dir():
                    shutil.rmtree(child)
                    removed += 1
                elif self._layout is Layout.SINGLE_FILE and child.is_file():
                    child.unlink()
                    if not is_metadata_file(child):
                        removed += 1
            except OSError as ex:
                logger.error("Failed to delete %s: %s", child, ex)

        self._cache.clear()
        self._metadata.clear()
        logger.info("Deleted %d saves from %s", removed, root)
        return removed

    def list(self) -> List[str]:
        """Save ids under the root for the current layout, in filesystem order."""
        root = self._ensure_root()
        out: List[str] = []
        try:
            for child in root.iterdir():
                if self._layout is Layout.FOLDER_BASED:
                    if child.is_dir():
                        out.append(child.name)
                elif child.is_file() and not is_metadata_file(child) and child.stem not in out:
                    out.append(child.stem)
        except OSError as ex:
            logger.error("Failed to list saves in %s: %s", root, ex, exc_info=True)
            return []
        return out

    def list_data_keys(self, save_id: str) -> List[str]:
        """Data keys of a folder save, the reserved metadata key excluded."""
        root = self._ensure_root()
        if self._layout is not Layout.FOLDER_BASED:
            logger.warning("list_data_keys is only meaningful with the folder_based layout")
            return []
        folder = save_folder_path(root, save_id)
        if not folder.is_dir():
            logger.warning("Save not found: %s", save_id)
            return []
        keys: List[str] = []
        try:
            for entry in iter_data_files(folder):
                if entry.stem not in keys:
                    keys.append(entry.stem)
        except OSError as ex:
            logger.error("Failed to list data keys of %s: %s", save_id, ex, exc_info=True)
            return []
        return keys

    def get_info(self, save_id: str, data_key: Optional[str] = None) -> Optional[SaveFileInfo]:
        """Size and time info of a save or one of its entries.

        Timestamps come from metadata when present. For a folder save with no
        `data_key`, size and write time are aggregated over all entries.
        """
        root = self._ensure_root()
        validate_save_id(save_id)
        record = self._read_metadata(save_id)
        key = data_key or DEFAULT_DATA_KEY
        layout, fmt, _ = self._effective(record, key)

        try:
            if layout is Layout.FOLDER_BASED and data_key is None:
                folder = save_folder_path(root, save_id)
                if not folder.is_dir():
                    logger.warning("Save not found: %s", save_id)
                    return None
                info = folder_info(folder, save_id)
            else:
                path = save_file_path(root, save_id, layout, fmt, key)
                if not path.is_file():
                    logger.warning("Save not found: %s", save_id)
                    return None
                info = file_info(
                    path, save_id, key if layout is Layout.FOLDER_BASED else None
                )
        except OSError as ex:
            logger.error("Failed to read info of %s: %s", save_id, ex, exc_info=True)
            return None

        if record is None:
            return info
        modified = record.modified_at
        entry = record.entries.get(key) if data_key is not None else None
        if entry is not None:
            modified = entry.modified_at
        return info.model_copy(update={"created_at": record.created_at, "modified_at": modified})
