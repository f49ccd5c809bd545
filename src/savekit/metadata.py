from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from . import cipher
from .codecs import JsonCodec
from .errors import CodecError, CryptoError
from .models import Layout, SaveMetadata
from .paths import metadata_path


logger = logging.getLogger(__name__)

_json = JsonCodec()


class MetadataStore:
    """
    Per-save metadata records, persisted next to the data and cached in memory.

    Usage
    - `load(save_id, passphrase=...)` returns the record or None. It probes the
      FOLDER_BASED location first, then the SINGLE_FILE one, so a record is
      found regardless of the layout it was written under.
    - `get_or_create(...)` loads or builds a fresh record (also when the stored
      one is unreadable), applying non-empty name/description overrides.
    - `persist(record, ...)` writes the record as JSON (never the active data
      format), encrypted when requested, and removes a stale copy left at the
      other layout's location.

    Raises
    - CodecError when a stored record is not valid metadata JSON.
    - CryptoError when an encrypted record cannot be decrypted.
    - OSError for filesystem failures; callers decide whether to convert them.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._cache: Dict[str, SaveMetadata] = {}

    @property
    def root(self) -> Path:
        return self._root

    @root.setter
    def root(self, value: Path) -> None:
        self._root = Path(value)
        self._cache.clear()

    def locate(self, save_id: str) -> Optional[Path]:
        for layout in (Layout.FOLDER_BASED, Layout.SINGLE_FILE):
            path = metadata_path(self._root, save_id, layout)
            if path.is_file():
                return path
        return None

    def load(self, save_id: str, *, passphrase: str) -> Optional[SaveMetadata]:
        cached = self._cache.get(save_id)
        if cached is not None:
            return cached.model_copy(deep=True)

        path = self.locate(save_id)
        if path is None:
            return None

        text = path.read_text(encoding="utf-8")
        if cipher.looks_encrypted(text):
            if not passphrase:
                raise CryptoError(f"Metadata of {save_id!r} is encrypted and no key is set")
            text = cipher.decrypt(text, passphrase)
        record = _json.deserialize(text, SaveMetadata)

        self._cache[save_id] = record
        return record.model_copy(deep=True)

    def get_or_create(
        self,
        save_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        *,
        passphrase: str,
    ) -> SaveMetadata:
        try:
            record = self.load(save_id, passphrase=passphrase)
        except (CodecError, CryptoError) as ex:
            logger.warning("Replacing unreadable metadata of %s: %s", save_id, ex)
            record = None
        if record is None:
            record = SaveMetadata(save_id=save_id, name=name or "", description=description or "")
            logger.debug("Created metadata for %s", save_id)
            return record
        if name:
            record.name = name
        if description:
            record.description = description
        return record

    def persist(self, record: SaveMetadata, *, encrypt: bool, passphrase: str) -> Path:
        text = _json.serialize(record)
        if encrypt:
            text = cipher.encrypt(text, passphrase)

        path = metadata_path(self._root, record.save_id, record.layout)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

        other = (
            Layout.SINGLE_FILE if record.layout is Layout.FOLDER_BASED else Layout.FOLDER_BASED
        )
        stale = metadata_path(self._root, record.save_id, other)
        if stale.is_file():
            stale.unlink()
            logger.debug("Removed stale %s metadata of %s", other.value, record.save_id)

        self._cache[record.save_id] = record.model_copy(deep=True)
        return path

    def delete(self, save_id: str) -> bool:
        """Remove every stored record of `save_id`; True if a file was removed."""
        self._cache.pop(save_id, None)
        removed = False
        for layout in (Layout.FOLDER_BASED, Layout.SINGLE_FILE):
            path = metadata_path(self._root, save_id, layout)
            if path.is_file():
                path.unlink()
                removed = True
        return removed

    def forget(self, save_id: str) -> None:
        self._cache.pop(save_id, None)

    def clear(self) -> None:
        self._cache.clear()
