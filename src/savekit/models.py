from __future__ import annotations

from datetime import datetime, UTC
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_size(size_bytes: int) -> str:
    """Human readable size: plain bytes below 1 KiB, then KB / MB with two decimals."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.2f} KB"
    return f"{size_bytes / (1024 * 1024):.2f} MB"


class Layout(str, Enum):
    """On-disk arrangement of saves under the root directory."""

    SINGLE_FILE = "single_file"
    FOLDER_BASED = "folder_based"


class SaveFormat(str, Enum):
    """Serialization format of data payloads."""

    JSON = "json"
    BINARY = "binary"
    MSGPACK = "msgpack"
    YAML = "yaml"


class EntryRecord(BaseModel):
    """Format and encryption used for one data entry of a folder save."""

    format: SaveFormat
    encrypted: bool = False
    modified_at: datetime = Field(default_factory=utcnow)


class SaveMetadata(BaseModel):
    """
    Descriptive and bookkeeping record kept for every save.

    Fields
    - save_id: identifier of the save the record belongs to.
    - name / description: display fields; name falls back to save_id.
    - layout / format / encrypted: settings active at the most recent save.
      Loads read the payload with these values instead of the engine's
      current ones, so a save stays readable after the global settings change.
    - created_at / modified_at: logical save times (UTC). They are preferred
      over filesystem times, which change when files are copied around.
    - entries: per data key settings of a folder save. Entries written
      before a format switch keep their own format here, so saving one key
      never makes its siblings unreadable.

    Notes
    - The record is always stored as JSON, whatever the data format is.
    """

    save_id: str
    name: str = ""
    description: str = ""
    layout: Layout = Layout.SINGLE_FILE
    format: SaveFormat = SaveFormat.JSON
    encrypted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)
    entries: Dict[str, EntryRecord] = Field(default_factory=dict)

    def model_post_init(self, __context) -> None:
        if not self.name:
            self.name = self.save_id

    @property
    def formatted_created_at(self) -> str:
        return self.created_at.strftime(TIMESTAMP_FORMAT)

    @property
    def formatted_modified_at(self) -> str:
        return self.modified_at.strftime(TIMESTAMP_FORMAT)

    def __str__(self) -> str:
        return (
            f"SaveId: {self.save_id}, Name: {self.name}, Layout: {self.layout.value}, "
            f"Format: {self.format.value}, Created: {self.formatted_created_at}"
        )


class SaveFileInfo(BaseModel):
    """Size and time descriptor of a save (or of one entry of a folder save)."""

    save_id: str
    data_key: Optional[str] = None
    path: Path
    size_bytes: int = 0
    created_at: datetime
    modified_at: datetime

    @property
    def formatted_size(self) -> str:
        return format_size(self.size_bytes)

    @property
    def formatted_created_at(self) -> str:
        return self.created_at.strftime(TIMESTAMP_FORMAT)

    @property
    def formatted_modified_at(self) -> str:
        return self.modified_at.strftime(TIMESTAMP_FORMAT)

    def __str__(self) -> str:
        return (
            f"SaveId: {self.save_id}, Created: {self.formatted_created_at}, "
            f"Modified: {self.formatted_modified_at}, Size: {self.formatted_size}"
        )


class EngineConfig(BaseModel):
    """Snapshot of a `SaveEngine`'s configuration.

    Frozen: changing settings goes through the engine's setters.
    """

    model_config = ConfigDict(frozen=True)

    root_path: Path
    layout: Layout = Layout.SINGLE_FILE
    format: SaveFormat = SaveFormat.JSON
    encryption_enabled: bool = False
    encryption_key: str = Field(default="", repr=False)
