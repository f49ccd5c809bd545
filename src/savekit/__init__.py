"""
File-based save persistence for pydantic models.

Saves are written as one file each (single_file layout) or as a directory
of keyed entries (folder_based layout), in JSON, pickle, MessagePack or
YAML, optionally AES-encrypted under a passphrase. Every save carries a
JSON metadata record describing how it was written.
"""

from .config import SaveSettings
from .engine import SaveEngine
from .errors import CodecError, ConfigurationError, CryptoError, SaveKitError
from .models import EngineConfig, Layout, SaveFileInfo, SaveFormat, SaveMetadata

__all__ = [
    "SaveEngine",
    "SaveSettings",
    "EngineConfig",
    "Layout",
    "SaveFormat",
    "SaveMetadata",
    "SaveFileInfo",
    "SaveKitError",
    "ConfigurationError",
    "CodecError",
    "CryptoError",
]
