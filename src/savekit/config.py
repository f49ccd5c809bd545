"""
Settings object for configuring a `SaveEngine` from the outside.

The engine never persists its own configuration; front-ends keep a
`SaveSettings` (environment, JSON file, or captured from a live engine)
and push it into an engine with `apply`.

Environment variables
- `SAVEKIT_DIR`:        save root directory
- `SAVEKIT_LAYOUT`:     single_file | folder_based
- `SAVEKIT_FORMAT`:     json | binary | msgpack | yaml
- `SAVEKIT_ENCRYPTION`: 1/true/yes/on to enable encryption
- `SAVEKIT_KEY`:        encryption passphrase
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from .engine import ENV_SAVE_DIR, SaveEngine
from .errors import ConfigurationError
from .models import Layout, SaveFormat


logger = logging.getLogger(__name__)

ENV_DIR = ENV_SAVE_DIR
ENV_LAYOUT = "SAVEKIT_LAYOUT"
ENV_FORMAT = "SAVEKIT_FORMAT"
ENV_ENCRYPTION = "SAVEKIT_ENCRYPTION"
ENV_KEY = "SAVEKIT_KEY"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigurationError(f"Invalid boolean for {name}: {raw!r}")


class SaveSettings(BaseModel):
    """
    Front-end configuration of the save engine.

    Fields
    - save_path: root directory; empty means the engine default.
    - layout / format: engine layout and data format.
    - use_encryption / encryption_key: encryption toggle and passphrase;
      an empty key keeps whatever key the engine already holds.
    """

    save_path: str = ""
    layout: Layout = Layout.SINGLE_FILE
    format: SaveFormat = SaveFormat.JSON
    use_encryption: bool = False
    encryption_key: str = Field(default="", repr=False)

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls) -> "SaveSettings":
        raw = {
            "save_path": _getenv(ENV_DIR, ""),
            "layout": _getenv(ENV_LAYOUT, Layout.SINGLE_FILE.value),
            "format": _getenv(ENV_FORMAT, SaveFormat.JSON.value),
            "use_encryption": _parse_bool(ENV_ENCRYPTION, _getenv(ENV_ENCRYPTION, "false")),
            "encryption_key": _getenv(ENV_KEY, ""),
        }
        try:
            return cls.model_validate(raw)
        except ValidationError as ex:
            raise ConfigurationError(f"Invalid save settings in environment: {ex}") from ex

    @classmethod
    def load(cls, path: os.PathLike[str] | str) -> "SaveSettings":
        """Read settings from a JSON file; a missing file yields defaults."""
        p = Path(path)
        if not p.exists():
            logger.warning("Settings file %s not found, using defaults", p)
            return cls()
        try:
            return cls.model_validate(json.loads(p.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as ex:
            raise ConfigurationError(f"Invalid settings file {p}") from ex

    @classmethod
    def from_engine(cls, engine: SaveEngine) -> "SaveSettings":
        config = engine.config
        return cls(
            save_path=str(config.root_path),
            layout=config.layout,
            format=config.format,
            use_encryption=config.encryption_enabled,
            encryption_key=config.encryption_key,
        )

    def dump(self, path: os.PathLike[str] | str) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    # -------- Application --------
    def apply(self, engine: SaveEngine) -> SaveEngine:
        """Push these settings into `engine` through its setters."""
        if self.save_path:
            engine.set_root_path(self.save_path)
        else:
            engine.initialize()
        engine.set_layout(self.layout)
        engine.set_codec(self.format)
        engine.set_encryption(self.use_encryption, self.encryption_key or None)
        logger.info("Applied save settings (%s, %s)", self.layout.value, self.format.value)
        return engine

    def create_engine(self) -> SaveEngine:
        return self.apply(SaveEngine())
