from __future__ import annotations

import base64
import binascii
import pickle
from typing import Any, Dict, Protocol, Type, TypeVar

import msgpack
import yaml
from pydantic import BaseModel, ValidationError

from .errors import CodecError, ConfigurationError
from .models import SaveFormat


M = TypeVar("M", bound=BaseModel)

JSON_EXTENSION = ".json"
BINARY_EXTENSION = ".sav"


class Codec(Protocol):
    """
    Strategy converting a pydantic model to/from a text payload.

    Contract
    - `serialize(value)` accepts model instances only; anything else is a
      `CodecError`.
    - `deserialize(payload, model)` validates the decoded data against
      `model` and raises `CodecError` (chained to the cause) on corrupt or
      incompatible input. It never falls back to a default instance.
    """

    format: SaveFormat
    extension: str

    def serialize(self, value: BaseModel) -> str: ...

    def deserialize(self, payload: str, model: Type[M]) -> M: ...


def _require_model(value: Any) -> BaseModel:
    if not isinstance(value, BaseModel):
        raise CodecError(
            f"Only pydantic models can be saved, got {type(value).__name__}"
        )
    return value


def _validate(model: Type[M], raw: Any) -> M:
    try:
        return model.model_validate(raw)
    except ValidationError as ex:
        raise CodecError(f"Payload does not match {model.__name__}") from ex


def _b64decode(payload: str) -> bytes:
    try:
        return base64.b64decode(payload.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as ex:
        raise CodecError("Payload is not valid base64") from ex


class JsonCodec:
    """Indented JSON via pydantic. The only codec stored with `.json`."""

    format = SaveFormat.JSON
    extension = JSON_EXTENSION

    def serialize(self, value: BaseModel) -> str:
        model = _require_model(value)
        try:
            return model.model_dump_json(indent=2)
        except Exception as ex:
            raise CodecError(f"Failed to serialize {type(model).__name__} as JSON") from ex

    def deserialize(self, payload: str, model: Type[M]) -> M:
        try:
            return model.model_validate_json(payload)
        except ValidationError as ex:
            raise CodecError(f"Failed to parse JSON payload as {model.__name__}") from ex


class BinaryCodec:
    """Pickled field dict, base64-encoded so the payload stays text."""

    format = SaveFormat.BINARY
    extension = BINARY_EXTENSION

    def serialize(self, value: BaseModel) -> str:
        model = _require_model(value)
        try:
            data = pickle.dumps(model.model_dump(), protocol=pickle.HIGHEST_PROTOCOL)
        except Exception as ex:
            raise CodecError(f"Failed to pickle {type(model).__name__}") from ex
        return base64.b64encode(data).decode("ascii")

    def deserialize(self, payload: str, model: Type[M]) -> M:
        data = _b64decode(payload)
        try:
            raw = pickle.loads(data)
        except Exception as ex:
            raise CodecError("Failed to unpickle binary payload") from ex
        return _validate(model, raw)


class MsgPackCodec:
    """MessagePack of the JSON-compatible dump, base64-encoded."""

    format = SaveFormat.MSGPACK
    extension = BINARY_EXTENSION

    def serialize(self, value: BaseModel) -> str:
        model = _require_model(value)
        try:
            data = msgpack.packb(model.model_dump(mode="json"), use_bin_type=True)
        except Exception as ex:
            raise CodecError(f"Failed to pack {type(model).__name__} as MessagePack") from ex
        return base64.b64encode(data).decode("ascii")

    def deserialize(self, payload: str, model: Type[M]) -> M:
        data = _b64decode(payload)
        try:
            raw = msgpack.unpackb(data, raw=False)
        except Exception as ex:
            raise CodecError("Failed to unpack MessagePack payload") from ex
        return _validate(model, raw)


class YamlCodec:
    """YAML document of the JSON-compatible dump, stored with `.sav`."""

    format = SaveFormat.YAML
    extension = BINARY_EXTENSION

    def serialize(self, value: BaseModel) -> str:
        model = _require_model(value)
        try:
            return yaml.safe_dump(
                model.model_dump(mode="json"), sort_keys=False, allow_unicode=True
            )
        except Exception as ex:
            raise CodecError(f"Failed to dump {type(model).__name__} as YAML") from ex

    def deserialize(self, payload: str, model: Type[M]) -> M:
        try:
            raw = yaml.safe_load(payload)
        except yaml.YAMLError as ex:
            raise CodecError("Failed to parse YAML payload") from ex
        return _validate(model, raw)


_CODECS: Dict[SaveFormat, Codec] = {
    SaveFormat.JSON: JsonCodec(),
    SaveFormat.BINARY: BinaryCodec(),
    SaveFormat.MSGPACK: MsgPackCodec(),
    SaveFormat.YAML: YamlCodec(),
}


def get_codec(fmt: SaveFormat | str) -> Codec:
    """Return the shared codec for `fmt` (enum member or its value)."""
    try:
        return _CODECS[SaveFormat(fmt)]
    except (KeyError, ValueError) as ex:
        raise ConfigurationError(f"Unsupported save format: {fmt!r}") from ex


def extension_for(fmt: SaveFormat | str) -> str:
    return get_codec(fmt).extension
