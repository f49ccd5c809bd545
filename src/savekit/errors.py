from __future__ import annotations


class SaveKitError(RuntimeError):
    """Base error for the save engine."""


class ConfigurationError(SaveKitError, ValueError):
    """Invalid root path, save id, data key, layout or format."""


class CodecError(SaveKitError):
    """A value could not be serialized, or a payload could not be decoded."""


class CryptoError(SaveKitError):
    """Encryption or decryption failed (wrong key, corrupt ciphertext, ...)."""
