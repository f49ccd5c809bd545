"""
Passphrase-based symmetric encryption of text payloads.

Key derivation
- PBKDF2-HMAC-SHA256 over the passphrase with the fixed application salt
  `SALT` and `ITERATIONS` rounds, producing a 32-byte AES-256 key.
  Neither value is configurable; changing them makes existing saves
  unreadable.

Wire format
- `base64(IV || AES-CBC(PKCS7(utf8(plaintext))))` with a fresh 16-byte IV
  per call, so `decrypt` needs nothing but the passphrase and the text.

Failures raise `CryptoError`; the input is never handed back unchanged.
"""

from __future__ import annotations

import base64
import binascii
import os
from functools import lru_cache

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import CryptoError


SALT = b"savekit.cipher.v1"
ITERATIONS = 100_000
KEY_SIZE = 32
IV_SIZE = 16


@lru_cache(maxsize=16)
def derive_key(passphrase: str) -> bytes:
    if not passphrase:
        raise CryptoError("An encryption passphrase is required")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=SALT,
        iterations=ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(plaintext: str, passphrase: str) -> str:
    key = derive_key(passphrase)
    iv = os.urandom(IV_SIZE)
    try:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
    except (ValueError, UnicodeEncodeError) as ex:
        raise CryptoError("Failed to encrypt payload") from ex
    return base64.b64encode(iv + ciphertext).decode("ascii")


def decrypt(ciphertext: str, passphrase: str) -> str:
    key = derive_key(passphrase)
    try:
        raw = base64.b64decode(ciphertext.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as ex:
        raise CryptoError("Encrypted payload is not valid base64") from ex

    iv, body = raw[:IV_SIZE], raw[IV_SIZE:]
    if len(iv) < IV_SIZE or not body or len(body) % IV_SIZE:
        raise CryptoError("Encrypted payload is truncated or malformed")

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        data = unpadder.update(padded) + unpadder.finalize()
        return data.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as ex:
        # Bad padding or garbage bytes: wrong passphrase or corrupt payload
        raise CryptoError("Failed to decrypt payload: wrong key or corrupt data") from ex


def looks_encrypted(text: str) -> bool:
    """True when a stored metadata payload is ciphertext rather than a JSON object."""
    return not text.lstrip().startswith("{")
