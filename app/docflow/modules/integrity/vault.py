"""
Authenticated encryption of signature payloads at rest.

Sealed wire format (ASCII):

    "encrypted:" + base64(salt[64] || iv[16] || tag[16] || ciphertext)

AES-256-GCM; a fresh salt and IV are drawn for every call. Only image data
URLs ("data:image/...") are sealed. Anything else (a signer's name, an id,
an already sealed value) passes through unchanged so that legacy rows keep
working.

Key provisioning:
- SIGNATURE_ENCRYPTION_KEY as 64 hex chars is used as the raw 32-byte key.
- Any other value is treated as a passphrase and stretched with PBKDF2.
- No key at all is a startup error, unless ALLOW_INSECURE_DEV_KEY is set
  outside production, in which case a fixed development key is derived and
  a warning is logged.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.docflow.config import is_production_env
from app.docflow.errors import ConfigError, SignatureSealFailed

logger = logging.getLogger(__name__)

SEALED_PREFIX = "encrypted:"
SIGNATURE_DATA_PREFIX = "data:image"

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000

_PASSPHRASE_SALT = b"signature-salt"
_DEV_PASSPHRASE = "default-dev-key-change-in-production"
_DEV_SALT = b"salt"
_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=salt, iterations=KDF_ITERATIONS)
    return kdf.derive(passphrase.encode("utf-8"))


def resolve_signature_key(config: dict) -> bytes:
    raw = (config.get("SIGNATURE_ENCRYPTION_KEY") or "").strip()
    if raw:
        if _HEX_KEY_RE.fullmatch(raw):
            return bytes.fromhex(raw)
        logger.warning("SIGNATURE_ENCRYPTION_KEY is not a 64-char hex key; deriving a key from it as a passphrase.")
        return _derive_key(raw, _PASSPHRASE_SALT)

    if is_production_env(config.get("ENV")):
        raise ConfigError("SIGNATURE_ENCRYPTION_KEY must be set in production.")
    if not config.get("ALLOW_INSECURE_DEV_KEY"):
        raise ConfigError(
            "SIGNATURE_ENCRYPTION_KEY is not set. Generate one with "
            "`python -c \"import secrets; print(secrets.token_hex(32))\"`, "
            "or set ALLOW_INSECURE_DEV_KEY=1 for local development only."
        )
    logger.warning(
        "INSECURE: SIGNATURE_ENCRYPTION_KEY not set; using the fixed development key. "
        "Signatures sealed with it are NOT protected."
    )
    return _derive_key(_DEV_PASSPHRASE, _DEV_SALT)


def is_sealed(value: str | None) -> bool:
    return bool(value) and value.startswith(SEALED_PREFIX)


def is_signature_payload(value: str | None) -> bool:
    return bool(value) and value.startswith(SIGNATURE_DATA_PREFIX)


class SignatureVault:
    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ConfigError(f"Signature key must be {KEY_LENGTH} bytes, got {len(key)}.")
        self._aead = AESGCM(key)

    @classmethod
    def from_config(cls, config: dict) -> "SignatureVault":
        return cls(resolve_signature_key(config))

    def encrypt(self, plaintext: str | None) -> str | None:
        if not plaintext:
            return None
        if is_sealed(plaintext) or not is_signature_payload(plaintext):
            return plaintext
        try:
            salt = os.urandom(SALT_LENGTH)
            iv = os.urandom(IV_LENGTH)
            sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        except Exception as e:
            logger.exception("Signature sealing failed")
            raise SignatureSealFailed("Failed to seal signature.") from e
        # AESGCM appends the tag; the wire format carries it before the ciphertext.
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        blob = salt + iv + tag + ciphertext
        return SEALED_PREFIX + base64.b64encode(blob).decode("ascii")

    def decrypt(self, sealed: str | None) -> str | None:
        """
        Returns the plaintext, the input itself when it was never sealed, or
        None when the payload is corrupt, tampered or sealed under another key.
        """
        if not sealed:
            return None
        if not is_sealed(sealed):
            return sealed
        try:
            blob = base64.b64decode(sealed[len(SEALED_PREFIX):], validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Sealed signature is not valid base64 (len=%s)", len(sealed))
            return None

        header = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
        if len(blob) <= header:
            logger.warning("Sealed signature too short (bytes=%s)", len(blob))
            return None

        offset = SALT_LENGTH
        iv = blob[offset:offset + IV_LENGTH]
        offset += IV_LENGTH
        tag = blob[offset:offset + TAG_LENGTH]
        offset += TAG_LENGTH
        ciphertext = blob[offset:]
        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("Sealed signature failed authentication (tampered or wrong key)")
            return None
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Sealed signature decrypted to non-UTF-8 bytes")
            return None


def current_vault() -> SignatureVault:
    """The process-wide vault built by create_app()."""
    from flask import current_app

    return current_app.extensions["signature_vault"]
