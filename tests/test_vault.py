import base64

import pytest

from app.docflow.errors import ConfigError
from app.docflow.modules.integrity.vault import (
    IV_LENGTH,
    SALT_LENGTH,
    SEALED_PREFIX,
    TAG_LENGTH,
    SignatureVault,
    resolve_signature_key,
)

KEY = bytes(range(32))
SIGNATURE = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk"


@pytest.fixture()
def vault():
    return SignatureVault(KEY)


def _blob(sealed: str) -> bytearray:
    return bytearray(base64.b64decode(sealed[len(SEALED_PREFIX):]))


def _reseal(blob: bytearray) -> str:
    return SEALED_PREFIX + base64.b64encode(bytes(blob)).decode("ascii")


def test_image_signature_round_trips(vault):
    sealed = vault.encrypt(SIGNATURE)
    assert sealed.startswith(SEALED_PREFIX)
    assert SIGNATURE not in sealed
    assert len(_blob(sealed)) == SALT_LENGTH + IV_LENGTH + TAG_LENGTH + len(SIGNATURE.encode("utf-8"))
    assert vault.decrypt(sealed) == SIGNATURE


def test_each_seal_uses_fresh_salt_and_iv(vault):
    a = vault.encrypt(SIGNATURE)
    b = vault.encrypt(SIGNATURE)
    assert a != b
    assert vault.decrypt(a) == vault.decrypt(b) == SIGNATURE


def test_non_image_values_pass_through(vault):
    assert vault.encrypt("Dr. Jane Okello") == "Dr. Jane Okello"
    assert vault.decrypt("Dr. Jane Okello") == "Dr. Jane Okello"
    assert vault.encrypt(None) is None
    assert vault.encrypt("") is None
    assert vault.decrypt(None) is None


def test_sealing_is_idempotent(vault):
    sealed = vault.encrypt(SIGNATURE)
    assert vault.encrypt(sealed) == sealed


def test_flipped_ciphertext_byte_is_rejected(vault):
    blob = _blob(vault.encrypt(SIGNATURE))
    blob[-1] ^= 0x01
    assert vault.decrypt(_reseal(blob)) is None


def test_flipped_tag_byte_is_rejected(vault):
    blob = _blob(vault.encrypt(SIGNATURE))
    blob[SALT_LENGTH + IV_LENGTH] ^= 0x80
    assert vault.decrypt(_reseal(blob)) is None


def test_edited_base64_text_is_rejected(vault):
    sealed = vault.encrypt(SIGNATURE)
    i = len(SEALED_PREFIX) + 130
    swapped = "A" if sealed[i] != "A" else "B"
    tampered = sealed[:i] + swapped + sealed[i + 1:]
    assert vault.decrypt(tampered) is None


def test_malformed_sealed_values_return_none(vault):
    assert vault.decrypt(SEALED_PREFIX + "!!!not-base64!!!") is None
    assert vault.decrypt(SEALED_PREFIX + base64.b64encode(b"x" * 10).decode("ascii")) is None


def test_wrong_key_cannot_open(vault):
    sealed = vault.encrypt(SIGNATURE)
    other = SignatureVault(bytes(reversed(range(32))))
    assert other.decrypt(sealed) is None


def test_key_must_be_32_bytes():
    with pytest.raises(ConfigError):
        SignatureVault(b"too-short")


def test_hex_key_is_used_raw():
    assert resolve_signature_key({"SIGNATURE_ENCRYPTION_KEY": KEY.hex()}) == KEY


def test_passphrase_key_is_stretched_deterministically():
    a = resolve_signature_key({"SIGNATURE_ENCRYPTION_KEY": "correct horse battery staple"})
    b = resolve_signature_key({"SIGNATURE_ENCRYPTION_KEY": "correct horse battery staple"})
    assert len(a) == 32
    assert a == b
    assert a != resolve_signature_key({"SIGNATURE_ENCRYPTION_KEY": "another passphrase"})


def test_missing_key_fails_closed_by_default():
    with pytest.raises(ConfigError):
        resolve_signature_key({"ENV": "development"})


def test_missing_key_fails_in_production_even_with_dev_flag():
    with pytest.raises(ConfigError):
        resolve_signature_key({"ENV": "production", "ALLOW_INSECURE_DEV_KEY": True})


def test_dev_key_requires_explicit_opt_in():
    key = resolve_signature_key({"ENV": "development", "ALLOW_INSECURE_DEV_KEY": True})
    assert len(key) == 32
    v = SignatureVault(key)
    assert v.decrypt(v.encrypt(SIGNATURE)) == SIGNATURE


def test_short_payload_tamper_is_detected(vault):
    sealed = vault.encrypt("data:image/png;base64,AAAA")
    assert sealed.startswith(SEALED_PREFIX)
    # Characters past offset 128 of the base64 body encode ciphertext bytes.
    i = len(SEALED_PREFIX) + 140
    flipped = sealed[:i] + ("B" if sealed[i] == "A" else "A") + sealed[i + 1:]
    assert vault.decrypt(flipped) is None
    assert vault.decrypt(sealed) == "data:image/png;base64,AAAA"
