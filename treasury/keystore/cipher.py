"""Envelope encryption for custodial secrets.

Serialized form: ``v1:<nonce b64>:<ciphertext+tag b64>``

- AES-256-GCM with a fresh 12-byte nonce per record
- the depositor address is bound as associated data, so a ciphertext copied
  onto another depositor's row fails authentication
- the leading version tag selects the decoder; unknown versions are rejected
"""

from __future__ import annotations

import base64
import binascii
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from treasury.errors import ConfigurationError, KeyStoreLockedError

CURRENT_VERSION = "v1"
NONCE_SIZE = 12
MASTER_KEY_SIZE = 32

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def parse_master_key(raw: str | None) -> bytes:
    """Decode a master key given as 0x-hex, bare hex, or base64.

    Raises:
        KeyStoreLockedError: when no key was supplied
        ConfigurationError: when the key does not decode to 32 bytes
    """
    if raw is None or not raw.strip():
        raise KeyStoreLockedError("Missing SUI_KEYSTORE_MASTER_KEY (custodial key store is locked)")

    value = raw.strip()
    try:
        if value.startswith("0x"):
            key = bytes.fromhex(value[2:])
        elif _HEX_RE.match(value) and len(value) == MASTER_KEY_SIZE * 2:
            key = bytes.fromhex(value)
        else:
            key = base64.b64decode(value, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise ConfigurationError("SUI_KEYSTORE_MASTER_KEY is not valid hex or base64") from exc

    if len(key) != MASTER_KEY_SIZE:
        raise ConfigurationError(f"SUI_KEYSTORE_MASTER_KEY must decode to {MASTER_KEY_SIZE} bytes, got {len(key)}")
    return key


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _associated_data(context: str) -> bytes:
    return f"treasury:{CURRENT_VERSION}:{context.lower()}".encode("utf-8")


class EnvelopeCipher:
    """AES-256-GCM envelope cipher keyed by the process-wide master key."""

    def __init__(self, master_key: bytes) -> None:
        if len(master_key) != MASTER_KEY_SIZE:
            raise ConfigurationError(f"Master key must be {MASTER_KEY_SIZE} bytes")
        self._aead = AESGCM(master_key)

    def __repr__(self) -> str:
        return "EnvelopeCipher(<redacted>)"

    @classmethod
    def from_env(cls, raw: str | None = None) -> EnvelopeCipher:
        return cls(parse_master_key(raw if raw is not None else os.environ.get("SUI_KEYSTORE_MASTER_KEY")))

    def encrypt(self, plaintext: bytes, *, context: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._aead.encrypt(nonce, plaintext, _associated_data(context))
        return f"{CURRENT_VERSION}:{_b64(nonce)}:{_b64(ciphertext)}"

    def decrypt(self, payload: str, *, context: str) -> bytes:
        version, _, body = payload.partition(":")
        if version != CURRENT_VERSION:
            raise ConfigurationError(f"Unsupported key record version: {version or '<empty>'}")

        parts = body.split(":")
        if len(parts) != 2:
            raise ConfigurationError("Malformed encrypted key record")
        try:
            nonce = base64.b64decode(parts[0], validate=True)
            ciphertext = base64.b64decode(parts[1], validate=True)
        except (ValueError, binascii.Error) as exc:
            raise ConfigurationError("Malformed encrypted key record") from exc
        try:
            return self._aead.decrypt(nonce, ciphertext, _associated_data(context))
        except InvalidTag as exc:
            raise ConfigurationError("Encrypted key record failed authentication (wrong master key?)") from exc
