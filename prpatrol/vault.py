"""Encrypted-at-rest storage for the GitHub token.

The token is sealed with AES-256-GCM under a key derived (PBKDF2-SHA256) from
the installation identifier and a per-envelope random salt. Only the envelope
is persisted; the plaintext lives in memory for the duration of a pass.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Any, TypedDict
from uuid import uuid4

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .state import StateStore

logger = logging.getLogger(__name__)

ENVELOPE_KEY = "pat_encrypted"
LEGACY_PLAINTEXT_KEY = "pat"
INSTALLATION_ID_KEY = "installation_id"

KDF_ITERATIONS = 100_000
SALT_BYTES = 16
IV_BYTES = 12
KEY_BYTES = 32

MASK = "••••"
FULL_MASK = "••••••••"


class Envelope(TypedDict):
    salt: str
    iv: str
    ciphertext: str


def ensure_installation_id(state: StateStore) -> str:
    existing = state.get(INSTALLATION_ID_KEY)
    if isinstance(existing, str) and existing:
        return existing
    installation_id = str(uuid4())
    state.set(INSTALLATION_ID_KEY, installation_id)
    return installation_id


def derive_key(installation_id: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(installation_id.encode("utf-8"))


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64decode(value: Any) -> bytes:
    if not isinstance(value, str):
        raise ValueError("envelope field must be a string")
    return base64.b64decode(value.encode("ascii"), validate=True)


def encrypt_secret(secret: str, installation_id: str) -> Envelope:
    salt = os.urandom(SALT_BYTES)
    iv = os.urandom(IV_BYTES)
    key = derive_key(installation_id, salt)
    ciphertext = AESGCM(key).encrypt(iv, secret.encode("utf-8"), None)
    return {
        "salt": _b64encode(salt),
        "iv": _b64encode(iv),
        "ciphertext": _b64encode(ciphertext),
    }


def decrypt_envelope(envelope: Any, installation_id: str) -> str | None:
    """Return the sealed secret, or ``None`` if the envelope cannot be opened."""
    if not isinstance(envelope, dict):
        return None
    try:
        salt = _b64decode(envelope.get("salt"))
        iv = _b64decode(envelope.get("iv"))
        ciphertext = _b64decode(envelope.get("ciphertext"))
        key = derive_key(installation_id, salt)
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, ValueError, binascii.Error, UnicodeError) as exc:
        logger.warning("Unable to decrypt stored token: %s", type(exc).__name__)
        return None


def mask_secret(secret: str | None) -> str:
    if not secret or len(secret) < 8:
        return FULL_MASK
    return f"{secret[:4]}{MASK}{secret[-4:]}"


class CredentialVault:
    def __init__(self, state: StateStore, *, installation_id: str | None = None) -> None:
        self._state = state
        self._installation_id = installation_id

    @property
    def installation_id(self) -> str:
        if self._installation_id is None:
            self._installation_id = ensure_installation_id(self._state)
        return self._installation_id

    def store(self, secret: str) -> Envelope:
        if not secret:
            raise ValueError("secret must not be empty")
        envelope = encrypt_secret(secret, self.installation_id)
        self._state.update({ENVELOPE_KEY: envelope}, remove=[LEGACY_PLAINTEXT_KEY])
        return envelope

    def load(self) -> str | None:
        envelope = self._state.get(ENVELOPE_KEY)
        if envelope is None:
            return None
        return decrypt_envelope(envelope, self.installation_id)

    def clear(self) -> None:
        self._state.remove(ENVELOPE_KEY, LEGACY_PLAINTEXT_KEY)

    def migrate_plaintext(self) -> bool:
        """Seal a legacy plaintext token into an envelope.

        Returns True when a plaintext copy was found and removed. Safe to call on
        every startup.
        """
        data = self._state.get_many([LEGACY_PLAINTEXT_KEY, ENVELOPE_KEY])
        plaintext = data.get(LEGACY_PLAINTEXT_KEY)
        if plaintext is None:
            return False
        if ENVELOPE_KEY in data or not isinstance(plaintext, str) or not plaintext:
            self._state.remove(LEGACY_PLAINTEXT_KEY)
            return True
        logger.info("Detected legacy plaintext token; migrating to encrypted storage.")
        envelope = encrypt_secret(plaintext, self.installation_id)
        self._state.update({ENVELOPE_KEY: envelope}, remove=[LEGACY_PLAINTEXT_KEY])
        return True
