"""Encrypted storage of backend credentials.

Credentials are kept as a Fernet token of a JSON object such as
``{"username": ..., "password": ..., "domain": ..., "host": ..., "port": ...}``.
Plaintext only exists in memory while a provider is being built.
"""

import json
import logging
from typing import Any, Protocol

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Raised when stored credentials cannot be decrypted or parsed."""


class CredentialStore(Protocol):
    """Protocol for credential encryption backends."""

    def encrypt(self, plaintext: str) -> str:
        """Return an opaque token for the plaintext."""

    def decrypt(self, token: str) -> str:
        """Return the plaintext for a token produced by encrypt()."""


class FernetCredentialStore:
    """Symmetric credential encryption with a Fernet key."""

    def __init__(self, key: str | None = None) -> None:
        if key:
            self.cipher = Fernet(key.encode())
        else:
            logger.warning("No credential key configured; using an ephemeral key for this process")
            self.cipher = Fernet(Fernet.generate_key())

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        if not token:
            return ""
        try:
            return self.cipher.decrypt(token.encode()).decode()
        except InvalidToken as e:
            raise CredentialError("Stored credentials could not be decrypted with the configured key") from e


def generate_key() -> str:
    return Fernet.generate_key().decode()


def parse_credentials(plaintext: str) -> dict[str, Any]:
    if not plaintext:
        return {}
    try:
        data = json.loads(plaintext)
    except json.JSONDecodeError as e:
        raise CredentialError(f"Credentials are not valid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise CredentialError("Credentials must be a JSON object")
    return data


def encrypt_credentials(store: CredentialStore, credentials: dict[str, Any]) -> str:
    cleaned = {k: v for k, v in credentials.items() if v not in (None, "")}
    if not cleaned:
        return ""
    return store.encrypt(json.dumps(cleaned, separators=(",", ":")))
