"""Symmetric encryption for gateway tokens stored at rest."""
from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from splitpay.utils.errors import CredentialInvalid


def _fernet(secret_key: str) -> Fernet:
    digest = hashlib.sha256(secret_key.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_token(value: str, secret_key: str) -> str:
    return _fernet(secret_key).encrypt(value.encode("utf-8")).decode("ascii")


def decrypt_token(ciphertext: str, secret_key: str) -> str:
    """Decrypt a stored token.

    A token written under a different ``SECRET_KEY`` cannot be recovered, so the
    producer has to authorize again.
    """

    try:
        return _fernet(secret_key).decrypt(ciphertext.encode("ascii")).decode("utf-8")
    except (InvalidToken, ValueError) as exc:
        raise CredentialInvalid("Stored gateway token cannot be decrypted; re-authorization required.") from exc


def token_hint(token: str | None) -> str | None:
    """Short prefix safe to log."""

    if not token:
        return None
    return f"{token[:10]}..."


__all__ = ["encrypt_token", "decrypt_token", "token_hint"]
