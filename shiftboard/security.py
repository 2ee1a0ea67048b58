from __future__ import annotations

import hmac
from typing import Protocol

import bcrypt

from shiftboard.config import Settings


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


class CredentialCheck(Protocol):
    def verify(self, submitted: str) -> bool: ...


class SharedSecretCheck:
    def __init__(self, secret: str) -> None:
        self._secret = secret.encode("utf-8")

    def verify(self, submitted: str) -> bool:
        return hmac.compare_digest(submitted.encode("utf-8"), self._secret)


class PasswordHashCheck:
    def __init__(self, password_hash: str) -> None:
        self._hash = password_hash

    def verify(self, submitted: str) -> bool:
        return verify_password(submitted, self._hash)


def credential_check_from_settings(settings: Settings) -> CredentialCheck | None:
    if settings.admin_password_hash:
        return PasswordHashCheck(settings.admin_password_hash)
    if settings.admin_password:
        return SharedSecretCheck(settings.admin_password)
    return None
