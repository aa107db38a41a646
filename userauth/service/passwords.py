from __future__ import annotations

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from userauth.logging import get_logger

logger = get_logger(__name__)

_pwd_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    return _pwd_hasher.hash(password)


def verify_password(stored_hash: str, password: str) -> bool:
    """Check ``password`` against an argon2id hash. Never raises on mismatch."""
    try:
        return _pwd_hasher.verify(stored_hash, password)
    except VerifyMismatchError:
        return False
    except (InvalidHash, VerificationError):
        logger.warning("password_hash_unusable")
        return False
