"""Password hashing for credentials written into tenant databases."""

import bcrypt

from authbridge.config import settings
from authbridge.errors import InvalidPassword


def check_password_policy(password: str | None) -> str:
    if not password or len(password) < settings.min_password_length:
        raise InvalidPassword(
            f"Password must be at least {settings.min_password_length} characters"
        )
    return password


def hash_password(password: str) -> str:
    """bcrypt hash, as text, in the $2b$ format most frameworks verify."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("ascii"))
