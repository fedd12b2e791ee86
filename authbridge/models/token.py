"""Auth token model."""

from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from authbridge.database import Base, UTCDateTime


class TokenType(str, Enum):
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"
    MAGIC_LINK = "magic_link"


# Fixed per type, not caller-overridable.
TOKEN_TTLS = {
    TokenType.PASSWORD_RESET: timedelta(hours=1),
    TokenType.EMAIL_VERIFICATION: timedelta(hours=24),
    TokenType.MAGIC_LINK: timedelta(minutes=15),
}


class AuthToken(Base):
    """Single-use, typed, expiring token. Kept after use as audit evidence."""

    __tablename__ = "auth_tokens"

    token_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # password_reset|email_verification|magic_link
    database_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("connected_databases.database_id"), nullable=False
    )
    external_user_id: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_auth_tokens_database_user", "database_id", "external_user_id"),
    )
