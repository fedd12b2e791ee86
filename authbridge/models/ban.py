"""User ban model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from authbridge.database import Base, UTCDateTime


class BanType(str, Enum):
    PERMANENT = "permanent"
    TEMPORARY = "temporary"


class UserBan(Base):
    """Ban keyed by (database, external user). At most one active row per key."""

    __tablename__ = "user_bans"

    ban_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    database_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("connected_databases.database_id"), nullable=False
    )
    external_user_id: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # permanent|temporary
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    lifted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    lifted_by: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_user_bans_database_user", "database_id", "external_user_id"),
        Index(
            "uq_user_bans_one_active",
            "database_id",
            "external_user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )
