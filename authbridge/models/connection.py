"""Connected database and schema mapping models."""

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from authbridge.database import Base, UTCDateTime, utcnow


class ConnectedDatabase(Base):
    """One per tenant application. Soft-deactivated, never deleted."""

    __tablename__ = "connected_databases"

    database_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    app_name: Mapped[str] = mapped_column(Text, nullable=False)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    credential: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    user_table: Mapped[str] = mapped_column(String(128), nullable=False, default="users")
    user_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class SchemaMappingRecord(Base):
    """Persisted column mapping for a connected database's user table."""

    __tablename__ = "schema_mappings"

    database_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("connected_databases.database_id"), primary_key=True
    )
    id_column: Mapped[str] = mapped_column(String(128), nullable=False, default="id")
    email_column: Mapped[str] = mapped_column(String(128), nullable=False, default="email")
    name_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    username_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    password_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    avatar_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    role_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_login_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email_verified_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    session_table: Mapped[str | None] = mapped_column(String(128), nullable=True)
    session_user_id_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
