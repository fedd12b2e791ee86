"""Operator admin API schemas."""

from datetime import datetime
from typing import Any

from pydantic import Field

from authbridge.models import BanType
from authbridge.schemas.auth import CamelModel


class ConnectDatabaseRequest(CamelModel):
    """POST /v1/admin/databases request."""

    name: str
    app_name: str
    endpoint: str
    credential: str | None = None
    user_table: str = "users"


class DatabaseInfo(CamelModel):
    database_id: str
    name: str
    app_name: str
    user_table: str
    user_count: int | None = None
    last_checked_at: datetime | None = None
    is_active: bool

    model_config = CamelModel.model_config | {"from_attributes": True}


class CreateUserRequest(CamelModel):
    """Role-keyed fields for a new external user."""

    id: str | None = None
    email: str = Field(min_length=1)
    name: str | None = None
    username: str | None = None
    password: str | None = None
    role: str | None = None
    email_verified: bool | None = None


class UpdateFieldRequest(CamelModel):
    column: str
    value: Any = None


class SetPasswordRequest(CamelModel):
    new_password: str


class BanRequest(CamelModel):
    reason: str | None = None
    type: BanType = BanType.PERMANENT
    duration_hours: float | None = Field(default=None, ge=0)
    email: str | None = None


class SendLinkRequest(CamelModel):
    email: str = Field(min_length=1)
    link_base: str | None = None


class AuditEventInfo(CamelModel):
    event_id: str
    action: str
    actor: str
    database_id: str | None = None
    details: dict
    created_at: datetime

    model_config = CamelModel.model_config | {"from_attributes": True}


class EmailTestRequest(CamelModel):
    to: str = Field(min_length=1)
