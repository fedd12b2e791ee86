"""Tenant-facing auth API schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SendPasswordResetRequest(CamelModel):
    """POST /v1/auth/send-password-reset request."""

    user_id: str = Field(min_length=1)
    email: str = Field(min_length=1)
    reset_url: str | None = None


class SendVerificationRequest(CamelModel):
    """POST /v1/auth/send-verification request."""

    user_id: str = Field(min_length=1)
    email: str = Field(min_length=1)
    verify_url: str | None = None


class SendMagicLinkRequest(CamelModel):
    """POST /v1/auth/send-magic-link request."""

    user_id: str = Field(min_length=1)
    email: str = Field(min_length=1)
    login_url: str | None = None


class SendResponse(CamelModel):
    success: bool = True
    expires_at: datetime


class VerifyResetRequest(CamelModel):
    token: str = Field(min_length=1)
    new_password: str


class VerifyResetResponse(CamelModel):
    success: bool = True
    user_id: str


class VerifyTokenRequest(CamelModel):
    token: str = Field(min_length=1)


class VerifyEmailResponse(CamelModel):
    success: bool = True
    user_id: str
    email: str | None = None


class SessionUser(CamelModel):
    """Minimal projection returned for magic-link sign-in."""

    id: str
    email: str | None = None
    name: str | None = None
    username: str | None = None
    role: str | None = None


class VerifyMagicLinkResponse(CamelModel):
    success: bool = True
    user: SessionUser
