"""Tenant-facing auth endpoints.

Every route is scoped to the connected database whose credential is the
bearer token.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from authbridge.auth.middleware import TenantDep
from authbridge.bridge.registry import ConnectionRegistry, get_registry
from authbridge.database import get_db
from authbridge.errors import DeliveryError
from authbridge.models import ConnectedDatabase, TokenType
from authbridge.schemas.auth import (
    SendMagicLinkRequest,
    SendPasswordResetRequest,
    SendResponse,
    SendVerificationRequest,
    SessionUser,
    VerifyEmailResponse,
    VerifyMagicLinkResponse,
    VerifyResetRequest,
    VerifyResetResponse,
    VerifyTokenRequest,
)
from authbridge.services.audit import record_event
from authbridge.services.bans import check_ban
from authbridge.services.notifier import Notifier, get_notifier
from authbridge.services.tokens import (
    redeem_email_verification,
    redeem_magic_link,
    redeem_password_reset,
    send_token,
)

router = APIRouter()

DbDep = Annotated[AsyncSession, Depends(get_db)]
RegistryDep = Annotated[ConnectionRegistry, Depends(get_registry)]
NotifierDep = Annotated[Notifier, Depends(get_notifier)]


def _actor(database: ConnectedDatabase) -> str:
    return f"tenant:{database.database_id}"


def _text(value):
    return None if value is None else str(value)


async def _send(
    db: AsyncSession,
    notifier: Notifier,
    database: ConnectedDatabase,
    user_id: str,
    email: str,
    token_type: TokenType,
    link_base: str | None,
    action: str,
) -> SendResponse:
    result = await send_token(db, notifier, database, user_id, email, token_type, link_base)
    await record_event(
        db,
        action,
        _actor(database),
        database.database_id,
        user_id=user_id,
        email=email,
        delivered=result.delivered,
    )
    if not result.delivered:
        await db.commit()
        raise DeliveryError(result.error, expires_at=result.expires_at)
    return SendResponse(expires_at=result.expires_at)


@router.post("/send-password-reset", response_model=SendResponse)
async def send_password_reset(
    body: SendPasswordResetRequest,
    database: TenantDep,
    db: DbDep,
    notifier: NotifierDep,
):
    """Issue a 1-hour reset token and email the link."""
    return await _send(
        db, notifier, database, body.user_id, body.email,
        TokenType.PASSWORD_RESET, body.reset_url, "auth_password_reset_sent",
    )


@router.post("/verify-reset", response_model=VerifyResetResponse)
async def verify_reset(
    body: VerifyResetRequest,
    database: TenantDep,
    db: DbDep,
    registry: RegistryDep,
):
    """Redeem a reset token and set the new password."""
    user_id = await redeem_password_reset(db, registry, database, body.token, body.new_password)
    await record_event(
        db, "auth_password_reset_completed", _actor(database), database.database_id, user_id=user_id
    )
    return VerifyResetResponse(user_id=user_id)


@router.post("/send-verification", response_model=SendResponse)
async def send_verification(
    body: SendVerificationRequest,
    database: TenantDep,
    db: DbDep,
    notifier: NotifierDep,
):
    """Issue a 24-hour email verification token and email the link."""
    return await _send(
        db, notifier, database, body.user_id, body.email,
        TokenType.EMAIL_VERIFICATION, body.verify_url, "auth_verification_sent",
    )


@router.post("/verify-email", response_model=VerifyEmailResponse)
async def verify_email(
    body: VerifyTokenRequest,
    database: TenantDep,
    db: DbDep,
    registry: RegistryDep,
):
    """Redeem a verification token."""
    record = await redeem_email_verification(db, registry, database, body.token)
    await record_event(
        db, "auth_email_verified", _actor(database), database.database_id,
        user_id=record.external_user_id,
    )
    return VerifyEmailResponse(user_id=record.external_user_id, email=record.email)


@router.post("/send-magic-link", response_model=SendResponse)
async def send_magic_link(
    body: SendMagicLinkRequest,
    database: TenantDep,
    db: DbDep,
    notifier: NotifierDep,
):
    """Issue a 15-minute sign-in token and email the link."""
    return await _send(
        db, notifier, database, body.user_id, body.email,
        TokenType.MAGIC_LINK, body.login_url, "auth_magic_link_sent",
    )


@router.post("/verify-magic-link", response_model=VerifyMagicLinkResponse)
async def verify_magic_link(
    body: VerifyTokenRequest,
    database: TenantDep,
    db: DbDep,
    registry: RegistryDep,
):
    """Redeem a magic link; returns the user to start a session for."""
    user = await redeem_magic_link(db, registry, database, body.token)
    await record_event(
        db, "auth_magic_link_used", _actor(database), database.database_id, user_id=user["id"]
    )
    return VerifyMagicLinkResponse(user=SessionUser(**{k: _text(v) for k, v in user.items()}))


@router.get("/check-ban")
async def check_ban_status(
    database: TenantDep,
    db: DbDep,
    user_id: Annotated[str, Query(alias="userId", min_length=1)],
):
    """Is this user currently banned? Time-aware for temporary bans."""
    status = await check_ban(db, database.database_id, user_id)
    return status.to_dict()
