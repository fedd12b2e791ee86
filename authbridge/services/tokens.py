"""Token lifecycle: issue, send, redeem.

A token is ``issued`` until it is either redeemed (used_at set, exactly
once) or its expiry passes. Redemption commits the control-plane write
before anything touches the tenant database, so a later tenant failure
leaves a consumed token and an unchanged user row; the operator re-issues.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
from starlette.concurrency import run_in_threadpool

from authbridge.bridge.registry import ConnectionRegistry
from authbridge.config import settings
from authbridge.database import utcnow
from authbridge.errors import (
    InvalidToken,
    NoPasswordColumnMapped,
    TokenAlreadyUsed,
    TokenExpired,
    TokenTenantMismatch,
    WrongTokenType,
)
from authbridge.models import TOKEN_TTLS, AuthToken, ConnectedDatabase, TokenType
from authbridge.services.notifier import Notifier
from authbridge.services.passwords import check_password_policy, hash_password
from authbridge.services.tenants import user_repository
from authbridge.storage.repositories import create_token, get_token, mark_token_used

logger = logging.getLogger(__name__)

# Link path used when the caller does not supply its own link base.
DEFAULT_LINK_PATHS = {
    TokenType.PASSWORD_RESET: "/reset-password",
    TokenType.EMAIL_VERIFICATION: "/verify-email",
    TokenType.MAGIC_LINK: "/magic-login",
}


@dataclass
class SendResult:
    token: AuthToken
    link: str
    delivered: bool
    error: str | None = None

    @property
    def expires_at(self) -> datetime:
        return self.token.expires_at


def generate_secret() -> str:
    """256 bits from the OS CSPRNG, hex encoded."""
    return secrets.token_hex(32)


def build_link(link_base: str, secret: str) -> str:
    return f"{link_base}?token={secret}"


def _tail(secret: str) -> str:
    return secret[-4:]


async def issue_token(
    db: AsyncSession,
    database_id: str,
    external_user_id: str,
    token_type: TokenType,
    email: str | None = None,
) -> AuthToken:
    """Persist a new token. TTL comes from the type."""
    token_type = TokenType(token_type)
    now = utcnow()
    record = await create_token(
        db,
        token=generate_secret(),
        token_type=token_type.value,
        database_id=database_id,
        external_user_id=str(external_user_id),
        issued_at=now,
        expires_at=now + TOKEN_TTLS[token_type],
        email=email,
    )
    logger.info(
        "Token issued",
        extra={
            "event": "token.issued",
            "type": token_type.value,
            "database_id": database_id,
            "last4": _tail(record.token),
        },
    )
    return record


async def send_token(
    db: AsyncSession,
    notifier: Notifier,
    database: ConnectedDatabase,
    external_user_id: str,
    email: str,
    token_type: TokenType,
    link_base: str | None = None,
) -> SendResult:
    """Issue a token, commit it, then hand the link to the notifier.

    Delivery failure is reported in the result; the token is not rolled back.
    """
    token_type = TokenType(token_type)
    record = await issue_token(db, database.database_id, external_user_id, token_type, email)
    await db.commit()

    base = link_base or settings.app_url.rstrip("/") + DEFAULT_LINK_PATHS[token_type]
    link = build_link(base, record.token)
    result = await notifier.send(token_type, email, link, database.app_name or settings.default_app_name)
    if not result.success:
        logger.warning(
            "Token delivery failed; token remains valid",
            extra={
                "event": "token.delivery_failed",
                "type": token_type.value,
                "last4": _tail(record.token),
                "error": result.error,
            },
        )
    return SendResult(token=record, link=link, delivered=result.success, error=result.error)


async def redeem_token(
    db: AsyncSession,
    token: str,
    expected_type: TokenType,
    database_id: str | None = None,
    now: datetime | None = None,
) -> AuthToken:
    """Consume a token and commit. Raises a TokenError subclass on any failure.

    The used_at write is a conditional update (``WHERE used_at IS NULL``);
    of two concurrent redemptions only one sees an affected row.
    """
    now = now or utcnow()
    record = await get_token(db, token) if token else None
    if record is None:
        raise InvalidToken()
    if record.type != TokenType(expected_type).value:
        raise WrongTokenType()
    if record.used_at is not None:
        raise TokenAlreadyUsed()
    if now > record.expires_at:
        raise TokenExpired()
    if database_id is not None and record.database_id != database_id:
        raise TokenTenantMismatch()

    if not await mark_token_used(db, record.token_id, now):
        await db.rollback()
        raise TokenAlreadyUsed()
    await db.commit()
    set_committed_value(record, "used_at", now)

    logger.info(
        "Token redeemed",
        extra={
            "event": "token.redeemed",
            "type": record.type,
            "database_id": record.database_id,
            "last4": _tail(record.token),
        },
    )
    return record


async def redeem_password_reset(
    db: AsyncSession,
    registry: ConnectionRegistry,
    database: ConnectedDatabase,
    token: str,
    new_password: str,
) -> str:
    """Redeem a reset token and write the new password hash. Returns the user id."""
    check_password_policy(new_password)
    repo = await user_repository(db, registry, database)
    if not repo.mapping.password_column:
        raise NoPasswordColumnMapped()
    hashed = await run_in_threadpool(hash_password, new_password)

    record = await redeem_token(db, token, TokenType.PASSWORD_RESET, database.database_id)
    try:
        await repo.update_password(record.external_user_id, hashed)
    except Exception:
        logger.error(
            "Reset token consumed but password not changed",
            extra={
                "event": "token.partial_failure",
                "database_id": database.database_id,
                "last4": _tail(record.token),
            },
        )
        raise
    return record.external_user_id


async def redeem_email_verification(
    db: AsyncSession,
    registry: ConnectionRegistry,
    database: ConnectedDatabase,
    token: str,
) -> AuthToken:
    """Redeem a verification token; mark the mapped email-verified column true."""
    repo = await user_repository(db, registry, database)
    record = await redeem_token(db, token, TokenType.EMAIL_VERIFICATION, database.database_id)
    if repo.mapping.email_verified_column:
        await repo.update_field(record.external_user_id, repo.mapping.email_verified_column, True)
    return record


async def redeem_magic_link(
    db: AsyncSession,
    registry: ConnectionRegistry,
    database: ConnectedDatabase,
    token: str,
) -> dict:
    """Redeem a magic link; return the user fields a caller needs for a session.

    No tenant-side mutation happens here.
    """
    repo = await user_repository(db, registry, database)
    record = await redeem_token(db, token, TokenType.MAGIC_LINK, database.database_id)
    user = await repo.get_by_id(record.external_user_id)
    if user is None:
        return {"id": record.external_user_id, "email": record.email}
    return {key: user.get(key) for key in ("id", "email", "name", "username", "role")}
