"""Database models."""

from authbridge.models.audit import AuditEvent
from authbridge.models.ban import BanType, UserBan
from authbridge.models.connection import ConnectedDatabase, SchemaMappingRecord
from authbridge.models.token import TOKEN_TTLS, AuthToken, TokenType

__all__ = [
    "AuditEvent",
    "AuthToken",
    "BanType",
    "ConnectedDatabase",
    "SchemaMappingRecord",
    "TOKEN_TTLS",
    "TokenType",
    "UserBan",
]
