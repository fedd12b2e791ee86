"""Error taxonomy.

Every failure the bridge reports carries a stable ``code`` so callers can
tell an expired link from a missing account from an unreachable database.
"""


class BridgeError(Exception):
    """Base class for all structured bridge failures."""

    code = "bridge_error"
    status_code = 500

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return self.code.replace("_", " ").capitalize()

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


# Configuration errors: caller-fixable, never retried.


class ConfigurationError(BridgeError):
    code = "configuration_error"
    status_code = 400


class InvalidIdentifier(ConfigurationError):
    code = "invalid_identifier"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Invalid identifier: {identifier!r}")


class NoPasswordColumnMapped(ConfigurationError):
    code = "no_password_column_mapped"

    def default_message(self) -> str:
        return "No password column mapped for this database"


class NoEmailVerifiedColumnMapped(ConfigurationError):
    code = "no_email_verified_column_mapped"

    def default_message(self) -> str:
        return "No email_verified column mapped for this database"


class NoFieldsProvided(ConfigurationError):
    code = "no_fields_provided"


class InvalidPassword(ConfigurationError):
    code = "invalid_password"


class TenantNotFound(ConfigurationError):
    code = "tenant_not_found"
    status_code = 404

    def default_message(self) -> str:
        return "Database not found"


class UserNotFound(ConfigurationError):
    code = "user_not_found"
    status_code = 404


class TableNotFound(ConfigurationError):
    code = "table_not_found"
    status_code = 404

    def __init__(self, table: str, message: str | None = None):
        self.table = table
        super().__init__(message or f"Table {table!r} not found")


# Token errors: terminal for the token, the caller must re-issue.


class TokenError(BridgeError):
    code = "token_error"
    status_code = 400


class InvalidToken(TokenError):
    code = "invalid_token"


class WrongTokenType(TokenError):
    code = "wrong_token_type"

    def default_message(self) -> str:
        return "Invalid token type"


class TokenAlreadyUsed(TokenError):
    code = "token_already_used"


class TokenExpired(TokenError):
    code = "token_expired"


class TokenTenantMismatch(TokenError):
    code = "token_tenant_mismatch"
    status_code = 403

    def default_message(self) -> str:
        return "Token does not belong to this database"


# Infrastructure errors.


class TenantConnectionError(BridgeError):
    """The tenant database could not be reached."""

    code = "connection_error"
    status_code = 503


class TenantQueryError(BridgeError):
    """The tenant database rejected a statement (missing column, constraint)."""

    code = "tenant_query_failed"
    status_code = 422


class DeliveryError(BridgeError):
    """The notifier failed to deliver a link. The token stays valid."""

    code = "delivery_failed"
    status_code = 502

    def __init__(self, message: str | None = None, expires_at=None):
        self.expires_at = expires_at
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.expires_at is not None:
            data["expiresAt"] = self.expires_at.isoformat()
        return data
