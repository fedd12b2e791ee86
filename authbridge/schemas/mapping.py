"""Schema mapping - semantic user roles to concrete column names."""

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from authbridge.bridge.identifiers import validate_identifier

# (projection alias, mapping field) for every role exposed on ExternalUser.
# The password column is never projected.
PROJECTED_ROLES = (
    ("id", "id_column"),
    ("email", "email_column"),
    ("name", "name_column"),
    ("username", "username_column"),
    ("avatar", "avatar_column"),
    ("role", "role_column"),
    ("status", "status_column"),
    ("createdAt", "created_at_column"),
    ("lastLogin", "last_login_column"),
    ("emailVerified", "email_verified_column"),
)

SEARCHABLE_ROLES = ("email_column", "name_column", "username_column")


class SchemaMapping(BaseModel):
    """Column mapping for one connected database's user table.

    Every accepted name must be a valid identifier; an invalid one raises
    InvalidIdentifier straight out of construction.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id_column: str = "id"
    email_column: str = "email"
    name_column: str | None = None
    username_column: str | None = None
    password_column: str | None = None
    avatar_column: str | None = None
    role_column: str | None = None
    status_column: str | None = None
    created_at_column: str | None = None
    last_login_column: str | None = None
    email_verified_column: str | None = None
    session_table: str | None = None
    session_user_id_column: str | None = None

    @field_validator("*", mode="after")
    @classmethod
    def check_identifier(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_identifier(v)

    def projection(self) -> list[tuple[str, str]]:
        """(alias, column) pairs for every mapped projected role."""
        pairs = []
        for alias, field in PROJECTED_ROLES:
            column = getattr(self, field)
            if column:
                pairs.append((alias, column))
        return pairs

    def searchable_columns(self) -> list[str]:
        return [getattr(self, f) for f in SEARCHABLE_ROLES if getattr(self, f)]

    def column_for(self, alias: str) -> str | None:
        """Column mapped to a projection alias, if any."""
        for a, column in self.projection():
            if a == alias:
                return column
        return None

    @property
    def has_sessions(self) -> bool:
        return bool(self.session_table and self.session_user_id_column)
