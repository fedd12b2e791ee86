"""Initial schema - connected_databases, schema_mappings, auth_tokens, user_bans, audit_events.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "connected_databases",
        sa.Column("database_id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("app_name", sa.Text(), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("credential", sa.Text(), nullable=True),
        sa.Column("user_table", sa.String(128), nullable=False, server_default="users"),
        sa.Column("user_count", sa.Integer(), nullable=True),
        sa.Column("last_checked_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_connected_databases_credential", "connected_databases", ["credential"]
    )

    role_columns = [
        "name_column",
        "username_column",
        "password_column",
        "avatar_column",
        "role_column",
        "status_column",
        "created_at_column",
        "last_login_column",
        "email_verified_column",
        "session_table",
        "session_user_id_column",
    ]
    op.create_table(
        "schema_mappings",
        sa.Column(
            "database_id",
            sa.String(36),
            sa.ForeignKey("connected_databases.database_id"),
            primary_key=True,
        ),
        sa.Column("id_column", sa.String(128), nullable=False, server_default="id"),
        sa.Column("email_column", sa.String(128), nullable=False, server_default="email"),
        *[sa.Column(name, sa.String(128), nullable=True) for name in role_columns],
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "auth_tokens",
        sa.Column("token_id", sa.String(36), primary_key=True),
        sa.Column("token", sa.String(128), nullable=False, unique=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column(
            "database_id",
            sa.String(36),
            sa.ForeignKey("connected_databases.database_id"),
            nullable=False,
        ),
        sa.Column("external_user_id", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("issued_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_auth_tokens_database_user", "auth_tokens", ["database_id", "external_user_id"]
    )

    op.create_table(
        "user_bans",
        sa.Column("ban_id", sa.String(36), primary_key=True),
        sa.Column(
            "database_id",
            sa.String(36),
            sa.ForeignKey("connected_databases.database_id"),
            nullable=False,
        ),
        sa.Column("external_user_id", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("lifted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("lifted_by", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_user_bans_database_user", "user_bans", ["database_id", "external_user_id"]
    )
    # At most one active ban per (database, user)
    op.create_index(
        "uq_user_bans_one_active",
        "user_bans",
        ["database_id", "external_user_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "audit_events",
        sa.Column("event_id", sa.String(36), primary_key=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("actor", sa.Text(), nullable=False),
        sa.Column("database_id", sa.String(36), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_events_action", "audit_events", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_action", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("uq_user_bans_one_active", table_name="user_bans")
    op.drop_index("ix_user_bans_database_user", table_name="user_bans")
    op.drop_table("user_bans")
    op.drop_index("ix_auth_tokens_database_user", table_name="auth_tokens")
    op.drop_table("auth_tokens")
    op.drop_table("schema_mappings")
    op.drop_index("ix_connected_databases_credential", table_name="connected_databases")
    op.drop_table("connected_databases")
