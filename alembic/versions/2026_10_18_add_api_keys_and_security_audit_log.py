"""Add api_keys and security_audit_log tables

Revision ID: add_api_keys_and_security_audit_log
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "add_api_keys_and_security_audit_log"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "api_keys",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("hashed_key", sa.String(255), nullable=False),
        sa.Column("key_fingerprint", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("scopes", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column(
            "rate_limit", postgresql.JSONB(astext_type=sa.Text()), nullable=False
        ),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("organization_id", sa.String(36), nullable=True),
        sa.Column("created_by_user_id", sa.String(36), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hashed_key"),
    )
    op.create_index(
        "ix_api_keys_key_fingerprint", "api_keys", ["key_fingerprint"], unique=True
    )
    op.create_index("ix_api_keys_is_active", "api_keys", ["is_active"], unique=False)
    op.create_index(
        "ix_api_keys_organization_id", "api_keys", ["organization_id"], unique=False
    )

    op.create_table(
        "security_audit_log",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("api_key_id", sa.String(36), nullable=True),
        sa.Column("key_fingerprint", sa.String(64), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("organization_id", sa.String(36), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("message", sa.String(1000), nullable=True),
        sa.Column(
            "occurred_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_security_audit_log_event_type",
        "security_audit_log",
        ["event_type"],
        unique=False,
    )
    op.create_index(
        "ix_security_audit_log_occurred_at",
        "security_audit_log",
        ["occurred_at"],
        unique=False,
    )
    op.create_index(
        "ix_security_audit_log_api_key_id",
        "security_audit_log",
        ["api_key_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_security_audit_log_api_key_id", table_name="security_audit_log")
    op.drop_index("ix_security_audit_log_occurred_at", table_name="security_audit_log")
    op.drop_index("ix_security_audit_log_event_type", table_name="security_audit_log")
    op.drop_table("security_audit_log")
    op.drop_index("ix_api_keys_organization_id", table_name="api_keys")
    op.drop_index("ix_api_keys_is_active", table_name="api_keys")
    op.drop_index("ix_api_keys_key_fingerprint", table_name="api_keys")
    op.drop_table("api_keys")
