# fluent_gateway/db/migrations/versions/0001_initial_gateway_schema.py
"""
Fluent Gateway 数据库初始化。

- fg_installations / fg_auth_credentials：安装实例与凭证，凭证随安装实例级联删除。
- fg_translations：翻译缓存，(word, language) 为主键。
- fg_usage_counters：按窗口的调用方用量，配额判断的唯一依据。
- fg_cost_ledger：全局成本账本。

兼容 PostgreSQL 与 SQLite。
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "fg_installations",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("client_version", sa.String(32)),
        sa.Column("platform", sa.String(32)),
        sa.Column(
            "registered_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "last_seen",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_fg_installations_last_seen", "fg_installations", ["last_seen"])

    op.create_table(
        "fg_auth_credentials",
        sa.Column(
            "installation_id",
            sa.String(128),
            sa.ForeignKey("fg_installations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("shared_key", sa.String(64), nullable=False),
        sa.Column("refresh_token_hash", sa.String(64), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("refresh_expires_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "fg_translations",
        sa.Column("word", sa.String(64), primary_key=True),
        sa.Column("language", sa.String(8), primary_key=True),
        sa.Column("translation", sa.String(128), nullable=False),
        sa.Column("pronunciation", sa.String(128)),
        sa.Column("context_variations", sa.JSON(), nullable=False),
        sa.Column("etymology", sa.Text()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "fg_usage_counters",
        sa.Column("installation_id", sa.String(128), primary_key=True),
        sa.Column("language", sa.String(8), primary_key=True),
        sa.Column("kind", sa.String(16), primary_key=True),
        sa.Column("window", sa.String(8), primary_key=True),
        sa.Column("window_start", sa.Integer(), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index(
        "ix_fg_usage_counters_window_start", "fg_usage_counters", ["window_start"]
    )

    op.create_table(
        "fg_cost_ledger",
        sa.Column("window", sa.String(8), primary_key=True),
        sa.Column("window_start", sa.Integer(), primary_key=True),
        sa.Column(
            "accumulated_usd", sa.Float(), nullable=False, server_default="0"
        ),
    )


def downgrade() -> None:
    op.drop_table("fg_cost_ledger")
    op.drop_index("ix_fg_usage_counters_window_start", table_name="fg_usage_counters")
    op.drop_table("fg_usage_counters")
    op.drop_table("fg_translations")
    op.drop_table("fg_auth_credentials")
    op.drop_index("ix_fg_installations_last_seen", table_name="fg_installations")
    op.drop_table("fg_installations")
