# fluent_gateway/db/migrations/versions/0002_translation_revision.py
"""
为 fg_translations 增加 revision 列。

写入翻译缓存时以 revision 做比较并交换，并发写入的一方检测到冲突后重新合并。
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "fg_translations",
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    with op.batch_alter_table("fg_translations") as batch_op:
        batch_op.drop_column("revision")
