"""initial_schema: chats and messages keyed by JID.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "chats",
        sa.Column("jid", sa.String(256), nullable=False),
        sa.Column("name", sa.String(512), nullable=True),
        sa.Column("last_message_time", sa.DateTime(), nullable=True),
        sa.Column("last_message", sa.Text(), nullable=True),
        sa.Column("last_sender", sa.String(256), nullable=True),
        sa.Column("last_is_from_me", sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint("jid"),
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("chat_jid", sa.String(256), nullable=False),
        sa.Column("sender", sa.String(256), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("is_from_me", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(["chat_jid"], ["chats.jid"]),
        sa.PrimaryKeyConstraint("id", "chat_jid"),
    )
    op.create_index("ix_messages_chat_jid_timestamp", "messages", ["chat_jid", "timestamp"], unique=False)
    op.create_index("ix_messages_id", "messages", ["id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_messages_id", table_name="messages")
    op.drop_index("ix_messages_chat_jid_timestamp", table_name="messages")
    op.drop_table("messages")
    op.drop_table("chats")
