"""WhatsApp schema: chats and messages keyed by JID."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC. SQLite drops tzinfo otherwise."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class Chat(Base):
    __tablename__ = "chats"

    jid: Mapped[str] = mapped_column(String(256), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    last_message_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    # Denormalized from the newest message so list_chats needs no join.
    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sender: Mapped[str | None] = mapped_column(String(256), nullable=True)
    last_is_from_me: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    messages: Mapped[list["Message"]] = relationship(back_populates="chat")

    @property
    def is_group(self) -> bool:
        return self.jid.endswith("@g.us")


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    chat_jid: Mapped[str] = mapped_column(
        ForeignKey("chats.jid"), primary_key=True
    )
    sender: Mapped[str | None] = mapped_column(String(256), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_from_me: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    chat: Mapped["Chat"] = relationship(back_populates="messages")

    __table_args__ = (
        Index("ix_messages_chat_jid_timestamp", "chat_jid", "timestamp"),
        Index("ix_messages_id", "id"),
    )


def describe_schema() -> str:
    """Plain-text table/column layout, for clients that want to reason about the data."""
    lines = []
    for table in Base.metadata.sorted_tables:
        cols = []
        for col in table.columns:
            flags = []
            if col.primary_key:
                flags.append("PK")
            for fk in col.foreign_keys:
                flags.append(f"FK -> {fk.target_fullname}")
            if not col.nullable and not col.primary_key:
                flags.append("NOT NULL")
            suffix = f" [{', '.join(flags)}]" if flags else ""
            cols.append(f"  {col.name} {col.type.compile()}{suffix}")
        lines.append(f"TABLE {table.name} (\n" + ",\n".join(cols) + "\n)")
    return "\n".join(lines)
