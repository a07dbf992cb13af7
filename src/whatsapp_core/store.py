"""Chat/message store: idempotent writes plus the read queries every tool needs."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Generator, Iterable

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from whatsapp_core.database import db_session
from whatsapp_core.errors import StoreError
from whatsapp_core.models import Chat, Message

logger = logging.getLogger(__name__)

SORT_LAST_ACTIVE = "last_active"
SORT_NAME = "name"
SORT_OPTIONS = (SORT_LAST_ACTIVE, SORT_NAME)

# Epoch values at or above this are milliseconds (10**11 s is the year 5138).
_MS_THRESHOLD = 10**11


def to_datetime(value: datetime | int | float | str | None) -> datetime:
    """Normalize an epoch (seconds or milliseconds) or datetime to aware UTC."""
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str) and not value.strip().lstrip("-").replace(".", "", 1).isdigit():
        return to_datetime(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    seconds = float(value)
    if seconds >= _MS_THRESHOLD:
        seconds /= 1000.0
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


@dataclass(frozen=True)
class MessageRecord:
    id: str
    chat_jid: str
    content: str
    timestamp: datetime
    sender: str | None = None
    is_from_me: bool = False
    chat_name: str | None = None


@dataclass(frozen=True)
class ChatRecord:
    jid: str
    name: str | None = None
    last_message_time: datetime | None = None
    last_message: str | None = None
    last_sender: str | None = None
    last_is_from_me: bool | None = None

    @property
    def is_group(self) -> bool:
        return self.jid.endswith("@g.us")


@dataclass(frozen=True)
class MessageContext:
    target: MessageRecord | None
    before: list[MessageRecord] = field(default_factory=list)
    after: list[MessageRecord] = field(default_factory=list)


def _message_record(msg: Message, chat_name: str | None) -> MessageRecord:
    return MessageRecord(
        id=msg.id,
        chat_jid=msg.chat_jid,
        content=msg.content,
        timestamp=msg.timestamp,
        sender=msg.sender,
        is_from_me=bool(msg.is_from_me),
        chat_name=chat_name,
    )


def _chat_record(chat: Chat, include_last_message: bool = True) -> ChatRecord:
    record = ChatRecord(
        jid=chat.jid,
        name=chat.name,
        last_message_time=chat.last_message_time,
        last_message=chat.last_message,
        last_sender=chat.last_sender,
        last_is_from_me=chat.last_is_from_me,
    )
    if not include_last_message:
        record = replace(record, last_message=None, last_sender=None, last_is_from_me=None)
    return record


def _contains(column, query: str):
    return func.lower(column).contains(query.lower(), autoescape=True)


class MessageStore:
    """Single source of truth for chats and messages.

    Every public method runs in its own session. Writes commit as a unit or
    roll back; database failures are re-raised as :class:`StoreError`.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        try:
            with db_session(self._session_factory) as db:
                yield db
        except SQLAlchemyError as e:
            logger.exception("Store operation failed")
            raise StoreError(f"Database error: {e}") from e

    # -- writes ---------------------------------------------------------

    def upsert_chat(
        self,
        jid: str,
        name: str | None = None,
        last_message_time: datetime | int | float | None = None,
    ) -> None:
        if not jid:
            return
        with self._session() as db:
            chat = db.get(Chat, jid)
            if chat is None:
                chat = Chat(jid=jid)
                db.add(chat)
            if name and name.strip():
                chat.name = name.strip()
            if last_message_time is not None:
                chat.last_message_time = to_datetime(last_message_time)

    def upsert_chats(self, entries: Iterable[tuple[str, str | None]]) -> int:
        """Write (jid, name) pairs in one transaction; returns how many were written."""
        count = 0
        with self._session() as db:
            for jid, name in entries:
                if not jid or not name or not name.strip():
                    continue
                chat = db.get(Chat, jid)
                if chat is None:
                    chat = Chat(jid=jid)
                    db.add(chat)
                chat.name = name.strip()
                count += 1
        return count

    def insert_message(self, message: MessageRecord) -> None:
        ts = to_datetime(message.timestamp)
        with self._session() as db:
            chat = db.get(Chat, message.chat_jid)
            if chat is None:
                chat = Chat(jid=message.chat_jid)
                db.add(chat)
            previous_newest = db.execute(
                select(func.max(Message.timestamp)).where(Message.chat_jid == message.chat_jid)
            ).scalar_one()
            row = db.get(Message, (message.id, message.chat_jid))
            if row is None:
                row = Message(id=message.id, chat_jid=message.chat_jid)
                db.add(row)
            row.sender = message.sender
            row.content = message.content
            row.timestamp = ts
            row.is_from_me = message.is_from_me
            db.flush()

            newest = db.execute(
                select(Message)
                .where(Message.chat_jid == message.chat_jid)
                .order_by(Message.timestamp.desc(), Message.id.desc())
                .limit(1)
            ).scalar_one()
            chat.last_message = newest.content
            chat.last_sender = newest.sender
            chat.last_is_from_me = newest.is_from_me
            # A later time set by upsert_chat (no matching message stored) is kept.
            if (
                chat.last_message_time is None
                or newest.timestamp > chat.last_message_time
                or (previous_newest is not None and chat.last_message_time <= previous_newest)
            ):
                chat.last_message_time = newest.timestamp

    # -- reads ----------------------------------------------------------

    def list_messages(self, chat_jid: str, limit: int = 20, page: int = 0) -> list[MessageRecord]:
        stmt = (
            select(Message, Chat.name)
            .join(Chat, Message.chat_jid == Chat.jid)
            .where(Message.chat_jid == chat_jid)
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .limit(limit)
            .offset(page * limit)
        )
        with self._session() as db:
            return [_message_record(msg, name) for msg, name in db.execute(stmt).all()]

    def list_chats(
        self,
        limit: int = 20,
        page: int = 0,
        sort_by: str = SORT_LAST_ACTIVE,
        query: str | None = None,
        include_last_message: bool = True,
    ) -> list[ChatRecord]:
        if sort_by not in SORT_OPTIONS:
            raise ValueError(f"sort_by must be one of {', '.join(SORT_OPTIONS)}, got {sort_by!r}")
        stmt = select(Chat)
        if query:
            stmt = stmt.where(or_(_contains(Chat.jid, query), _contains(Chat.name, query)))
        if sort_by == SORT_NAME:
            stmt = stmt.order_by(func.lower(func.coalesce(Chat.name, Chat.jid)), Chat.jid)
        else:
            stmt = stmt.order_by(Chat.last_message_time.desc().nulls_last(), Chat.jid)
        stmt = stmt.limit(limit).offset(page * limit)
        with self._session() as db:
            return [_chat_record(c, include_last_message) for c in db.execute(stmt).scalars()]

    def get_chat(self, jid: str, include_last_message: bool = True) -> ChatRecord | None:
        with self._session() as db:
            chat = db.get(Chat, jid)
            return _chat_record(chat, include_last_message) if chat is not None else None

    def get_messages_around(self, message_id: str, before: int = 5, after: int = 5) -> MessageContext:
        """Return the message plus up to ``before``/``after`` neighbours from its own chat.

        Ids are only unique per chat. When the same id exists in several
        chats the earliest (timestamp, chat_jid) match is used.
        """
        with self._session() as db:
            found = db.execute(
                select(Message, Chat.name)
                .join(Chat, Message.chat_jid == Chat.jid)
                .where(Message.id == message_id)
                .order_by(Message.timestamp, Message.chat_jid)
                .limit(1)
            ).first()
            if found is None:
                return MessageContext(target=None)
            target, chat_name = found
            same_chat = select(Message).where(Message.chat_jid == target.chat_jid)

            earlier: list[Message] = []
            if before > 0:
                earlier = list(
                    db.execute(
                        same_chat.where(
                            or_(
                                Message.timestamp < target.timestamp,
                                and_(Message.timestamp == target.timestamp, Message.id < target.id),
                            )
                        )
                        .order_by(Message.timestamp.desc(), Message.id.desc())
                        .limit(before)
                    ).scalars()
                )
                earlier.reverse()
            later: list[Message] = []
            if after > 0:
                later = list(
                    db.execute(
                        same_chat.where(
                            or_(
                                Message.timestamp > target.timestamp,
                                and_(Message.timestamp == target.timestamp, Message.id > target.id),
                            )
                        )
                        .order_by(Message.timestamp, Message.id)
                        .limit(after)
                    ).scalars()
                )
            return MessageContext(
                target=_message_record(target, chat_name),
                before=[_message_record(m, chat_name) for m in earlier],
                after=[_message_record(m, chat_name) for m in later],
            )

    def search_messages(
        self,
        query: str,
        chat_jid: str | None = None,
        limit: int = 10,
        page: int = 0,
    ) -> list[MessageRecord]:
        stmt = (
            select(Message, Chat.name)
            .join(Chat, Message.chat_jid == Chat.jid)
            .where(_contains(Message.content, query))
        )
        if chat_jid:
            stmt = stmt.where(Message.chat_jid == chat_jid)
        stmt = (
            stmt.order_by(Message.timestamp.desc(), Message.id.desc())
            .limit(limit)
            .offset(page * limit)
        )
        with self._session() as db:
            return [_message_record(msg, name) for msg, name in db.execute(stmt).all()]

    def search_contacts(self, query: str, limit: int = 20) -> list[ChatRecord]:
        """Chats whose name or JID contains ``query``; named chats first, then most recent."""
        stmt = (
            select(Chat)
            .where(or_(_contains(Chat.name, query), _contains(Chat.jid, query)))
            .order_by(
                Chat.name.is_(None),
                Chat.last_message_time.desc().nulls_last(),
                Chat.jid,
            )
            .limit(limit)
        )
        with self._session() as db:
            return [_chat_record(c) for c in db.execute(stmt).scalars()]

    def count_messages(self, chat_jid: str | None = None) -> int:
        stmt = select(func.count()).select_from(Message)
        if chat_jid:
            stmt = stmt.where(Message.chat_jid == chat_jid)
        with self._session() as db:
            return int(db.execute(stmt).scalar_one())
