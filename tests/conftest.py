"""Pytest fixtures for whatsapp-mcp tests: in-memory store, fallback lists, fake transport."""

from datetime import datetime, timedelta, timezone
from typing import Iterator

import pytest

from whatsapp_core.contact_index import ContactDirectory, ContactEntry, GroupDirectory, GroupEntry
from whatsapp_core.database import create_db_engine, init_db, make_session_factory
from whatsapp_core.resolver import RecipientResolver
from whatsapp_core.store import MessageRecord, MessageStore
from whatsapp_core.transport import GroupMember, TransportLink
from whatsapp_mcp.tools import WhatsAppTools

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeTransport:
    """Records every call; behaviour is tuned per test through attributes."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, object]] = []
        self.media: list[tuple[str, object]] = []
        self.reactions: list[tuple[str, object, str]] = []
        self.reads: list[tuple[str, object]] = []
        self.send_errors: list[Exception] = []
        self.send_result: str | None = "SENT-1"
        self.members: dict[str, list[GroupMember]] = {}
        self.directory: dict[str, str | None] = {}

    async def send_text(self, jid, text, quoted=None):
        self.sent.append((jid, text, quoted))
        if self.send_errors:
            raise self.send_errors.pop(0)
        return self.send_result

    async def send_media(self, jid, payload):
        self.media.append((jid, payload))
        return self.send_result

    async def mark_read(self, jid, ref):
        self.reads.append((jid, ref))

    async def react(self, jid, ref, emoji):
        self.reactions.append((jid, ref, emoji))

    async def fetch_group_members(self, jid):
        return self.members.get(jid, [])

    def contacts(self):
        return dict(self.directory)


def make_message(
    msg_id: str,
    chat_jid: str,
    content: str = "hello",
    minutes: int = 0,
    sender: str | None = None,
    is_from_me: bool = False,
) -> MessageRecord:
    return MessageRecord(
        id=msg_id,
        chat_jid=chat_jid,
        content=content,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        sender=sender,
        is_from_me=is_from_me,
    )


@pytest.fixture
def store() -> Iterator[MessageStore]:
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield MessageStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def contacts() -> ContactDirectory:
    return ContactDirectory(
        entries=[
            ContactEntry.model_validate({"Display Name": "Dady", "Mobile Phone": "+91 99190 03141"}),
            ContactEntry.model_validate({"First Name": "Priya", "Last Name": "Sharma", "Mobile Phone": "98765-43210"}),
            ContactEntry.model_validate({"Display Name": "No Phone Person"}),
        ]
    )


@pytest.fixture
def groups() -> GroupDirectory:
    return GroupDirectory(
        entries=[
            GroupEntry(name="Sharma Family", jid="120363001111111111@g.us"),
            GroupEntry(name="Family Trip 2024", jid="120363002222222222@g.us"),
            GroupEntry(name="Office Lunch", jid="123456789-987654321@g.us"),
        ]
    )


@pytest.fixture
def resolver(store, contacts, groups) -> RecipientResolver:
    return RecipientResolver(store, contacts, groups)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def link(transport) -> TransportLink:
    return TransportLink(transport)


@pytest.fixture
def tools(store, resolver, link) -> WhatsAppTools:
    return WhatsAppTools(store, resolver, link, group_retry_delay=0)


@pytest.fixture
def offline_tools(store, resolver) -> WhatsAppTools:
    return WhatsAppTools(store, resolver, TransportLink(), group_retry_delay=0)
