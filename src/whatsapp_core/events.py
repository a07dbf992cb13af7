"""Inbound event ingestion: protocol-library events -> typed messages -> store.

Payloads arrive as loosely typed dicts shaped like the protocol library's
``WAMessage`` / chat / contact objects. They are converted here into one
strict union of content variants; anything unrecognized is dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from whatsapp_core.errors import InvalidAddress, StoreError
from whatsapp_core.jid import is_group_jid, normalize_user_jid
from whatsapp_core.store import MessageRecord, MessageStore, to_datetime
from whatsapp_core.transport import MessagingTransport, TransportLink

logger = logging.getLogger(__name__)

LOGGED_OUT_STATUS = 401
STORED_UPSERT_TYPES = ("notify", "append")
_WRAPPERS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "documentWithCaptionMessage",
)


def _tagged(tag: str, text: str | None) -> str:
    text = (text or "").strip()
    return f"[{tag}] {text}" if text else f"[{tag}]"


@dataclass(frozen=True)
class TextContent:
    text: str

    def render(self) -> str:
        return self.text


@dataclass(frozen=True)
class ImageContent:
    caption: str | None = None

    def render(self) -> str:
        return _tagged("Image", self.caption)


@dataclass(frozen=True)
class VideoContent:
    caption: str | None = None

    def render(self) -> str:
        return _tagged("Video", self.caption)


@dataclass(frozen=True)
class DocumentContent:
    caption: str | None = None
    file_name: str | None = None

    def render(self) -> str:
        return _tagged("Document", self.caption or self.file_name)


@dataclass(frozen=True)
class AudioContent:
    def render(self) -> str:
        return "[Audio]"


@dataclass(frozen=True)
class StickerContent:
    def render(self) -> str:
        return "[Sticker]"


@dataclass(frozen=True)
class LocationContent:
    address: str | None = None
    name: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    def render(self) -> str:
        label = self.address or self.name
        if not label and self.latitude is not None and self.longitude is not None:
            label = f"{self.latitude},{self.longitude}"
        return _tagged("Location", label)


@dataclass(frozen=True)
class ContactCardContent:
    display_name: str

    def render(self) -> str:
        return _tagged("Contact", self.display_name)


@dataclass(frozen=True)
class PollContent:
    name: str

    def render(self) -> str:
        return _tagged("Poll", self.name)


MessageContent = (
    TextContent
    | ImageContent
    | VideoContent
    | DocumentContent
    | AudioContent
    | StickerContent
    | LocationContent
    | ContactCardContent
    | PollContent
)


@dataclass(frozen=True)
class InboundMessage:
    id: str
    chat_jid: str
    sender: str | None
    content: MessageContent
    timestamp: datetime
    is_from_me: bool

    def to_record(self) -> MessageRecord:
        return MessageRecord(
            id=self.id,
            chat_jid=self.chat_jid,
            sender=self.sender,
            content=self.content.render(),
            timestamp=self.timestamp,
            is_from_me=self.is_from_me,
        )


def _unwrap(message: Mapping[str, Any]) -> Mapping[str, Any]:
    for key in _WRAPPERS:
        inner = (message.get(key) or {}).get("message")
        if inner:
            return _unwrap(inner)
    return message


def parse_content(message: Mapping[str, Any] | None) -> MessageContent | None:
    if not message:
        return None
    message = _unwrap(message)
    if message.get("conversation"):
        return TextContent(message["conversation"])
    extended = message.get("extendedTextMessage") or {}
    if extended.get("text"):
        return TextContent(extended["text"])
    if "imageMessage" in message:
        return ImageContent((message["imageMessage"] or {}).get("caption"))
    if "videoMessage" in message:
        return VideoContent((message["videoMessage"] or {}).get("caption"))
    if "documentMessage" in message:
        doc = message["documentMessage"] or {}
        return DocumentContent(doc.get("caption"), doc.get("fileName"))
    if "audioMessage" in message:
        return AudioContent()
    if "stickerMessage" in message:
        return StickerContent()
    if "locationMessage" in message:
        loc = message["locationMessage"] or {}
        return LocationContent(
            address=loc.get("address"),
            name=loc.get("name"),
            latitude=loc.get("degreesLatitude"),
            longitude=loc.get("degreesLongitude"),
        )
    contact = message.get("contactMessage") or {}
    if contact.get("displayName"):
        return ContactCardContent(contact["displayName"])
    for key in ("pollCreationMessage", "pollCreationMessageV2", "pollCreationMessageV3"):
        poll = message.get(key) or {}
        if poll.get("name"):
            return PollContent(poll["name"])
    return None


def _epoch(value: Any) -> int | float | str | None:
    # protobuf Long values arrive as {"low": ..., "high": ...}
    if isinstance(value, Mapping):
        return (int(value.get("high") or 0) << 32) + (int(value.get("low") or 0) & 0xFFFFFFFF)
    return value


def _normalize_sender(jid: str | None) -> str | None:
    if not jid:
        return None
    try:
        return normalize_user_jid(jid)
    except InvalidAddress:
        return jid


def parse_message(raw: Mapping[str, Any]) -> InboundMessage | None:
    """Convert one raw message dict; ``None`` when it has no storable content."""
    key = raw.get("key") or {}
    chat_jid = key.get("remoteJid")
    msg_id = key.get("id")
    if not chat_jid or not msg_id:
        return None
    content = parse_content(raw.get("message"))
    if content is None:
        return None

    from_me = bool(key.get("fromMe"))
    group = is_group_jid(chat_jid)
    sender = key.get("participant")
    if not from_me and not sender and not group:
        sender = chat_jid
    if from_me and not group:
        sender = None

    return InboundMessage(
        id=msg_id,
        chat_jid=chat_jid,
        sender=_normalize_sender(sender),
        content=content,
        timestamp=to_datetime(_epoch(raw.get("messageTimestamp"))),
        is_from_me=from_me,
    )


def contact_name(contact: Mapping[str, Any]) -> str | None:
    return contact.get("name") or contact.get("notify") or contact.get("verifiedName") or None


def sync_live_contacts(store: MessageStore, transport: MessagingTransport) -> int:
    """Copy the transport's live contact directory into chat names; returns how many were written."""
    directory = transport.contacts() or {}
    count = store.upsert_chats(directory.items())
    logger.info("Wrote %d contact names from the live session to the DB", count)
    return count


class EventIngestor:
    """Writes protocol-library events into the store.

    ``process`` accepts the batched event map the library emits
    (``{"messages.upsert": {...}, "chats.update": [...], ...}``).
    When a :class:`TransportLink` is given, a logged-out close disconnects
    it and ends the process, and an opened connection schedules a contact
    sync after ``contact_sync_delay`` seconds.
    """

    def __init__(
        self,
        store: MessageStore,
        link: TransportLink | None = None,
        *,
        contact_sync_delay: float = 3.0,
    ) -> None:
        self.store = store
        self.link = link
        self.contact_sync_delay = contact_sync_delay
        self.contact_sync_task: asyncio.Task | None = None

    def process(self, events: Mapping[str, Any]) -> None:
        if "connection.update" in events:
            self.on_connection_update(events["connection.update"])
        if "messaging-history.set" in events:
            self.on_history_set(events["messaging-history.set"])
        if "messages.upsert" in events:
            self.on_messages_upsert(events["messages.upsert"])
        if "chats.update" in events:
            self.on_chats_update(events["chats.update"])
        for name in ("contacts.upsert", "contacts.update"):
            if name in events:
                count = self.on_contacts(events[name])
                if count:
                    logger.info("Synced %d contact names from %s", count, name)

    def on_connection_update(self, update: Mapping[str, Any]) -> None:
        connection = update.get("connection")
        if connection == "open":
            logger.info("WhatsApp connection opened")
            self._schedule_contact_sync()
        elif connection == "close":
            error = (update.get("lastDisconnect") or {}).get("error") or {}
            status = (error.get("output") or {}).get("statusCode")
            if status == LOGGED_OUT_STATUS:
                if self.link is not None:
                    self.link.disconnect()
                logger.critical("Connection closed: logged out. Re-pair the device and restart.")
                raise SystemExit(1)
            logger.warning("Connection closed (status=%s); transport will reconnect", status)

    def _schedule_contact_sync(self) -> None:
        if self.link is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._sync_contacts()
            return
        self.contact_sync_task = loop.create_task(self._sync_contacts_later())

    async def _sync_contacts_later(self) -> int:
        # The live contact map fills in shortly after the connection opens.
        await asyncio.sleep(self.contact_sync_delay)
        return self._sync_contacts()

    def _sync_contacts(self) -> int:
        transport = self.link.handle if self.link is not None else None
        if transport is None:
            logger.warning("Skipping contact sync: transport is not connected")
            return 0
        try:
            count = sync_live_contacts(self.store, transport)
        except StoreError:
            logger.exception("Automatic contact sync failed")
            return 0
        if count:
            logger.info("Auto-synced %d contact names on connection open.", count)
        return count

    def on_history_set(self, payload: Mapping[str, Any]) -> int:
        for chat in payload.get("chats") or []:
            if not chat.get("id"):
                continue
            ts = chat.get("conversationTimestamp")
            self.store.upsert_chat(
                chat["id"],
                chat.get("name"),
                to_datetime(_epoch(ts)) if ts else None,
            )
        named = self.on_contacts(payload.get("contacts") or [])
        if named:
            logger.info("Synced %d contact names from history.", named)
        stored = self._store_messages(payload.get("messages") or [])
        logger.info("Stored %d messages from history sync.", stored)
        return stored

    def on_messages_upsert(self, payload: Mapping[str, Any]) -> int:
        kind = payload.get("type")
        messages = payload.get("messages") or []
        logger.info("Received messages.upsert type=%s count=%d", kind, len(messages))
        if kind not in STORED_UPSERT_TYPES:
            return 0
        return self._store_messages(messages)

    def on_chats_update(self, updates: list[Mapping[str, Any]]) -> int:
        count = 0
        for update in updates:
            if not update.get("id"):
                continue
            ts = update.get("conversationTimestamp")
            self.store.upsert_chat(
                update["id"],
                update.get("name"),
                to_datetime(_epoch(ts)) if ts else None,
            )
            count += 1
        return count

    def on_contacts(self, contacts: list[Mapping[str, Any]]) -> int:
        pairs = [(c.get("id"), contact_name(c)) for c in contacts]
        return self.store.upsert_chats(pairs)

    def _store_messages(self, raw_messages: list[Mapping[str, Any]]) -> int:
        stored = 0
        for raw in raw_messages:
            parsed = parse_message(raw)
            if parsed is None:
                key = raw.get("key") or {}
                logger.debug(
                    "Skipped message %s in %s (unsupported or empty)",
                    key.get("id"),
                    key.get("remoteJid"),
                )
                continue
            self.store.insert_message(parsed.to_record())
            stored += 1
        return stored
