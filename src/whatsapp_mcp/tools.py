"""Tool layer: validates arguments, calls resolver/store/transport, returns a ToolResult.

Nothing raised below this layer crosses the tool boundary except a logged-out
transport, which ends the process.
"""

import functools
import json
import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from whatsapp_core.errors import (
    BridgeError,
    DispatchFailure,
    InvalidAddress,
    InvalidArgument,
    MessageNotFound,
    NotFound,
    StoreError,
    TransportUnavailable,
)
from whatsapp_core.events import (
    AudioContent,
    DocumentContent,
    ImageContent,
    VideoContent,
    sync_live_contacts,
)
from whatsapp_core.jid import is_group_jid, jid_user
from whatsapp_core.resolver import RecipientResolver
from whatsapp_core.store import SORT_OPTIONS, ChatRecord, MessageRecord, MessageStore
from whatsapp_core.transport import (
    MEDIA_TYPES,
    LoggedOutError,
    MediaPayload,
    MessageRef,
    MessagingTransport,
    TransportError,
    TransportLink,
    send_text,
)

logger = logging.getLogger(__name__)

CONTACT_SEARCH_LIMIT = 20


@dataclass(frozen=True)
class ToolResult:
    text: str
    is_error: bool = False

    @classmethod
    def ok(cls, text: str) -> "ToolResult":
        return cls(text)

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls(text, is_error=True)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def format_message(msg: MessageRecord) -> dict[str, Any]:
    if msg.sender:
        sender_display = jid_user(msg.sender)
    else:
        sender_display = "Me" if msg.is_from_me else "Unknown"
    return {
        "id": msg.id,
        "chat_jid": msg.chat_jid,
        "chat_name": msg.chat_name or "Unknown Chat",
        "sender_jid": msg.sender,
        "sender_display": sender_display,
        "content": msg.content,
        "timestamp": _iso(msg.timestamp),
        "is_from_me": msg.is_from_me,
    }


def format_chat(chat: ChatRecord) -> dict[str, Any]:
    if chat.last_sender:
        last_sender_display = jid_user(chat.last_sender)
    else:
        last_sender_display = "Me" if chat.last_is_from_me else None
    return {
        "jid": chat.jid,
        "name": chat.name or jid_user(chat.jid) or "Unknown Chat",
        "is_group": chat.is_group,
        "last_message_time": _iso(chat.last_message_time),
        "last_message_preview": chat.last_message,
        "last_sender_jid": chat.last_sender,
        "last_sender_display": last_sender_display,
        "last_is_from_me": chat.last_is_from_me,
    }


def _media_content(media_type: str, caption: str | None, file_name: str) -> str:
    if media_type == "image":
        return ImageContent(caption).render()
    if media_type == "video":
        return VideoContent(caption).render()
    if media_type == "document":
        return DocumentContent(caption, file_name).render()
    return AudioContent().render()


def _ref(msg: MessageRecord) -> MessageRef:
    return MessageRef(
        chat_jid=msg.chat_jid,
        id=msg.id,
        from_me=msg.is_from_me,
        participant=msg.sender,
        content=msg.content,
    )


def _check_paging(limit: int, page: int) -> None:
    if limit <= 0:
        raise InvalidArgument(f"limit must be a positive integer, got {limit}.")
    if page < 0:
        raise InvalidArgument(f"page must be zero or greater, got {page}.")


def tool_boundary(failure: str):
    """Convert everything raised by a tool into a ToolResult; ``failure`` prefixes unexpected errors."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self, *args, **kwargs) -> ToolResult:
            try:
                return await fn(self, *args, **kwargs)
            except LoggedOutError:
                logger.critical("WhatsApp session logged out during %s; exiting", fn.__name__)
                raise SystemExit(1)
            except BridgeError as e:
                logger.warning("[MCP Tool] %s: %s", fn.__name__, e)
                return ToolResult.error(str(e))
            except TransportError as e:
                logger.error("[MCP Tool Error] %s transport failure: %s", fn.__name__, e)
                return ToolResult.error(str(DispatchFailure(f"{failure}: {e}")))
            except Exception as e:
                logger.exception("[MCP Tool Error] %s failed", fn.__name__)
                return ToolResult.error(f"{failure}: {e}")

        return wrapper

    return decorator


class WhatsAppTools:
    def __init__(
        self,
        store: MessageStore,
        resolver: RecipientResolver,
        link: TransportLink,
        *,
        group_retry_delay: float = 2.0,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.link = link
        self.group_retry_delay = group_retry_delay

    def _transport(self) -> MessagingTransport:
        handle = self.link.handle
        if handle is None:
            raise TransportUnavailable()
        return handle

    def _echo(self, msg_id: str, chat_jid: str, content: str) -> None:
        """Store a message we just sent; the transport's own echo may arrive later and is idempotent."""
        try:
            self.store.insert_message(
                MessageRecord(
                    id=msg_id,
                    chat_jid=chat_jid,
                    content=content,
                    timestamp=datetime.now(timezone.utc),
                    sender=None,
                    is_from_me=True,
                )
            )
        except StoreError:
            logger.warning("Sent message %s to %s but could not store it locally", msg_id, chat_jid)

    def _target(self, message_id: str) -> MessageRecord:
        target = self.store.get_messages_around(message_id, 0, 0).target
        if target is None:
            raise MessageNotFound(f"Message with ID {message_id} not found in local database.")
        return target

    # -- read tools -----------------------------------------------------

    @tool_boundary("Error searching contacts")
    async def search_contacts(self, query: str) -> ToolResult:
        logger.info('[MCP Tool] Executing search_contacts with query: "%s"', query)
        if not query or not query.strip():
            raise InvalidArgument("query must not be empty.")
        contacts = self.store.search_contacts(query.strip(), CONTACT_SEARCH_LIMIT)
        if not contacts:
            return ToolResult.ok(f'No contacts found matching "{query}".')
        return ToolResult.ok(
            _json([{"jid": c.jid, "name": c.name or jid_user(c.jid)} for c in contacts])
        )

    @tool_boundary("Error listing messages")
    async def list_messages(self, chat_jid: str, limit: int = 20, page: int = 0) -> ToolResult:
        logger.info(
            "[MCP Tool] Executing list_messages for chat %s, limit=%s, page=%s", chat_jid, limit, page
        )
        _check_paging(limit, page)
        messages = self.store.list_messages(chat_jid, limit, page)
        if not messages and page == 0:
            return ToolResult.ok(f"No messages found for chat {chat_jid}.")
        if not messages:
            return ToolResult.ok(f"No more messages found on page {page} for chat {chat_jid}.")
        return ToolResult.ok(_json([format_message(m) for m in messages]))

    @tool_boundary("Error listing chats")
    async def list_chats(
        self,
        limit: int = 20,
        page: int = 0,
        sort_by: str = "last_active",
        query: str | None = None,
        include_last_message: bool = True,
    ) -> ToolResult:
        logger.info(
            "[MCP Tool] Executing list_chats: limit=%s, page=%s, sort=%s, query=%s, lastMsg=%s",
            limit,
            page,
            sort_by,
            query,
            include_last_message,
        )
        _check_paging(limit, page)
        if sort_by not in SORT_OPTIONS:
            raise InvalidArgument(f"sort_by must be one of: {', '.join(SORT_OPTIONS)}.")
        chats = self.store.list_chats(limit, page, sort_by, query or None, include_last_message)
        matching = f' matching "{query}"' if query else ""
        if not chats and page == 0:
            return ToolResult.ok(f"No chats found{matching}.")
        if not chats:
            return ToolResult.ok(f"No more chats found on page {page}{matching}.")
        return ToolResult.ok(_json([format_chat(c) for c in chats]))

    @tool_boundary("Error retrieving chat")
    async def get_chat(self, chat_jid: str, include_last_message: bool = True) -> ToolResult:
        logger.info("[MCP Tool] Executing get_chat for %s, lastMsg=%s", chat_jid, include_last_message)
        chat = self.store.get_chat(chat_jid, include_last_message)
        if chat is None:
            raise NotFound(f"Chat with JID {chat_jid} not found.")
        return ToolResult.ok(_json(format_chat(chat)))

    @tool_boundary("Error retrieving message context")
    async def get_message_context(self, message_id: str, before: int = 5, after: int = 5) -> ToolResult:
        logger.info(
            "[MCP Tool] Executing get_message_context for msg %s, before=%s, after=%s",
            message_id,
            before,
            after,
        )
        if before < 0 or after < 0:
            raise InvalidArgument("before and after must be zero or greater.")
        context = self.store.get_messages_around(message_id, before, after)
        if context.target is None:
            raise NotFound(f"Message with ID {message_id} not found.")
        return ToolResult.ok(
            _json(
                {
                    "target": format_message(context.target),
                    "before": [format_message(m) for m in context.before],
                    "after": [format_message(m) for m in context.after],
                }
            )
        )

    @tool_boundary("Error searching messages")
    async def search_messages(
        self,
        query: str,
        chat_jid: str | None = None,
        limit: int = 10,
        page: int = 0,
    ) -> ToolResult:
        scope = f"in chat {chat_jid}" if chat_jid else "across all chats"
        logger.info(
            '[MCP Tool] Executing search_messages %s, query="%s", limit=%s, page=%s',
            scope,
            query,
            limit,
            page,
        )
        if not query or not query.strip():
            raise InvalidArgument("query must not be empty.")
        _check_paging(limit, page)
        messages = self.store.search_messages(query, chat_jid or None, limit, page)
        if not messages and page == 0:
            return ToolResult.ok(f'No messages found containing "{query}" {scope}.')
        if not messages:
            return ToolResult.ok(
                f'No more messages found containing "{query}" on page {page} {scope}.'
            )
        return ToolResult.ok(_json([format_message(m) for m in messages]))

    # -- write / dispatch tools -----------------------------------------

    @tool_boundary("Error sending message")
    async def send_message(self, recipient: str, message: str) -> ToolResult:
        logger.info("[MCP Tool] Executing send_message to %s", recipient)
        transport = self._transport()
        if not message:
            raise InvalidArgument("message must not be empty.")
        jid = self.resolver.resolve(recipient)
        msg_id = await send_text(transport, jid, message, retry_delay=self.group_retry_delay)
        if not msg_id:
            raise DispatchFailure(f"Failed to send message to {jid}. See server logs for details.")
        logger.info("Message sent to %s (id=%s)", jid, msg_id)
        self._echo(msg_id, jid, message)
        return ToolResult.ok(f"Message sent successfully to {jid} (ID: {msg_id}).")

    @tool_boundary("Error sending media")
    async def send_media(
        self,
        recipient: str,
        media_type: str,
        media_path: str,
        caption: str | None = None,
        file_name: str | None = None,
    ) -> ToolResult:
        logger.info("[MCP Tool] Executing send_media to %s, type=%s", recipient, media_type)
        transport = self._transport()
        if media_type not in MEDIA_TYPES:
            raise InvalidArgument(f"media_type must be one of: {', '.join(MEDIA_TYPES)}.")
        if not media_path:
            raise InvalidArgument("media_path must not be empty.")
        jid = self.resolver.resolve(recipient)
        resolved_name = file_name or Path(media_path).name
        payload = MediaPayload(
            media_type=media_type,
            path=media_path,
            mimetype=mimetypes.guess_type(media_path)[0] or "application/octet-stream",
            file_name=resolved_name,
            caption=None if media_type == "audio" else caption,
        )
        msg_id = await transport.send_media(jid, payload)
        if not msg_id:
            raise DispatchFailure(f"Failed to send media to {jid}.")
        logger.info("Media sent to %s (id=%s)", jid, msg_id)
        self._echo(msg_id, jid, _media_content(media_type, payload.caption, resolved_name))
        return ToolResult.ok(f"Media sent successfully to {jid} (ID: {msg_id}).")

    @tool_boundary("Error sending reply")
    async def reply_to_message(self, message_id: str, reply_text: str) -> ToolResult:
        logger.info("[MCP Tool] Executing reply_to_message for msg %s", message_id)
        transport = self._transport()
        if not reply_text:
            raise InvalidArgument("reply_text must not be empty.")
        target = self._target(message_id)
        msg_id = await send_text(
            transport,
            target.chat_jid,
            reply_text,
            quoted=_ref(target),
            retry_delay=self.group_retry_delay,
        )
        if not msg_id:
            raise DispatchFailure("Failed to send reply.")
        self._echo(msg_id, target.chat_jid, reply_text)
        return ToolResult.ok(f"Reply sent successfully (ID: {msg_id}).")

    @tool_boundary("Error sending reaction")
    async def send_reaction(self, message_id: str, emoji: str) -> ToolResult:
        logger.info("[MCP Tool] Executing send_reaction for msg %s, emoji=%s", message_id, emoji)
        transport = self._transport()
        target = self._target(message_id)
        await transport.react(target.chat_jid, _ref(target), emoji)
        if not emoji:
            return ToolResult.ok(f"Reaction removed from message {message_id}.")
        return ToolResult.ok(f'Reaction "{emoji}" sent successfully on message {message_id}.')

    @tool_boundary("Error marking chat as read")
    async def mark_as_read(self, chat_jid: str) -> ToolResult:
        logger.info("[MCP Tool] Executing mark_as_read for chat %s", chat_jid)
        transport = self._transport()
        latest = self.store.list_messages(chat_jid, 1, 0)
        if not latest:
            raise MessageNotFound(f"No messages found for chat {chat_jid}.")
        await transport.mark_read(chat_jid, _ref(latest[0]))
        return ToolResult.ok(f"Chat {chat_jid} marked as read.")

    @tool_boundary("Error getting group members")
    async def get_group_members(self, group_jid: str) -> ToolResult:
        logger.info("[MCP Tool] Executing get_group_members for group %s", group_jid)
        transport = self._transport()
        if not is_group_jid(group_jid):
            raise InvalidAddress(
                f'Invalid group JID: "{group_jid}". Group JIDs must end with "@g.us".'
            )
        members = await transport.fetch_group_members(group_jid)
        if not members:
            return ToolResult.ok(f"No members found for group {group_jid} (or group does not exist).")
        return ToolResult.ok(
            _json(
                [
                    {
                        "jid": m.jid,
                        "phone": m.phone,
                        "is_admin": m.is_admin or m.is_super_admin,
                        "is_super_admin": m.is_super_admin,
                    }
                    for m in members
                ]
            )
        )

    @tool_boundary("Error syncing contacts")
    async def sync_contacts(self) -> ToolResult:
        logger.info("[MCP Tool] Executing sync_contacts")
        transport = self._transport()
        count = sync_live_contacts(self.store, transport)
        if count == 0:
            return ToolResult.ok(
                "No contact names were found to sync. The contacts map may not be populated "
                "yet; try again in a few seconds after the connection has fully loaded."
            )
        return ToolResult.ok(
            f"Synced {count} contact names from WhatsApp into the local database. "
            "You can now search contacts by name."
        )
