import inspect
import logging
from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator, Literal

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from whatsapp_core import database
from whatsapp_core.config import settings
from whatsapp_core.contact_index import ContactDirectory, GroupDirectory
from whatsapp_core.events import EventIngestor
from whatsapp_core.models import describe_schema
from whatsapp_core.resolver import RecipientResolver
from whatsapp_core.store import MessageStore
from whatsapp_core.transport import TransportLink, load_transport_factory
from whatsapp_mcp.tools import ToolResult, WhatsAppTools

logger = logging.getLogger("whatsapp_mcp")

store = MessageStore(database.SessionLocal)
link = TransportLink()
ingestor = EventIngestor(store, link, contact_sync_delay=settings.CONTACT_SYNC_DELAY)
tools = WhatsAppTools(
    store,
    RecipientResolver(
        store,
        ContactDirectory(settings.CONTACTS_JSON_PATH),
        GroupDirectory(settings.GROUPS_JSON_PATH),
    ),
    link,
    group_retry_delay=settings.GROUP_SEND_RETRY_DELAY,
)


_started = False


async def start_services() -> None:
    """Create tables and start the transport adapter. Runs once per process."""
    global _started
    if _started:
        return
    _started = True
    if settings.AUTO_CREATE_SCHEMA and database.engine is not None:
        database.init_db(database.engine)
    if not settings.WA_TRANSPORT:
        logger.warning("WA_TRANSPORT is not set; send tools will report the connection as inactive.")
        return
    factory = load_transport_factory(settings.WA_TRANSPORT)
    logger.info("Starting WhatsApp transport from %s", settings.WA_TRANSPORT)
    # The adapter owns its connection lifecycle: it feeds events to the
    # ingestor and calls link.connect()/link.disconnect() as sessions open and close.
    started = factory(ingestor, link)
    if inspect.isawaitable(started):
        await started


@asynccontextmanager
async def lifespan(app: FastMCP) -> AsyncIterator[None]:
    # Entered once per MCP session; over HTTP there can be many.
    await start_services()
    yield


mcp = FastMCP("whatsapp-mcp", lifespan=lifespan)


def _unwrap(result: ToolResult) -> str:
    if result.is_error:
        raise ToolError(result.text)
    return result.text


@mcp.tool()
async def search_contacts(
    query: Annotated[str, Field(min_length=1, description="Search term for contact name or phone number part of JID")],
) -> str:
    """Search contacts and chats by name or phone number."""
    return _unwrap(await tools.search_contacts(query))


@mcp.tool()
async def list_messages(
    chat_jid: Annotated[str, Field(description="The JID of the chat (e.g., '123456@s.whatsapp.net' or 'group@g.us')")],
    limit: Annotated[int, Field(gt=0, description="Max messages per page (default 20)")] = 20,
    page: Annotated[int, Field(ge=0, description="Page number (0-indexed, default 0)")] = 0,
) -> str:
    """List messages of one chat, newest first."""
    return _unwrap(await tools.list_messages(chat_jid, limit, page))


@mcp.tool()
async def list_chats(
    limit: Annotated[int, Field(gt=0, description="Max chats per page (default 20)")] = 20,
    page: Annotated[int, Field(ge=0, description="Page number (0-indexed, default 0)")] = 0,
    sort_by: Annotated[
        Literal["last_active", "name"],
        Field(description="Sort order: 'last_active' (default) or 'name'"),
    ] = "last_active",
    query: Annotated[str | None, Field(description="Optional filter by chat name or JID")] = None,
    include_last_message: Annotated[bool, Field(description="Include last message details (default true)")] = True,
) -> str:
    """List chats with their last message."""
    return _unwrap(await tools.list_chats(limit, page, sort_by, query, include_last_message))


@mcp.tool()
async def get_chat(
    chat_jid: Annotated[str, Field(description="The JID of the chat to retrieve")],
    include_last_message: Annotated[bool, Field(description="Include last message details (default true)")] = True,
) -> str:
    """Get one chat by JID."""
    return _unwrap(await tools.get_chat(chat_jid, include_last_message))


@mcp.tool()
async def get_message_context(
    message_id: Annotated[str, Field(description="The ID of the target message to get context around")],
    before: Annotated[int, Field(ge=0, description="Number of messages before (default 5)")] = 5,
    after: Annotated[int, Field(ge=0, description="Number of messages after (default 5)")] = 5,
) -> str:
    """Get a message with the messages around it in the same chat."""
    return _unwrap(await tools.get_message_context(message_id, before, after))


@mcp.tool()
async def send_message(
    recipient: Annotated[
        str,
        Field(
            description="Recipient: contact name (e.g., 'Rahul'), phone number (e.g., '919919003141'), "
            "or JID (e.g., '919919003141@s.whatsapp.net')"
        ),
    ],
    message: Annotated[str, Field(min_length=1, description="The text message to send")],
) -> str:
    """Send a text message to a person or group."""
    return _unwrap(await tools.send_message(recipient, message))


@mcp.tool()
async def search_messages(
    query: Annotated[str, Field(min_length=1, description="The text content to search for within messages")],
    chat_jid: Annotated[
        str | None,
        Field(description="Optional: JID of a chat to search within. If omitted, searches all chats."),
    ] = None,
    limit: Annotated[int, Field(gt=0, description="Max messages per page (default 10)")] = 10,
    page: Annotated[int, Field(ge=0, description="Page number (0-indexed, default 0)")] = 0,
) -> str:
    """Search message text, optionally within one chat."""
    return _unwrap(await tools.search_messages(query, chat_jid, limit, page))


@mcp.tool()
async def send_media(
    recipient: Annotated[str, Field(description="Recipient: contact name, phone number, or JID")],
    media_type: Annotated[
        Literal["image", "video", "document", "audio"], Field(description="Type of media to send")
    ],
    media_path: Annotated[str, Field(description="Absolute local file path to the media file")],
    caption: Annotated[str | None, Field(description="Optional caption for image, video, or document")] = None,
    file_name: Annotated[str | None, Field(description="Optional filename override (used for documents)")] = None,
) -> str:
    """Send an image, video, document or audio file."""
    return _unwrap(await tools.send_media(recipient, media_type, media_path, caption, file_name))


@mcp.tool()
async def reply_to_message(
    message_id: Annotated[str, Field(description="The ID of the message to reply to")],
    reply_text: Annotated[str, Field(min_length=1, description="The reply text to send")],
) -> str:
    """Reply to a stored message, quoting it."""
    return _unwrap(await tools.reply_to_message(message_id, reply_text))


@mcp.tool()
async def send_reaction(
    message_id: Annotated[str, Field(description="The ID of the message to react to")],
    emoji: Annotated[
        str,
        Field(description="The emoji to react with (e.g., '👍'). Use empty string '' to remove reaction."),
    ],
) -> str:
    """React to a stored message with an emoji."""
    return _unwrap(await tools.send_reaction(message_id, emoji))


@mcp.tool()
async def mark_as_read(
    chat_jid: Annotated[str, Field(description="The JID of the chat to mark as read")],
) -> str:
    """Mark a chat as read up to its newest stored message."""
    return _unwrap(await tools.mark_as_read(chat_jid))


@mcp.tool()
async def get_group_members(
    group_jid: Annotated[str, Field(description="The JID of the group (e.g., '1234567890-1234567890@g.us')")],
) -> str:
    """List the members of a group with their admin flags."""
    return _unwrap(await tools.get_group_members(group_jid))


@mcp.tool()
async def sync_contacts() -> str:
    """Copy contact names from the live WhatsApp session into the local database."""
    return _unwrap(await tools.sync_contacts())


@mcp.resource("schema://whatsapp/main", name="db_schema", mime_type="text/plain")
def db_schema() -> str:
    """Table and column layout of the local message database."""
    return describe_schema()

