"""Boundary to the WhatsApp protocol library.

The protocol client (sessions, encryption, reconnection) lives outside this
package. It is plugged in as any object implementing :class:`MessagingTransport`
and published to the tools through a :class:`TransportLink`.
"""

import asyncio
import importlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from whatsapp_core.jid import is_group_jid

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("image", "video", "document", "audio")


class TransportError(Exception):
    pass


class SessionsNotReadyError(TransportError):
    """Encryption sessions with group participants are not established yet (transient)."""


class LoggedOutError(TransportError):
    """The account was logged out; nothing can be recovered without re-pairing."""


@dataclass(frozen=True)
class MessageRef:
    """Enough of a stored message to quote it, react to it or mark it read."""

    chat_jid: str
    id: str
    from_me: bool
    participant: str | None = None
    content: str | None = None


@dataclass(frozen=True)
class MediaPayload:
    media_type: str
    path: str
    mimetype: str
    file_name: str
    caption: str | None = None


@dataclass(frozen=True)
class GroupMember:
    jid: str
    is_admin: bool = False
    is_super_admin: bool = False

    @property
    def phone(self) -> str:
        return self.jid.split("@", 1)[0]


@runtime_checkable
class MessagingTransport(Protocol):
    async def send_text(self, jid: str, text: str, quoted: MessageRef | None = None) -> str | None:
        """Send text; returns the new message id, or None when the send was not accepted."""
        ...

    async def send_media(self, jid: str, payload: MediaPayload) -> str | None: ...

    async def mark_read(self, jid: str, ref: MessageRef) -> None: ...

    async def react(self, jid: str, ref: MessageRef, emoji: str) -> None: ...

    async def fetch_group_members(self, jid: str) -> list[GroupMember]: ...

    def contacts(self) -> dict[str, str | None]:
        """Live contact directory: JID -> best known display name."""
        ...


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class Connected:
    handle: MessagingTransport


TransportState = Disconnected | Connected


class TransportLink:
    """Process-wide holder of the current transport state."""

    def __init__(self, handle: MessagingTransport | None = None) -> None:
        self.state: TransportState = Connected(handle) if handle is not None else Disconnected()

    def connect(self, handle: MessagingTransport) -> None:
        self.state = Connected(handle)
        logger.info("Transport connected: %s", type(handle).__name__)

    def disconnect(self) -> None:
        self.state = Disconnected()
        logger.info("Transport disconnected")

    @property
    def handle(self) -> MessagingTransport | None:
        if isinstance(self.state, Connected):
            return self.state.handle
        return None


async def send_text(
    transport: MessagingTransport,
    jid: str,
    text: str,
    *,
    quoted: MessageRef | None = None,
    retry_delay: float = 2.0,
) -> str | None:
    """Send text, retrying a group send once if participant sessions were not ready.

    The first send to a group can be rejected while the library establishes
    sessions with every participant; a second attempt normally succeeds.
    """
    attempts = 2 if is_group_jid(jid) else 1
    for attempt in range(1, attempts + 1):
        try:
            return await transport.send_text(jid, text, quoted=quoted)
        except SessionsNotReadyError:
            if attempt >= attempts:
                raise
            logger.warning(
                "Group sessions not ready for %s (attempt %d); retrying in %.1fs",
                jid,
                attempt,
                retry_delay,
            )
            await asyncio.sleep(retry_delay)
    return None


def load_transport_factory(path: str) -> Callable[..., Any]:
    """Import ``"package.module:callable"``."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"WA_TRANSPORT must look like 'package.module:factory', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)
