"""WhatsApp JID helpers: shape checks and the canonical user normalization."""

import re

from whatsapp_core.errors import InvalidAddress

USER_SERVER = "s.whatsapp.net"
LEGACY_USER_SERVER = "c.us"
GROUP_SERVER = "g.us"

_PHONE_RE = re.compile(r"^\+?\d[\d\s\-]{6,}$")
MIN_PHONE_DIGITS = 7


def is_group_jid(jid: str | None) -> bool:
    return bool(jid) and jid.endswith("@" + GROUP_SERVER)


def looks_like_jid(value: str) -> bool:
    return "@" in value


def normalize_user_jid(jid: str) -> str:
    """Return ``user@server`` without agent/device suffixes; ``c.us`` becomes ``s.whatsapp.net``.

    ``"4912345:12@s.whatsapp.net"`` -> ``"4912345@s.whatsapp.net"``
    """
    user_combined, sep, server = jid.strip().partition("@")
    if not sep or not server or "@" in server:
        raise InvalidAddress(f'Invalid JID format: "{jid}"')
    user = user_combined.split(":", 1)[0].split("_", 1)[0]
    if not user:
        raise InvalidAddress(f'Invalid JID format: "{jid}"')
    if server == LEGACY_USER_SERVER:
        server = USER_SERVER
    return f"{user}@{server}"


def is_phone_number(value: str) -> bool:
    value = value.strip()
    if not _PHONE_RE.match(value):
        return False
    return len(re.sub(r"\D", "", value)) >= MIN_PHONE_DIGITS


def phone_to_jid(phone: str) -> str | None:
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return None
    return f"{digits}@{USER_SERVER}"


def jid_user(jid: str | None) -> str:
    return (jid or "").split("@", 1)[0]
