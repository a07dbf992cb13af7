"""Static fallback lists (contacts.json, groups.json) used when the store has no match.

Each directory reads its file once, on first lookup, and keeps the parsed
entries for the lifetime of the object. A missing or unreadable file is an
empty directory, not an error.
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from whatsapp_core.jid import phone_to_jid

logger = logging.getLogger(__name__)


class ContactEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    display_name: str | None = Field(default=None, alias="Display Name")
    first_name: str | None = Field(default=None, alias="First Name")
    last_name: str | None = Field(default=None, alias="Last Name")
    mobile_phone: str | None = Field(default=None, alias="Mobile Phone")

    @property
    def label(self) -> str:
        if self.display_name:
            return self.display_name
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class GroupEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    jid: str


def _read_entries(path: Path, model: type[BaseModel]) -> list:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.info("Fallback list %s not found; using an empty list", path)
        return []
    except (OSError, ValueError) as e:
        logger.warning("Could not read fallback list %s: %s", path, e)
        return []
    if not isinstance(raw, list):
        logger.warning("Fallback list %s is not a JSON array; ignoring it", path)
        return []
    entries = []
    for item in raw:
        try:
            entries.append(model.model_validate(item))
        except ValidationError:
            logger.debug("Skipping malformed entry in %s: %r", path, item)
    logger.info("Loaded %d entries from %s", len(entries), path)
    return entries


class _LazyDirectory:
    model: type[BaseModel]

    def __init__(self, path: str | Path | None = None, entries: list | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._entries = list(entries) if entries is not None else None

    @property
    def entries(self) -> list:
        if self._entries is None:
            self._entries = _read_entries(self.path, self.model) if self.path else []
        return self._entries


class ContactDirectory(_LazyDirectory):
    model = ContactEntry

    def find(self, query: str) -> str | None:
        """First entry whose name contains ``query`` (case-insensitive), as a phone JID."""
        lower = query.lower()
        for entry in self.entries:
            if lower in entry.label.lower():
                return phone_to_jid(entry.mobile_phone or "")
        return None


class GroupDirectory(_LazyDirectory):
    model = GroupEntry

    def find(self, query: str) -> list[GroupEntry]:
        lower = query.lower()
        return [g for g in self.entries if lower in g.name.lower()]
