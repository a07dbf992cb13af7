"""Turn a free-form recipient (name, phone number, JID) into exactly one JID."""

import logging

from whatsapp_core.contact_index import ContactDirectory, GroupDirectory
from whatsapp_core.errors import AmbiguousContact, AmbiguousGroup, InvalidAddress, NotFound
from whatsapp_core.jid import (
    is_group_jid,
    is_phone_number,
    jid_user,
    looks_like_jid,
    normalize_user_jid,
    phone_to_jid,
)
from whatsapp_core.store import MessageStore

logger = logging.getLogger(__name__)

STORE_MATCH_LIMIT = 10


class RecipientResolver:
    """Resolution order: JID, phone number, store contacts, contacts.json, groups.json.

    The synced store is authoritative; the static lists are consulted only
    when it has nothing. Group names are checked last since most name
    lookups target people.
    """

    def __init__(
        self,
        store: MessageStore,
        contacts: ContactDirectory,
        groups: GroupDirectory,
    ) -> None:
        self.store = store
        self.contacts = contacts
        self.groups = groups

    def resolve(self, recipient: str) -> str:
        recipient = (recipient or "").strip()
        if not recipient:
            raise InvalidAddress("Recipient is empty. Provide a contact name, phone number or JID.")

        if looks_like_jid(recipient):
            # Group JIDs must never go through user normalization.
            if is_group_jid(recipient):
                if not jid_user(recipient) or recipient.count("@") != 1:
                    raise InvalidAddress(f'Invalid JID format: "{recipient}"')
                return recipient
            return normalize_user_jid(recipient)

        if is_phone_number(recipient):
            return phone_to_jid(recipient)

        matches = self.store.search_contacts(recipient, STORE_MATCH_LIMIT)
        if len(matches) == 1:
            return matches[0].jid
        if len(matches) > 1:
            raise AmbiguousContact(
                recipient, [(c.name or "Unknown", c.jid) for c in matches]
            )

        jid = self.contacts.find(recipient)
        if jid:
            logger.info("Resolved %r via contacts.json -> %s", recipient, jid)
            return jid

        groups = self.groups.find(recipient)
        if len(groups) == 1:
            logger.info("Resolved %r via groups.json -> %s", recipient, groups[0].jid)
            return groups[0].jid
        if len(groups) > 1:
            ordered = sorted(groups, key=lambda g: (g.name.lower(), g.jid))
            raise AmbiguousGroup(recipient, [(g.name, g.jid) for g in ordered])

        raise NotFound(
            f'No contact or group found with name "{recipient}". '
            "Try using a phone number or full JID instead."
        )

