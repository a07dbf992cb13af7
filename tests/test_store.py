"""MessageStore against an in-memory SQLite database."""

import os
from datetime import datetime, timedelta, timezone

import pytest

from conftest import BASE_TIME, make_message
from whatsapp_core.database import create_db_engine, init_db, make_session_factory
from whatsapp_core.models import Base
from whatsapp_core.store import MessageStore, to_datetime

CHAT = "919919003141@s.whatsapp.net"
OTHER = "918888888888@s.whatsapp.net"
GROUP = "120363001111111111@g.us"


def _fill(store, chat_jid=CHAT, count=10):
    for i in range(count):
        store.insert_message(make_message(f"m{i:02d}", chat_jid, f"message {i}", minutes=i))


class TestToDatetime:
    def test_seconds_and_milliseconds_agree(self):
        assert to_datetime(1_700_000_000) == to_datetime(1_700_000_000_000)

    def test_numeric_string(self):
        assert to_datetime("1700000000") == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    def test_iso_string_with_z(self):
        assert to_datetime("2025-03-01T12:00:00Z") == BASE_TIME

    def test_naive_datetime_is_utc(self):
        assert to_datetime(datetime(2025, 3, 1, 12, 0)) == BASE_TIME

    def test_none_is_now(self):
        before = datetime.now(timezone.utc)
        assert to_datetime(None) >= before


class TestInsertMessage:
    def test_duplicate_insert_keeps_one_row(self, store):
        msg = make_message("ABC", CHAT, "hi")
        store.insert_message(msg)
        store.insert_message(msg)
        assert store.count_messages(CHAT) == 1

    def test_reinsert_overwrites_fields(self, store):
        store.insert_message(make_message("ABC", CHAT, "first"))
        store.insert_message(make_message("ABC", CHAT, "edited"))
        [msg] = store.list_messages(CHAT)
        assert msg.content == "edited"

    def test_same_id_in_two_chats_are_distinct(self, store):
        store.insert_message(make_message("ABC", CHAT))
        store.insert_message(make_message("ABC", OTHER))
        assert store.count_messages() == 2

    def test_creates_chat_row(self, store):
        store.insert_message(make_message("ABC", CHAT, "hi", minutes=3))
        chat = store.get_chat(CHAT)
        assert chat is not None
        assert chat.name is None
        assert chat.last_message == "hi"
        assert chat.last_message_time == BASE_TIME + timedelta(minutes=3)

    def test_older_message_does_not_replace_last_message(self, store):
        store.insert_message(make_message("new", CHAT, "latest", minutes=5, sender=CHAT))
        store.insert_message(make_message("old", CHAT, "history", minutes=1))
        chat = store.get_chat(CHAT)
        assert chat.last_message == "latest"
        assert chat.last_sender == CHAT
        assert chat.last_message_time == BASE_TIME + timedelta(minutes=5)

    def test_reinsert_moving_newest_earlier_refreshes_chat(self, store):
        store.insert_message(make_message("A", CHAT, "a", minutes=5))
        store.insert_message(make_message("B", CHAT, "b", minutes=3))
        store.insert_message(make_message("A", CHAT, "a", minutes=1))
        chat = store.get_chat(CHAT)
        [newest] = store.list_messages(CHAT, limit=1)
        assert newest.id == "B"
        assert chat.last_message == "b"
        assert chat.last_message_time == newest.timestamp == BASE_TIME + timedelta(minutes=3)

    def test_duplicate_insert_keeps_chat_fields(self, store):
        msg = make_message("ABC", CHAT, "hi", minutes=2, sender=CHAT)
        store.insert_message(msg)
        store.insert_message(msg)
        chat = store.get_chat(CHAT)
        assert (chat.last_message, chat.last_sender) == ("hi", CHAT)
        assert chat.last_message_time == BASE_TIME + timedelta(minutes=2)

    def test_later_chat_time_from_upsert_is_kept(self, store):
        store.upsert_chat(CHAT, "Rahul", BASE_TIME + timedelta(minutes=10))
        store.insert_message(make_message("A", CHAT, "a", minutes=1))
        chat = store.get_chat(CHAT)
        assert chat.last_message == "a"
        assert chat.last_message_time == BASE_TIME + timedelta(minutes=10)

    def test_from_me_flag_on_chat(self, store):
        store.insert_message(make_message("x", CHAT, "mine", is_from_me=True))
        assert store.get_chat(CHAT).last_is_from_me is True


class TestUpsertChat:
    def test_name_set_and_kept_when_missing(self, store):
        store.upsert_chat(CHAT, "Rahul")
        store.upsert_chat(CHAT, None)
        assert store.get_chat(CHAT).name == "Rahul"

    def test_blank_name_is_ignored(self, store):
        store.upsert_chat(CHAT, "Rahul")
        store.upsert_chat(CHAT, "   ")
        assert store.get_chat(CHAT).name == "Rahul"

    def test_millisecond_timestamp(self, store):
        store.upsert_chat(CHAT, "Rahul", int(BASE_TIME.timestamp() * 1000))
        assert store.get_chat(CHAT).last_message_time == BASE_TIME

    def test_upsert_chats_counts_named_entries(self, store):
        count = store.upsert_chats([(CHAT, "Rahul"), (OTHER, None), ("", "Nobody"), (GROUP, "Family")])
        assert count == 2
        assert store.get_chat(GROUP).name == "Family"
        assert store.get_chat(OTHER) is None


class TestListMessages:
    def test_newest_first(self, store):
        _fill(store, count=3)
        assert [m.id for m in store.list_messages(CHAT)] == ["m02", "m01", "m00"]

    def test_pages_are_disjoint_and_contiguous(self, store):
        _fill(store, count=10)
        pages = [[m.id for m in store.list_messages(CHAT, limit=3, page=p)] for p in range(4)]
        assert pages[0] == ["m09", "m08", "m07"]
        assert pages[1] == ["m06", "m05", "m04"]
        assert pages[3] == ["m00"]
        flat = [i for page in pages for i in page]
        assert len(flat) == len(set(flat)) == 10

    def test_page_past_end_is_empty(self, store):
        _fill(store, count=3)
        assert store.list_messages(CHAT, limit=3, page=1) == []

    def test_only_requested_chat(self, store):
        _fill(store, CHAT, 2)
        _fill(store, OTHER, 4)
        assert len(store.list_messages(CHAT)) == 2

    def test_chat_name_attached(self, store):
        store.upsert_chat(CHAT, "Rahul")
        store.insert_message(make_message("a", CHAT))
        assert store.list_messages(CHAT)[0].chat_name == "Rahul"


class TestMessagesAround:
    def test_window(self, store):
        _fill(store, count=10)
        ctx = store.get_messages_around("m05", before=2, after=2)
        assert ctx.target.id == "m05"
        assert [m.id for m in ctx.before] == ["m03", "m04"]
        assert [m.id for m in ctx.after] == ["m06", "m07"]

    def test_window_clipped_at_edges(self, store):
        _fill(store, count=3)
        ctx = store.get_messages_around("m00", before=5, after=5)
        assert ctx.before == []
        assert [m.id for m in ctx.after] == ["m01", "m02"]

    def test_neighbours_stay_in_target_chat(self, store):
        _fill(store, CHAT, 3)
        store.insert_message(make_message("x", OTHER, minutes=1))
        ctx = store.get_messages_around("m01", 5, 5)
        assert all(m.chat_jid == CHAT for m in ctx.before + ctx.after)

    def test_unknown_id(self, store):
        assert store.get_messages_around("nope").target is None

    def test_duplicate_id_uses_earliest(self, store):
        store.insert_message(make_message("dup", OTHER, minutes=9))
        store.insert_message(make_message("dup", CHAT, minutes=1))
        assert store.get_messages_around("dup", 0, 0).target.chat_jid == CHAT


class TestListChats:
    @pytest.fixture
    def chats(self, store):
        store.upsert_chat(CHAT, "bravo")
        store.insert_message(make_message("a", CHAT, "from bravo", minutes=1))
        store.upsert_chat(OTHER, "Alpha")
        store.insert_message(make_message("b", OTHER, "from alpha", minutes=5))
        store.upsert_chat("999@s.whatsapp.net")
        return store

    def test_last_active_puts_empty_chats_last(self, chats):
        assert [c.jid for c in chats.list_chats()] == [OTHER, CHAT, "999@s.whatsapp.net"]

    def test_name_sort_falls_back_to_jid(self, chats):
        names = [c.name for c in chats.list_chats(sort_by="name")]
        assert names == [None, "Alpha", "bravo"]

    def test_query_matches_name_case_insensitively(self, chats):
        assert [c.jid for c in chats.list_chats(query="ALP")] == [OTHER]

    def test_query_matches_jid(self, chats):
        assert [c.jid for c in chats.list_chats(query="999")] == ["999@s.whatsapp.net"]

    def test_wildcards_are_literal(self, chats):
        assert chats.list_chats(query="%") == []

    def test_without_last_message(self, chats):
        chat = chats.list_chats(limit=1, include_last_message=False)[0]
        assert chat.last_message is None
        assert chat.last_sender is None
        assert chat.last_message_time is not None

    def test_paging(self, chats):
        assert [c.jid for c in chats.list_chats(limit=2, page=1)] == ["999@s.whatsapp.net"]

    def test_bad_sort(self, store):
        with pytest.raises(ValueError):
            store.list_chats(sort_by="size")


class TestSearch:
    def test_search_messages_case_insensitive(self, store):
        store.insert_message(make_message("a", CHAT, "Dinner at eight"))
        store.insert_message(make_message("b", OTHER, "no plans"))
        assert [m.id for m in store.search_messages("DINNER")] == ["a"]

    def test_search_messages_in_chat(self, store):
        store.insert_message(make_message("a", CHAT, "lunch?"))
        store.insert_message(make_message("b", OTHER, "lunch!", minutes=1))
        assert [m.id for m in store.search_messages("lunch")] == ["b", "a"]
        assert [m.id for m in store.search_messages("lunch", chat_jid=CHAT)] == ["a"]

    def test_search_contacts_named_first(self, store):
        store.upsert_chat("111@s.whatsapp.net", None, BASE_TIME + timedelta(days=1))
        store.upsert_chat("222@s.whatsapp.net", "Rahul", BASE_TIME)
        found = store.search_contacts("s.whatsapp")
        assert [c.jid for c in found] == ["222@s.whatsapp.net", "111@s.whatsapp.net"]

    def test_search_contacts_by_phone_part(self, store):
        store.upsert_chat(CHAT, "Dad")
        assert [c.jid for c in store.search_contacts("99190")] == [CHAT]

    def test_search_contacts_limit(self, store):
        for i in range(5):
            store.upsert_chat(f"10{i}@s.whatsapp.net", f"Test {i}")
        assert len(store.search_contacts("test", limit=3)) == 3


@pytest.mark.integration
def test_store_on_configured_database():
    """Same write/read path against TEST_DATABASE_URL (e.g. Postgres)."""
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")
    engine = create_db_engine(url)
    init_db(engine)
    try:
        store = MessageStore(make_session_factory(engine))
        store.upsert_chat(GROUP, "Sharma Family")
        _fill(store, GROUP, 3)
        assert [m.id for m in store.list_messages(GROUP, limit=2)] == ["m02", "m01"]
        assert store.list_chats(query="sharma")[0].last_message == "message 2"
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()
