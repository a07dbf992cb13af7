import json

from whatsapp_core.contact_index import ContactDirectory, GroupDirectory, GroupEntry


def test_missing_file_is_empty(tmp_path):
    directory = ContactDirectory(tmp_path / "contacts.json")
    assert directory.entries == []
    assert directory.find("anyone") is None


def test_malformed_json_is_empty(tmp_path):
    path = tmp_path / "groups.json"
    path.write_text("{not json", encoding="utf-8")
    assert GroupDirectory(path).find("family") == []


def test_non_array_is_empty(tmp_path):
    path = tmp_path / "groups.json"
    path.write_text(json.dumps({"name": "Family", "jid": "1-2@g.us"}), encoding="utf-8")
    assert GroupDirectory(path).entries == []


def test_reads_contacts_file(tmp_path):
    path = tmp_path / "contacts.json"
    path.write_text(
        json.dumps(
            [
                {"Display Name": "Mom", "Mobile Phone": "+1 (555) 010-2030"},
                {"First Name": "Ana", "Last Name": "Lopez", "Mobile Phone": "+34 600 111 222"},
                {"Display Name": "Landline Only", "Home Phone": "123"},
            ]
        ),
        encoding="utf-8",
    )
    directory = ContactDirectory(path)
    assert directory.find("mom") == "15550102030@s.whatsapp.net"
    assert directory.find("ana lopez") == "34600111222@s.whatsapp.net"
    assert directory.find("landline") is None


def test_skips_malformed_group_entries(tmp_path):
    path = tmp_path / "groups.json"
    path.write_text(
        json.dumps([{"name": "Family", "jid": "1-2@g.us"}, {"name": "No JID"}, "junk"]),
        encoding="utf-8",
    )
    groups = GroupDirectory(path)
    assert [g.jid for g in groups.entries] == ["1-2@g.us"]


def test_file_read_once(tmp_path):
    path = tmp_path / "groups.json"
    path.write_text(json.dumps([{"name": "Family", "jid": "1-2@g.us"}]), encoding="utf-8")
    groups = GroupDirectory(path)
    assert len(groups.find("fam")) == 1
    path.write_text("[]", encoding="utf-8")
    assert len(groups.find("fam")) == 1


def test_group_find_is_substring_case_insensitive():
    groups = GroupDirectory(entries=[GroupEntry(name="Weekend HIKING club", jid="1-2@g.us")])
    assert [g.jid for g in groups.find("hiking")] == ["1-2@g.us"]
    assert groups.find("swimming") == []
