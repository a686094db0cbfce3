import json

import pytest

from contacts_sync.common import ensure_contact
from contacts_sync.models import Contact, HistoryEntry, SocialProfiles
from contacts_sync.serialization import (
    COL,
    COL_COUNT,
    COLUMNS,
    contact_from_json,
    contact_to_json,
    contact_to_row,
    contacts_frame,
    dump_snapshot,
    history_from_rows,
    history_to_rows,
    load_snapshot,
    row_to_contact,
)


def _full_contact(**overrides):
    data = dict(
        id="c-1",
        name="王小明 (Daniel Wang)",
        title="Curator",
        company="Taipei Music Center",
        email="daniel@tmc.example.org",
        secondary_email="dw@mail.example.org",
        phone="+886 912 345 678",
        social_profiles=SocialProfiles(
            website="https://tmc.example.org",
            linkedin="https://linkedin.com/in/dw",
            facebook="",
            instagram="@dw",
        ),
        met_at="Ars Electronica 2024",
        notes="Interested in sound installations",
        tags=["Curator", "Sound Art"],
        ai_summary="Curates the music center's programme.",
        added_at="2024-01-02T03:04:05.000Z",
        updated_at="2024-02-03T04:05:06.000Z",
        image_url="images/abc.jpg",
        importance_score=72,
        last_verified_at="2024-02-03",
        verification_status="Fresh",
        email_valid="Valid",
    )
    data.update(overrides)
    return Contact(**data)


def test_schema_has_22_columns_in_fixed_order():
    assert COL_COUNT == 22
    assert COLUMNS[0] == "id"
    assert COLUMNS[-1] == "emailValid"
    assert COL["tags"] == 13
    assert COL["importanceScore"] == 18


def test_row_round_trip_preserves_every_row_field():
    contact = _full_contact()
    row = contact_to_row(contact)
    assert len(row) == COL_COUNT
    assert row[COL["tags"]] == "Curator, Sound Art"
    assert row[COL["importanceScore"]] == "72"
    assert row_to_contact(row) == contact


def test_short_row_is_padded_with_defaults():
    contact = row_to_contact(["c-9", "Jane"])
    assert contact.id == "c-9"
    assert contact.name == "Jane"
    assert contact.tags == []
    assert contact.importance_score == 0
    assert contact.verification_status == "Unknown"
    assert contact.email_valid == "Unknown"


def test_bad_importance_score_becomes_zero():
    row = contact_to_row(_full_contact())
    row[COL["importanceScore"]] = "high"
    assert row_to_contact(row).importance_score == 0


@pytest.mark.parametrize("raw, expected", [("250", 100), ("-3", 0), ("42", 42)])
def test_importance_score_is_clamped_to_range(raw, expected):
    row = contact_to_row(_full_contact())
    row[COL["importanceScore"]] = raw
    assert row_to_contact(row).importance_score == expected
    assert Contact.from_mapping({"importanceScore": raw}).importance_score == expected


def test_tags_split_on_commas_and_deduped():
    row = [""] * COL_COUNT
    row[COL["tags"]] = "Music,  Art ,Music,,"
    assert row_to_contact(row).tags == ["Music", "Art"]


def test_history_rows_attach_to_contacts_in_order():
    contact = _full_contact(
        history=[
            HistoryEntry("Assistant", "Acme", "2020-01-01T00:00:00.000Z"),
            HistoryEntry("Manager", "Acme", "2022-01-01T00:00:00.000Z"),
        ]
    )
    rows = history_to_rows(contact)
    assert rows[0] == ["c-1", "Assistant", "Acme", "2020-01-01T00:00:00.000Z"]
    rows.append(["", "ignored", "", ""])
    by_id = history_from_rows(rows)
    assert list(by_id) == ["c-1"]
    assert row_to_contact(contact_to_row(contact), by_id["c-1"]) == contact


def test_json_snapshot_round_trip_keeps_history_and_nested_profiles():
    contact = _full_contact(history=[HistoryEntry("Manager", "Acme", "2022-01-01")])
    data = dump_snapshot([contact])
    payload = json.loads(data.decode("utf-8"))
    assert payload[0]["socialProfiles"]["linkedin"] == "https://linkedin.com/in/dw"
    assert payload[0]["tags"] == ["Curator", "Sound Art"]
    assert "王小明" in data.decode("utf-8")
    assert load_snapshot(data) == [contact]


def test_contact_from_json_skips_malformed_history():
    payload = contact_to_json(_full_contact())
    payload["history"] = [{"title": "Manager", "company": "Acme", "date": ""}, "oops"]
    restored = contact_from_json(payload)
    assert restored.history == [HistoryEntry("Manager", "Acme", "")]


def test_load_snapshot_rejects_non_array():
    assert load_snapshot(b"") == []
    with pytest.raises(ValueError):
        load_snapshot(b'{"id": "x"}')


def test_contacts_frame_uses_canonical_columns():
    df = contacts_frame([_full_contact(), _full_contact(id="c-2", name="Jane")])
    assert list(df.columns) == COLUMNS
    assert df.iloc[1]["name"] == "Jane"


def test_ensure_contact_accepts_records_and_mappings():
    contact = Contact(id="1", name="Jane")
    assert ensure_contact(contact) is contact
    assert ensure_contact({"name": " Jane ", "metAt": "Expo"}).met_at == "Expo"
    with pytest.raises(TypeError):
        ensure_contact(["Jane"])


if __name__ == "__main__":
    pytest.main(["-q"])
