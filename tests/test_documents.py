import logging

import pytest

from conftest import ReadOnlyBlobStore
from contacts_sync.documents import (
    ArtifactSync,
    document_filename,
    find_name_collisions,
    render_markdown,
)
from contacts_sync.models import Contact, HistoryEntry, SocialProfiles
from contacts_sync.normalization import legacy_filename, sanitize_filename


@pytest.mark.parametrize(
    "name",
    ["A/B", ' Jane "JD" Doe ', "a//b::c", "王小明 (Daniel)", "", "???", "x\\y|z<>"],
)
def test_sanitize_is_idempotent(name):
    once = sanitize_filename(name)
    assert sanitize_filename(once) == once


def test_sanitize_and_legacy_schemes():
    assert document_filename("A/B") == "A_B.md"
    assert sanitize_filename("  a:*?b  ") == "a_b"
    assert legacy_filename("Jane O'Neil") == "jane_o_neil"


def test_render_markdown_layout():
    contact = Contact(
        id="c-1",
        name="Jane Doe",
        title="Curator",
        company="Acme",
        email="jane@acme.io",
        social_profiles=SocialProfiles(website="https://acme.io", linkedin="https://li/jd"),
        tags=["Curator", "Music"],
        added_at="2024-01-01T00:00:00.000Z",
        image_url="images/jd.jpg",
        importance_score=40,
        history=[HistoryEntry("Manager", "Acme", "2023-05-01"), HistoryEntry("Intern", "Globex")],
    )
    text = render_markdown(contact)
    lines = text.splitlines()
    assert lines[0] == "---"
    assert 'id: "c-1"' in lines
    assert 'tags: ["Curator", "Music"]' in lines
    assert "importance_score: 40" in lines
    assert 'verification_status: "Unknown"' in lines
    assert "# Jane Doe" in lines
    assert "![Card Image](images/jd.jpg)" in lines
    assert "**Curator** @ Acme" in lines
    assert "- Met At: Not specified" in lines
    assert "- Phone: N/A" in lines
    assert "- Website: https://acme.io" in lines
    assert "- LinkedIn: https://li/jd" in lines
    assert not any(line.startswith("- Facebook") for line in lines)
    assert "No summary generated yet." in lines
    assert "- Manager @ Acme (2023-05-01)" in lines
    assert "- Intern @ Globex (Past)" in lines

    headings = [line for line in lines if line.startswith("## ")]
    assert headings == [
        "## Relationship Context",
        "## Contact Details",
        "## Online Presence",
        "## AI Summary",
        "## Notes",
        "## Career History",
    ]


async def test_rename_moves_document_and_removes_legacy(blobs, artifacts):
    contact = Contact(id="c-1", name="A/B")
    assert await artifacts.write(contact)
    assert await blobs.exists("Cards/A_B.md")

    await blobs.put("Cards/a_b.md", b"old naming", content_type="text/markdown")
    renamed = contact.replace(name="C")
    assert await artifacts.write(renamed, previous_name="A/B")

    assert await blobs.list("Cards/") == ["Cards/C.md"]
    content = (await blobs.get("Cards/C.md")).decode("utf-8")
    assert "# C" in content


async def test_write_without_rename_overwrites_in_place(blobs, artifacts):
    contact = Contact(id="c-1", name="Jane", notes="first")
    await artifacts.write(contact)
    await artifacts.write(contact.replace(notes="second"), previous_name="Jane")
    assert await blobs.list("Cards/") == ["Cards/Jane.md"]
    assert "second" in (await blobs.get("Cards/Jane.md")).decode("utf-8")


async def test_orphan_sweep_deletes_exactly_the_orphan(blobs, artifacts):
    for name in ("X", "Y", "Z"):
        await blobs.put(f"Cards/{name}.md", b"#", content_type="text/markdown")
    await blobs.put("Cards/.DS_Store", b"", content_type="application/octet-stream")
    contacts = [Contact(id="1", name="X"), Contact(id="2", name="Y")]

    assert await artifacts.sweep_orphans(contacts, dry_run=True) == ["Cards/Z.md"]
    assert await blobs.exists("Cards/Z.md")

    assert await artifacts.sweep_orphans(contacts) == ["Cards/Z.md"]
    assert await blobs.list("Cards/") == ["Cards/.DS_Store", "Cards/X.md", "Cards/Y.md"]


async def test_orphan_sweep_matches_on_basename(blobs, artifacts):
    await blobs.put("Cards/archive/X.md", b"#", content_type="text/markdown")
    await blobs.put("Cards/archive/Gone.md", b"#", content_type="text/markdown")
    contacts = [Contact(id="1", name="X")]
    assert await artifacts.sweep_orphans(contacts) == ["Cards/archive/Gone.md"]
    assert await blobs.exists("Cards/archive/X.md")


@pytest.mark.parametrize("prefix", ["", "/", "  "])
def test_empty_documents_prefix_is_rejected(blobs, prefix):
    with pytest.raises(ValueError):
        ArtifactSync(blobs, prefix=prefix)


async def test_sweep_never_touches_keys_outside_the_prefix(blobs):
    await blobs.put("data/contacts.json", b"[]", content_type="application/json")
    await blobs.put("images/card.jpg", b"\xff", content_type="image/jpeg")
    sync = ArtifactSync(blobs, prefix="/Cards/")
    assert sync.prefix == "Cards/"
    assert await sync.sweep_orphans([]) == []
    assert await blobs.list() == ["data/contacts.json", "images/card.jpg"]


async def test_remove_is_best_effort(artifacts):
    assert await artifacts.remove(Contact(id="1", name="Never Written"))


async def test_name_collision_is_logged(artifacts, caplog):
    first = Contact(id="1", name="A/B")
    second = Contact(id="2", name="A:B")
    with caplog.at_level(logging.WARNING, logger="contacts_sync.documents"):
        await artifacts.write(second, others=[first, second])
    assert "Name collision" in caplog.text
    assert find_name_collisions([first, second]) == {"A_B.md": ["1", "2"]}


async def test_write_failure_is_logged_not_raised(tmp_path, caplog):
    sync = ArtifactSync(ReadOnlyBlobStore(tmp_path), prefix="Cards")
    with caplog.at_level(logging.ERROR, logger="contacts_sync.documents"):
        assert await sync.write(Contact(id="1", name="Jane")) is False
    assert "Failed to write document" in caplog.text
    assert sync.document_key("Jane") == "Cards/Jane.md"


if __name__ == "__main__":
    pytest.main(["-q"])
