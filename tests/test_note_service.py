"""Tests for the read-path and page-append service."""
import uuid

import pytest

from notetree.exceptions import ErrorCode, PageNotFoundError, ValidationError


class TestGetNote:
    """Single-note reads."""

    def test_get_note_with_parent_properties(self, note_service, make_note, add_props):
        parent = make_note("parent")
        add_props(parent, ("color", "blue"), ("token", "abc", 3))
        child = make_note("child {size::s}", parent=parent)

        view = note_service.get_note(child, include_parent_properties=True)

        assert view.content == "child {size::s}"
        assert [p.value for p in view.properties["size"]] == ["s"]
        assert view.parent_properties == {"color": [{"value": "blue"}]}

    def test_get_note_internal(self, note_service, make_note, add_props):
        parent = make_note("parent")
        add_props(parent, ("token", "abc", 3))
        child = make_note("child", parent=parent)

        view = note_service.get_note(child, include_internal=True, include_parent_properties=True)

        assert view.parent_properties == {"token": [{"value": "abc"}]}

    def test_parent_properties_only_on_request(self, note_service, make_note):
        parent = make_note("parent {color::blue}")
        child = make_note("child", parent=parent)
        assert note_service.get_note(child).parent_properties is None

    def test_missing_or_inactive_note(self, note_service, store, make_note):
        assert note_service.get_note(str(uuid.uuid4())) is None
        note_id = make_note("x")
        with store.transaction() as session:
            store.update_note(session, note_id, {"active": False})
        assert note_service.get_note(note_id) is None


class TestPageNotes:
    def test_notes_in_display_order(self, note_service, page, make_note):
        second = make_note("b", order_index=1)
        first = make_note("a", order_index=0)
        assert [n.id for n in note_service.get_page_notes(page.id)] == [first, second]

    def test_missing_page(self, note_service):
        with pytest.raises(PageNotFoundError):
            note_service.get_page_notes(str(uuid.uuid4()))


class TestSearchEnrichment:
    """parent_properties attached to search hits."""

    def test_hits_get_parent_properties(self, note_service, make_note):
        parent = make_note("{project::apollo}")
        child = make_note("launch checklist", parent=parent)
        hits = [
            {"note_id": child, "snippet": "launch"},
            {"id": parent, "snippet": "apollo"},
            {"snippet": "page hit"},
        ]

        enriched = note_service.enrich_search_results(hits)

        assert enriched[0]["parent_properties"] == {"project": [{"value": "apollo"}]}
        assert enriched[1]["parent_properties"] == {}
        assert enriched[2]["parent_properties"] == {}
        assert "parent_properties" not in hits[0]

    def test_unknown_note_in_hit(self, note_service):
        enriched = note_service.enrich_search_results([{"note_id": str(uuid.uuid4())}])
        assert enriched[0]["parent_properties"] == {}


class TestAppendToPage:
    """Appending notes to a page by name."""

    def test_creates_page_and_note(self, note_service, store):
        result = note_service.append_to_page("Daily Log", "woke up {mood::good}")

        assert result.created is True
        assert result.page.name == "Daily Log"
        assert len(result.appended_notes) == 1
        assert result.appended_notes[0].ok
        assert result.appended_notes[0].note.page_id == result.page.id

    def test_existing_page(self, note_service, page):
        result = note_service.append_to_page("test page", ["one", {"content": "two"}])
        assert result.created is False
        assert result.page.id == page.id
        assert [r.note.content for r in result.appended_notes] == ["one", "two"]

    def test_nested_notes_with_temp_ids(self, note_service):
        result = note_service.append_to_page(
            "Outline",
            [
                {"content": "chapter {part::1}", "client_temp_id": "ch"},
                {"content": "section", "parent_note_id": "ch"},
            ],
            include_parent_properties=True,
        )
        chapter, section = result.appended_notes
        assert section.note.parent_note_id == chapter.note.id
        assert section.note.parent_properties == {"part": [{"value": "1"}]}

    def test_invalid_input(self, note_service):
        with pytest.raises(ValidationError) as excinfo:
            note_service.append_to_page("  ", "x")
        assert excinfo.value.code is ErrorCode.PAGE_NAME_REQUIRED
        with pytest.raises(ValidationError):
            note_service.append_to_page("Page", [])
        with pytest.raises(ValidationError):
            note_service.append_to_page("Page", [{"text": "no content key"}])

    def test_to_dict(self, note_service):
        data = note_service.append_to_page("Inbox", "hello").to_dict()
        assert data["created"] is True
        assert data["page"]["name"] == "Inbox"
        assert data["appended_notes"][0]["status"] == "success"
