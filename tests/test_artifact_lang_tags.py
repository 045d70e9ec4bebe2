import json

import pytest

from book_catalog.core.errors import ParseFailure
from book_catalog.core.models import BOOKS
from book_catalog.core.store import MemoryStore
from book_catalog.jobs.artifact_lang_tags import (
    parse_title_map,
    set_artifact_lang_tags,
    with_artifact_lang_tag,
)


def _store() -> MemoryStore:
    return MemoryStore(
        {
            BOOKS: {
                "b1": {
                    "objectId": "b1",
                    "title": "Moon",
                    "allTitles": json.dumps({"en": "Moon", "fr": "Lune"}),
                    "show": {"pdf": {"user": False}},
                },
                "b2": {"objectId": "b2", "title": "Sun", "allTitles": "{not json"},
                "b3": {"objectId": "b3", "title": "Star", "allTitles": json.dumps({"en": "Star", "es": "Star"})},
                "b4": {"objectId": "b4", "title": "Sky"},
            }
        }
    )


def test_sets_lang_tag_on_single_match() -> None:
    store = _store()
    result = set_artifact_lang_tags(store)
    assert result.scanned == 4
    assert result.updated == 1

    show = store.get(BOOKS, "b1")["show"]
    assert show["pdf"] == {"user": False, "langTag": "en"}
    assert show["epub"] == {"langTag": "en"}
    assert "show" not in store.get(BOOKS, "b2")
    assert "show" not in store.get(BOOKS, "b3")


def test_dry_run_writes_nothing() -> None:
    store = _store()
    result = set_artifact_lang_tags(store, dry_run=True)
    assert result.updated == 0
    assert store.get(BOOKS, "b1")["show"] == {"pdf": {"user": False}}


def test_parse_title_map_rejects_bad_input() -> None:
    with pytest.raises(ParseFailure):
        parse_title_map("{not json")
    with pytest.raises(ParseFailure):
        parse_title_map("[1, 2]")


def test_with_artifact_lang_tag_leaves_input_alone() -> None:
    show = {"epub": {"librarian": True}}
    out = with_artifact_lang_tag(show, "sw")
    assert out["epub"] == {"librarian": True, "langTag": "sw"}
    assert show == {"epub": {"librarian": True}}
