from datetime import datetime, timedelta, timezone

import pytest

from book_catalog.core.errors import CatalogError, JobTerminalFailure
from book_catalog.core.models import BOOKS, LANGUAGES
from book_catalog.core.store import MemoryStore
from book_catalog.jobs.language_counts import compute_language_usage, update_language_records

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _ptr(language_id: str) -> dict:
    return {"__type": "Pointer", "className": "language", "objectId": language_id}


def _lang(language_id: str, age: timedelta) -> dict:
    return {"objectId": language_id, "isoCode": language_id, "createdAt": (NOW - age).isoformat()}


def _make_store() -> MemoryStore:
    old = timedelta(days=30)
    books = {
        "b1": {"objectId": "b1", "langPointers": [_ptr("en"), _ptr("fr")], "inCirculation": True},
        "b2": {"objectId": "b2", "langPointers": [_ptr("en")], "draft": True},
        "b3": {"objectId": "b3", "langPointers": [_ptr("de")], "inCirculation": False},
        "b4": {"objectId": "b4", "langPointers": ["es"], "rebrand": True},
        "b5": {"objectId": "b5", "langPointers": [_ptr("en")]},
    }
    languages = {
        "en": _lang("en", old),
        "fr": _lang("fr", old),
        "de": _lang("de", old),
        "es": _lang("es", old),
        "xx": _lang("xx", old),
        "recent": _lang("recent", timedelta(minutes=30)),
        "stale": _lang("stale", timedelta(hours=3)),
    }
    return MemoryStore({BOOKS: books, LANGUAGES: languages}, clock=lambda: NOW)


def _counts(store: MemoryStore) -> dict:
    return {lang["objectId"]: lang["usageCount"] for lang in store.find(LANGUAGES)}


def test_compute_language_usage() -> None:
    usage = compute_language_usage(_make_store().find(BOOKS))
    assert dict(usage.counts) == {"en": 2, "fr": 1}
    assert usage.protected == frozenset({"en", "de", "es"})


def test_update_counts_and_delete_unused() -> None:
    store = _make_store()
    result = update_language_records(store)

    assert result.message == "Completed successfully."
    assert result.deleted == 2
    assert _counts(store) == {"en": 2, "fr": 1, "de": 0, "es": 0, "recent": 0}
    assert store.get(LANGUAGES, "xx") is None
    assert store.get(LANGUAGES, "stale") is None


def test_second_run_changes_nothing() -> None:
    store = _make_store()
    update_language_records(store)
    before = _counts(store)

    again = update_language_records(store)
    assert again.deleted == 0
    assert _counts(store) == before


def test_recent_language_survives_until_grace_expires() -> None:
    store = _make_store()
    update_language_records(store)
    assert store.get(LANGUAGES, "recent") is not None

    update_language_records(store, now=NOW + timedelta(hours=2))
    assert store.get(LANGUAGES, "recent") is None


def test_failed_update_skips_deletion() -> None:
    store = _make_store()

    def _reject_fr(request):
        if request.record.get("objectId") == "fr":
            raise CatalogError("write conflict")
        return request.record

    store.on_before_save(LANGUAGES, _reject_fr)
    with pytest.raises(JobTerminalFailure) as exc:
        update_language_records(store)

    assert [f.object_id for f in exc.value.failures] == ["fr"]
    assert store.get(LANGUAGES, "xx") is not None
    assert store.get(LANGUAGES, "en")["usageCount"] == 2


def test_naive_created_at_is_read_as_utc() -> None:
    store = MemoryStore(
        {
            LANGUAGES: {
                "old": {"objectId": "old", "createdAt": "2020-01-01T00:00:00"},
                "new": {"objectId": "new", "createdAt": "2024-06-01T11:30:00"},
            }
        },
        clock=lambda: NOW,
    )
    result = update_language_records(store)
    assert result.deleted == 1
    assert store.get(LANGUAGES, "old") is None
    assert store.get(LANGUAGES, "new") is not None
