import pytest

from book_catalog.core.errors import PerItemBulkFailure
from book_catalog.core.interceptor import BookWriteInterceptor
from book_catalog.core.models import BOOKS, INCOMING_TAG
from book_catalog.core.store import MemoryStore
from book_catalog.jobs.default_backfill import BACKFILL_SOURCE, backfill_default


def _make_store() -> MemoryStore:
    store = MemoryStore()
    BookWriteInterceptor(store).install()
    base = {"bookInstanceId": "i", "uploader": {"objectId": "u1"}, "updateSource": "test"}
    store.save(BOOKS, {**base, "title": "Draft false", "draft": False})
    store.save(BOOKS, {**base, "title": "Draft true", "draft": True})
    store.save(BOOKS, {**base, "title": "No draft field"})
    return store


def test_backfill_only_touches_missing_field() -> None:
    store = _make_store()
    result = backfill_default(store, "draft", False)
    assert result.updated == 1

    by_title = {b["title"]: b for b in store.find(BOOKS)}
    assert by_title["No draft field"]["draft"] is False
    assert by_title["No draft field"]["updateSource"] == BACKFILL_SOURCE
    assert INCOMING_TAG not in by_title["No draft field"]["tags"]
    assert by_title["Draft true"]["draft"] is True
    assert by_title["Draft false"]["updateSource"] == "test"


def test_backfill_twice_updates_nothing_the_second_time() -> None:
    store = _make_store()
    backfill_default(store, "draft", False)
    again = backfill_default(store, "draft", False)
    assert again.updated == 0
    assert again.scanned == 0


def test_backfill_other_collections_without_source() -> None:
    store = MemoryStore({"language": {"en": {"objectId": "en"}}})
    backfill_default(store, "usageCount", 0, collection="language")
    assert store.get("language", "en")["usageCount"] == 0
    assert "updateSource" not in store.get("language", "en")


def test_backfill_requires_field_name() -> None:
    with pytest.raises(ValueError):
        backfill_default(MemoryStore(), " ", 0)


def test_malformed_book_does_not_block_siblings() -> None:
    store = MemoryStore(
        {
            BOOKS: {
                "b1": {"objectId": "b1", "title": 123, "bookInstanceId": "i", "uploader": "u1"},
                "b2": {"objectId": "b2", "title": "ok", "bookInstanceId": "i", "uploader": "u1"},
            }
        }
    )
    BookWriteInterceptor(store).install()
    with pytest.raises(PerItemBulkFailure) as exc:
        backfill_default(store, "draft", False)
    assert [f.object_id for f in exc.value.failures] == ["b1"]
    assert store.get(BOOKS, "b2")["draft"] is False
