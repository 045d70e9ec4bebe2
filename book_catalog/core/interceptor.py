from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from book_catalog.core.errors import ValidationError
from book_catalog.core.merge import add_unique, merge_upload_fields
from book_catalog.core.models import BOOKS, TAGS, WriteRequest
from book_catalog.core.normalize import bookshelves_from_tags, lineage_array, normalize_tags
from book_catalog.core.provenance import classify_provenance, is_two_phase_new_book_source
from book_catalog.core.store import MemoryStore
from book_catalog.core.visibility import has_bloom_pub

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "bookInstanceId", "uploader")
MODERATOR_ROLE = "moderator"

# Set on WriteRequest.context by the two-phase "start" call.
UPLOAD_SHELL_CONTEXT_KEY = "uploadShell"

Notifier = Callable[[Dict[str, Any]], None]


def validate_book(record: Dict[str, Any]) -> None:
    missing = [name for name in REQUIRED_FIELDS if not record.get(name)]
    if missing:
        raise ValidationError(missing)


def creator_acl(user_id: str) -> Dict[str, Dict[str, bool]]:
    return {
        "*": {"read": True},
        f"role:{MODERATOR_ROLE}": {"write": True},
        user_id: {"read": True, "write": True},
    }


class BookWriteInterceptor:
    """
    Runs on every book create/update before it is committed.

    Pipeline: validate -> classify provenance -> merge upload fields ->
    normalize tags/search -> derived fields -> ACL. After commit it creates
    missing tag records and announces newly visible books.
    """

    def __init__(self, store: MemoryStore, notifier: Optional[Notifier] = None) -> None:
        self.store = store
        self.notifier = notifier

    def install(self) -> "BookWriteInterceptor":
        self.store.on_before_save(BOOKS, self.before_save)
        self.store.on_after_save(BOOKS, self.after_save)
        return self

    def before_save(self, request: WriteRequest) -> Dict[str, Any]:
        validate_book(request.record)

        provenance = classify_provenance(
            request.record.get("updateSource"),
            explicit="updateSource" in request.supplied,
            user_agent=request.header("user-agent"),
            referer=request.header("referer"),
            is_new=request.is_new,
        )
        request.provenance = provenance

        record = dict(request.record)
        record["updateSource"] = provenance.source
        if provenance.set_last_uploaded:
            record["lastUploaded"] = self.store.now().isoformat()

        record = merge_upload_fields(record, request.original, provenance, is_new=request.is_new)

        normalized = normalize_tags(record.get("tags"), record.get("title"))
        record["tags"] = list(normalized.tags)
        record["search"] = normalized.search
        shelves = bookshelves_from_tags(normalized.tags)
        if shelves:
            record["bookshelves"] = add_unique(record.get("bookshelves"), shelves)

        lineage = lineage_array(record.get("bookLineage"))
        if lineage is None:
            record.pop("bookLineageArray", None)
        else:
            record["bookLineageArray"] = lineage

        record["hasBloomPub"] = has_bloom_pub(record.get("show"))

        if request.is_new:
            if request.user_id:
                record["ACL"] = creator_acl(request.user_id)
        elif request.original is not None:
            if "ACL" in request.original:
                record["ACL"] = request.original["ACL"]
            else:
                record.pop("ACL", None)

        logger.debug(
            "book normalized | id=%s | source=%s | new=%s | tags=%s",
            record.get("objectId"),
            provenance.source,
            request.is_new,
            len(record["tags"]),
        )
        return record

    def is_newly_visible(self, request: WriteRequest) -> bool:
        provenance = request.provenance
        if provenance is not None and provenance.is_new_upload_via_two_phase:
            # a retried completion finds the shell already completed
            previous = (request.original or {}).get("updateSource")
            return not is_two_phase_new_book_source(previous or "")
        return request.is_new and not request.context.get(UPLOAD_SHELL_CONTEXT_KEY)

    def after_save(self, request: WriteRequest, committed: Dict[str, Any]) -> None:
        self.ensure_tag_records(committed.get("tags") or [])

        if not self.is_newly_visible(request) or self.notifier is None:
            return
        try:
            self.notifier(committed)
            logger.info("new book notice sent | id=%s", committed.get("objectId"))
        except Exception as e:
            logger.error("book saved but new book notice failed | id=%s | err=%r", committed.get("objectId"), e)

    def ensure_tag_records(self, tags) -> None:
        for name in tags:
            try:
                if self.store.count(TAGS, {"name": name}) == 0:
                    self.store.save(TAGS, {"name": name})
            except Exception as e:
                logger.error("tag record creation failed | tag=%s | err=%r", name, e)
