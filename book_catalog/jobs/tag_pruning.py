from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Iterable, Mapping

from book_catalog.core.errors import PerItemBulkFailure
from book_catalog.core.models import BOOKS, TAGS, JobResult
from book_catalog.core.normalize import normalize_tag
from book_catalog.core.store import MemoryStore
from book_catalog.jobs.common import DEFAULT_FAILURE_LOG_CAP, log_failures

logger = logging.getLogger(__name__)

JOB_NAME = "removeUnusedTags"


def count_tag_references(books: Iterable[Mapping[str, Any]]) -> Counter:
    # un-migrated books may still carry bare tags
    counts: Counter = Counter()
    for book in books:
        for tag in book.get("tags") or []:
            if not tag:
                continue
            counts[normalize_tag(tag)] += 1
    return counts


def prune_unused_tags(store: MemoryStore, *, failure_log_cap: int = DEFAULT_FAILURE_LOG_CAP) -> JobResult:
    """Delete tag records no book refers to. Each delete is attempted on its own."""
    logger.info("%s | starting", JOB_NAME)
    counts = count_tag_references(store.find(BOOKS, select=("tags",)))
    tags = list(store.find(TAGS, select=("name",)))
    unused = [t["objectId"] for t in tags if counts.get(t.get("name") or "", 0) == 0]

    removed = store.destroy_all(TAGS, unused)
    logger.info("%s | deleted %s of %s tags", JOB_NAME, len(removed.succeeded), len(tags))
    if not removed.ok:
        log_failures(logger, JOB_NAME, removed.failures, failure_log_cap)
        raise PerItemBulkFailure(
            f"Deleted {len(removed.succeeded)} tags; {len(removed.failures)} could not be deleted.",
            removed.failures,
        )
    return JobResult(
        job=JOB_NAME,
        message=f"Deleted {len(removed.succeeded)} unused tags.",
        scanned=len(tags),
        deleted=len(removed.succeeded),
    )
