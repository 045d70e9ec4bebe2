from __future__ import annotations

import logging

from book_catalog.core.errors import PerItemBulkFailure
from book_catalog.core.models import BOOKS, JobResult
from book_catalog.core.store import MemoryStore
from book_catalog.jobs.common import DEFAULT_FAILURE_LOG_CAP, log_failures

logger = logging.getLogger(__name__)

JOB_NAME = "saveAllBooks"
RESAVE_SOURCE = "saveAllBooks"


def resave_all_books(store: MemoryStore, *, failure_log_cap: int = DEFAULT_FAILURE_LOG_CAP) -> JobResult:
    """Push every book back through the write pipeline so derived fields follow current rules."""
    logger.info("%s | starting", JOB_NAME)
    # explicit source so no book picks up the incoming tag
    updates = [{"objectId": b["objectId"], "updateSource": RESAVE_SOURCE} for b in store.find(BOOKS, select=())]
    result = store.save_all(BOOKS, updates)
    logger.info("%s | saved %s of %s books", JOB_NAME, len(result.succeeded), len(updates))
    if not result.ok:
        log_failures(logger, JOB_NAME, result.failures, failure_log_cap)
        raise PerItemBulkFailure(f"Saved {len(result.succeeded)} books; {len(result.failures)} failed.", result.failures)
    return JobResult(
        job=JOB_NAME,
        message="Completed successfully.",
        scanned=len(updates),
        updated=len(result.succeeded),
    )
