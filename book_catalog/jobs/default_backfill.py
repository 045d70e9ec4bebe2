from __future__ import annotations

import logging
from typing import Any

from book_catalog.core.errors import PerItemBulkFailure
from book_catalog.core.models import BOOKS, JobResult
from book_catalog.core.store import MemoryStore
from book_catalog.jobs.common import DEFAULT_FAILURE_LOG_CAP, log_failures

logger = logging.getLogger(__name__)

JOB_NAME = "setDefaultValue"
BACKFILL_SOURCE = "setDefaultValue"


def backfill_default(
    store: MemoryStore,
    field: str,
    default: Any,
    *,
    collection: str = BOOKS,
    failure_log_cap: int = DEFAULT_FAILURE_LOG_CAP,
) -> JobResult:
    """
    Give `field` the value `default` on every record where it is absent.

    Records holding any value for the field, falsy or not, are left alone,
    so a second run updates nothing.
    """
    field = (field or "").strip()
    if not field:
        raise ValueError("field name is required")
    logger.info("%s | starting | collection=%s | field=%s | default=%r", JOB_NAME, collection, field, default)

    targets = [doc["objectId"] for doc in store.find(collection, where={field: {"$exists": False}}, select=())]
    updates = []
    for object_id in targets:
        doc = {"objectId": object_id, field: default}
        if collection == BOOKS:
            # explicit source keeps the write pipeline from treating this as an upload
            doc["updateSource"] = BACKFILL_SOURCE
        updates.append(doc)

    result = store.save_all(collection, updates)
    logger.info("%s | set %s=%r on %s records", JOB_NAME, field, default, len(result.succeeded))
    if not result.ok:
        log_failures(logger, JOB_NAME, result.failures, failure_log_cap)
        raise PerItemBulkFailure(
            f"Set {field} on {len(result.succeeded)} records; {len(result.failures)} failed.",
            result.failures,
        )
    return JobResult(
        job=JOB_NAME,
        message=f"Set {field} on {len(result.succeeded)} records.",
        scanned=len(targets),
        updated=len(result.succeeded),
    )
