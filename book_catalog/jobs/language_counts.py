from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from book_catalog.core.errors import JobTerminalFailure, PerItemBulkFailure
from book_catalog.core.models import BOOKS, LANGUAGES, JobResult, LanguageUsage
from book_catalog.core.store import MemoryStore, ref_id
from book_catalog.jobs.common import DEFAULT_FAILURE_LOG_CAP, log_failures

logger = logging.getLogger(__name__)

JOB_NAME = "updateLanguageRecords"
DELETE_GRACE = timedelta(hours=2)
BOOK_FIELDS = ("langPointers", "inCirculation", "draft", "rebrand")


def _is_uncounted(book: Mapping[str, Any]) -> bool:
    return book.get("inCirculation") is False or book.get("draft") is True or book.get("rebrand") is True


def compute_language_usage(books: Iterable[Mapping[str, Any]]) -> LanguageUsage:
    """
    Count in-circulation, non-draft, non-rebrand books per language.

    Languages referenced only by uncounted books are returned as protected:
    they keep a zero count but must not be deleted.
    """
    counts: Counter = Counter()
    protected: Set[str] = set()
    for book in books:
        uncounted = _is_uncounted(book)
        for ref in book.get("langPointers") or []:
            language_id = ref_id(ref)
            if not language_id:
                continue
            if uncounted:
                protected.add(language_id)
            else:
                counts[language_id] += 1
    return LanguageUsage(counts=dict(counts), protected=frozenset(protected))


def _created_recently(language: Mapping[str, Any], now: datetime, grace: timedelta) -> bool:
    created = language.get("createdAt")
    if not created:
        return False
    try:
        created_at = datetime.fromisoformat(str(created).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("language has unreadable createdAt | id=%s | createdAt=%s", language.get("objectId"), created)
        return True
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at > now - grace


def plan_language_changes(
    languages: Iterable[Mapping[str, Any]],
    usage: LanguageUsage,
    *,
    now: datetime,
    grace: timedelta = DELETE_GRACE,
):
    updates: List[Dict[str, Any]] = []
    deletions: List[str] = []
    for language in languages:
        language_id = language["objectId"]
        count = usage.count_for(language_id)
        updates.append({"objectId": language_id, "usageCount": count})
        if count == 0 and language_id not in usage.protected and not _created_recently(language, now, grace):
            deletions.append(language_id)
    return updates, deletions


def update_language_records(
    store: MemoryStore,
    *,
    now: Optional[datetime] = None,
    grace: timedelta = DELETE_GRACE,
    failure_log_cap: int = DEFAULT_FAILURE_LOG_CAP,
) -> JobResult:
    """
    Recompute usageCount for every language and delete unused ones.

    Deletion only runs once every count update has been saved.
    """
    logger.info("%s | starting", JOB_NAME)
    now = now or store.now()

    usage = compute_language_usage(store.find(BOOKS, select=BOOK_FIELDS))
    languages = list(store.find(LANGUAGES, select=("isoCode", "createdAt")))
    updates, deletions = plan_language_changes(languages, usage, now=now, grace=grace)
    iso_codes = {lang["objectId"]: lang.get("isoCode") for lang in languages}

    result = store.save_all(LANGUAGES, updates)
    if not result.ok:
        log_failures(logger, JOB_NAME, result.failures, failure_log_cap)
        logger.error("%s | terminated unsuccessfully", JOB_NAME)
        raise JobTerminalFailure("Terminated unsuccessfully.", result.failures) from PerItemBulkFailure(
            "Language usage update failed.", result.failures
        )
    logger.info("%s | updated usageCount for %s languages", JOB_NAME, len(result.succeeded))

    deleted = 0
    if deletions:
        removed = store.destroy_all(LANGUAGES, deletions)
        deleted = len(removed.succeeded)
        if removed.succeeded:
            logger.info(
                "%s | deleted %s languages which had no books: %s",
                JOB_NAME,
                deleted,
                ",".join(str(iso_codes.get(i) or i) for i in removed.succeeded),
            )
        if not removed.ok:
            log_failures(logger, JOB_NAME, removed.failures, failure_log_cap)
            logger.error("%s | terminated unsuccessfully", JOB_NAME)
            raise PerItemBulkFailure("Terminated unsuccessfully.", removed.failures)

    logger.info("%s | completed successfully", JOB_NAME)
    return JobResult(
        job=JOB_NAME,
        message="Completed successfully.",
        scanned=len(languages),
        updated=len(result.succeeded),
        deleted=deleted,
    )
