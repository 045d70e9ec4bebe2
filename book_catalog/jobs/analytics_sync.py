from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from book_catalog.core.errors import JobTerminalFailure, PerItemBulkFailure
from book_catalog.core.models import BOOKS, JobResult, Metric
from book_catalog.core.store import MemoryStore
from book_catalog.integrations.http_client import StatsFeedError
from book_catalog.jobs.common import DEFAULT_FAILURE_LOG_CAP, log_failures

logger = logging.getLogger(__name__)

JOB_NAME = "updateBookAnalytics"
ANALYTICS_SOURCE = "updateBookAnalytics"
FEED_ID_KEY = "bookinstanceid"

DEFAULT_METRICS = (
    Metric("analytics_startedCount", "started", "int"),
    Metric("analytics_finishedCount", "finished", "int"),
    Metric("analytics_shellDownloads", "shelldownloads", "int"),
    Metric("analytics_pdfDownloads", "pdfdownloads", "int"),
    Metric("analytics_epubDownloads", "epubdownloads", "int"),
    Metric("analytics_bloompubDownloads", "bloompubdownloads", "int"),
    Metric("analytics_questionsInBookCount", "numquestionsinbook", "int"),
    Metric("analytics_quizzesTakenCount", "numquizzestaken", "int"),
    Metric("analytics_meanQuestionsCorrectPct", "meanpctquestionscorrect", "decimal"),
    Metric("analytics_medianQuestionsCorrectPct", "medianpctquestionscorrect", "decimal"),
)

FeedFetcher = Callable[[], List[Dict[str, Any]]]


def coerce_metric(value: Any, kind: str) -> Union[int, float]:
    """Parse a stringish feed value; anything missing or unparseable becomes 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(str(value).strip())
    except ValueError:
        return 0
    if not math.isfinite(number):
        return 0
    if kind == "decimal":
        return number
    return int(number)


def metrics_from_config(items: Optional[Iterable[Mapping[str, Any]]]) -> Sequence[Metric]:
    if not items:
        return DEFAULT_METRICS
    out: List[Metric] = []
    for item in items:
        kind = str(item.get("kind") or "int").strip().lower()
        if kind not in ("int", "decimal"):
            raise ValueError(f"Unknown metric kind {kind!r} for {item.get('field')}")
        out.append(Metric(field=str(item["field"]), feed_key=str(item["feed_key"]).lower(), kind=kind))
    return tuple(out)


def build_feed_lookup(rows: Iterable[Mapping[str, Any]]) -> Dict[str, Mapping[str, Any]]:
    lookup: Dict[str, Mapping[str, Any]] = {}
    for row in rows:
        instance_id = row.get(FEED_ID_KEY)
        if instance_id:
            lookup[str(instance_id)] = row
    return lookup


def changed_metrics(
    book: Mapping[str, Any],
    feed_row: Mapping[str, Any],
    metrics: Sequence[Metric],
) -> Dict[str, Union[int, float]]:
    changes: Dict[str, Union[int, float]] = {}
    for metric in metrics:
        new_value = coerce_metric(feed_row.get(metric.feed_key), metric.kind)
        if book.get(metric.field) != new_value:
            changes[metric.field] = new_value
    return changes


def sync_book_analytics(
    store: MemoryStore,
    fetch_feed: FeedFetcher,
    *,
    metrics: Sequence[Metric] = DEFAULT_METRICS,
    failure_log_cap: int = DEFAULT_FAILURE_LOG_CAP,
) -> JobResult:
    """
    Copy per-book usage metrics from the stats service onto the catalog.

    Feed rows are matched by bookInstanceId. Books absent from the feed are
    compared against all-zero metrics. Only books with at least one changed
    metric are saved.
    """
    logger.info("%s | starting", JOB_NAME)
    try:
        rows = fetch_feed()
    except StatsFeedError as e:
        logger.error("%s | stats feed unavailable | err=%s", JOB_NAME, e)
        raise JobTerminalFailure(f"Terminated unsuccessfully: {e}") from e
    lookup = build_feed_lookup(rows)

    scanned = 0
    updates: List[Dict[str, Any]] = []
    fields = ["bookInstanceId"] + [m.field for m in metrics]
    for book in store.find(BOOKS, select=fields):
        scanned += 1
        feed_row = lookup.get(str(book.get("bookInstanceId") or ""), {})
        changes = changed_metrics(book, feed_row, metrics)
        if changes:
            changes["objectId"] = book["objectId"]
            changes["updateSource"] = ANALYTICS_SOURCE
            updates.append(changes)

    logger.info("%s | feed_rows=%s | books=%s | changed=%s", JOB_NAME, len(lookup), scanned, len(updates))
    result = store.save_all(BOOKS, updates)
    if not result.ok:
        log_failures(logger, JOB_NAME, result.failures, failure_log_cap)
        logger.error("%s | terminated unsuccessfully", JOB_NAME)
        raise PerItemBulkFailure(
            f"Updated {len(result.succeeded)} books; {len(result.failures)} failed.",
            result.failures,
        )
    logger.info("%s | completed successfully", JOB_NAME)
    return JobResult(
        job=JOB_NAME,
        message=f"Updated analytics on {len(result.succeeded)} books.",
        scanned=scanned,
        updated=len(result.succeeded),
    )
