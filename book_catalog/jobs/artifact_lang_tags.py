from __future__ import annotations

import copy
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from book_catalog.core.errors import ParseFailure, PerItemBulkFailure
from book_catalog.core.models import BOOKS, JobResult
from book_catalog.core.store import MemoryStore
from book_catalog.jobs.common import DEFAULT_FAILURE_LOG_CAP, log_failures

logger = logging.getLogger(__name__)

JOB_NAME = "setArtifactLangTags"
ARTIFACT_LANG_SOURCE = "setArtifactLangTags"
ARTIFACTS = ("epub", "pdf")


def parse_title_map(raw: str) -> Dict[str, str]:
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ParseFailure(f"allTitles is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ParseFailure(f"allTitles is not a JSON object: {type(parsed).__name__}")
    return parsed


def language_tags_for_title(titles: Mapping[str, Any], title: str) -> List[str]:
    return [lang for lang, value in titles.items() if value == title]


def with_artifact_lang_tag(show: Optional[Mapping[str, Any]], lang_tag: str) -> Dict[str, Any]:
    out = copy.deepcopy(dict(show or {}))
    for artifact in ARTIFACTS:
        prefs = out.get(artifact)
        if not isinstance(prefs, dict):
            prefs = {}
        prefs["langTag"] = lang_tag
        out[artifact] = prefs
    return out


def set_artifact_lang_tags(
    store: MemoryStore,
    *,
    dry_run: bool = False,
    failure_log_cap: int = DEFAULT_FAILURE_LOG_CAP,
) -> JobResult:
    """
    Set show.epub.langTag and show.pdf.langTag from the language whose title matches.

    Books with no title map, an unreadable one, or no single matching
    language are logged and skipped.
    """
    logger.info("%s | starting | dry_run=%s", JOB_NAME, dry_run)
    scanned = 0
    updates: List[Dict[str, Any]] = []
    for book in store.find(BOOKS, select=("title", "allTitles", "show")):
        scanned += 1
        book_id = book["objectId"]
        title = book.get("title")
        raw = book.get("allTitles")
        if not raw or not title:
            logger.info("%s | missing allTitles or title | id=%s | title=%r", JOB_NAME, book_id, title)
            continue
        try:
            titles = parse_title_map(raw)
        except ParseFailure as e:
            logger.warning("%s | skipped | id=%s | %s", JOB_NAME, book_id, e)
            continue

        tags = language_tags_for_title(titles, title)
        if len(tags) != 1:
            logger.info(
                "%s | %s language tags match title | id=%s | title=%r",
                JOB_NAME,
                "multiple" if tags else "no",
                book_id,
                title,
            )
            continue
        if dry_run:
            logger.info("%s | would set langTag=%s | id=%s | title=%r", JOB_NAME, tags[0], book_id, title)
            continue
        updates.append(
            {
                "objectId": book_id,
                "show": with_artifact_lang_tag(book.get("show"), tags[0]),
                "updateSource": ARTIFACT_LANG_SOURCE,
            }
        )

    result = store.save_all(BOOKS, updates)
    if not result.ok:
        log_failures(logger, JOB_NAME, result.failures, failure_log_cap)
        raise PerItemBulkFailure(f"Set langTag on {len(result.succeeded)} books; {len(result.failures)} failed.", result.failures)
    logger.info("%s | completed successfully | updated=%s", JOB_NAME, len(result.succeeded))
    return JobResult(
        job=JOB_NAME,
        message="Dry run completed." if dry_run else "Completed successfully.",
        scanned=scanned,
        updated=len(result.succeeded),
    )
