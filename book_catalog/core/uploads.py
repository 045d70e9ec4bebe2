from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from book_catalog.core.interceptor import UPLOAD_SHELL_CONTEXT_KEY
from book_catalog.core.models import BOOKS
from book_catalog.core.provenance import TWO_PHASE_NEW_BOOK_SUFFIX
from book_catalog.core.store import MemoryStore


def start_upload(
    store: MemoryStore,
    fields: Mapping[str, Any],
    *,
    user_id: Optional[str],
    source: str,
) -> Dict[str, Any]:
    """Create the empty shell record of a two-phase upload."""
    doc = dict(fields)
    doc["updateSource"] = source
    return store.save(BOOKS, doc, user_id=user_id, context={UPLOAD_SHELL_CONTEXT_KEY: True})


def finish_upload(
    store: MemoryStore,
    object_id: str,
    fields: Mapping[str, Any],
    *,
    user_id: Optional[str],
    source: str,
    new_book: bool,
) -> Dict[str, Any]:
    """
    Fill a shell created by start_upload (or an existing book being re-uploaded).

    When the shell was created for a brand new book the source is marked so
    the pipeline treats the fill as a new upload.
    """
    doc = dict(fields)
    doc["objectId"] = object_id
    doc["updateSource"] = f"{source} {TWO_PHASE_NEW_BOOK_SUFFIX}" if new_book else source
    return store.save(BOOKS, doc, user_id=user_id)
