from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict

from book_catalog.core.store import MemoryStore
from book_catalog.io.utils import atomic_write_json

logger = logging.getLogger(__name__)


def read_catalog(path: str) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """
    Read a catalog snapshot: {collection: {objectId: document}}.

    A list of documents per collection is accepted too. A missing file is an empty catalog.
    """
    if not os.path.exists(path):
        logger.warning("catalog file not found, starting empty | path=%s", path)
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Catalog file must hold a JSON object: {path}")

    out: Dict[str, Dict[str, Dict[str, Any]]] = {}
    for collection, docs in data.items():
        if isinstance(docs, list):
            docs = {str(d["objectId"]): d for d in docs if isinstance(d, dict) and d.get("objectId")}
        if not isinstance(docs, dict):
            raise SystemExit(f"Catalog collection {collection!r} must be an object or a list: {path}")
        for object_id, doc in docs.items():
            doc.setdefault("objectId", object_id)
        out[collection] = docs
    logger.info(
        "catalog loaded | path=%s | %s",
        path,
        " | ".join(f"{c}={len(d)}" for c, d in sorted(out.items())),
    )
    return out


def write_catalog(store: MemoryStore, path: str) -> None:
    atomic_write_json(store.snapshot_dict(), path)
    logger.info("catalog written | path=%s", path)
