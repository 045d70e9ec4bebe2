from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from book_catalog.core.errors import CatalogError
from book_catalog.core.models import BulkResult, ItemFailure, WriteRequest

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
BeforeSave = Callable[[WriteRequest], Document]
AfterSave = Callable[[WriteRequest, Document], None]
BeforeDelete = Callable[[str, Document], None]

_STORE_FIELDS = ("objectId", "createdAt", "updatedAt")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_object_id() -> str:
    return uuid.uuid4().hex[:10]


def ref_id(ref: Any) -> str:
    """Object id of a pointer dict or a bare id string."""
    if isinstance(ref, Mapping):
        return str(ref.get("objectId") or "")
    return str(ref or "")


def _matches_op(present: bool, value: Any, op: str, arg: Any) -> bool:
    if op == "$exists":
        return present == bool(arg)
    if not present:
        return op == "$ne"
    try:
        if op == "$eq":
            return value == arg
        if op == "$ne":
            return value != arg
        if op == "$in":
            return value in arg
        if op == "$gt":
            return value > arg
        if op == "$gte":
            return value >= arg
        if op == "$lt":
            return value < arg
        if op == "$lte":
            return value <= arg
    except TypeError:
        return False
    raise ValueError(f"Unsupported query operator: {op}")


def matches(doc: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
    for key, cond in (where or {}).items():
        present = key in doc
        value = doc.get(key)
        if isinstance(cond, Mapping) and cond and all(str(k).startswith("$") for k in cond):
            if not all(_matches_op(present, value, op, arg) for op, arg in cond.items()):
                return False
        elif not present or value != cond:
            return False
    return True


def project(doc: Mapping[str, Any], select: Optional[Sequence[str]]) -> Document:
    if select is None:
        return copy.deepcopy(dict(doc))
    keep = set(select) | {"objectId"}
    return {k: copy.deepcopy(v) for k, v in doc.items() if k in keep}


class MemoryStore:
    """
    Thread-safe in-memory document store.

    Collections hold plain dict documents keyed by objectId. Writes go through
    registered before_save triggers (which may rewrite or reject the document)
    and after_save triggers (run after commit, outside the lock). Bulk calls
    attempt every item independently and report failures per item.
    """

    def __init__(
        self,
        initial: Optional[Dict[str, Dict[str, Document]]] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lock = threading.RLock()
        self._clock = clock
        self._data: Dict[str, Dict[str, Document]] = defaultdict(dict)
        for collection, docs in (initial or {}).items():
            self._data[collection] = {k: copy.deepcopy(v) for k, v in docs.items()}
        self._before_save: Dict[str, List[BeforeSave]] = defaultdict(list)
        self._after_save: Dict[str, List[AfterSave]] = defaultdict(list)
        self._before_delete: Dict[str, List[BeforeDelete]] = defaultdict(list)

    def now(self) -> datetime:
        return self._clock()

    # -----------------------------
    # Triggers
    # -----------------------------
    def on_before_save(self, collection: str, fn: BeforeSave) -> None:
        self._before_save[collection].append(fn)

    def on_after_save(self, collection: str, fn: AfterSave) -> None:
        self._after_save[collection].append(fn)

    def on_before_delete(self, collection: str, fn: BeforeDelete) -> None:
        self._before_delete[collection].append(fn)

    # -----------------------------
    # Reads
    # -----------------------------
    def get(self, collection: str, object_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._data[collection].get(object_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        select: Optional[Sequence[str]] = None,
    ) -> Iterator[Document]:
        with self._lock:
            ids = list(self._data[collection].keys())
        for object_id in ids:
            with self._lock:
                doc = self._data[collection].get(object_id)
                if doc is None or not matches(doc, where):
                    continue
                out = project(doc, select)
            yield out

    def count(self, collection: str, where: Optional[Mapping[str, Any]] = None) -> int:
        with self._lock:
            return sum(1 for doc in self._data[collection].values() if matches(doc, where))

    def snapshot_dict(self) -> Dict[str, Dict[str, Document]]:
        with self._lock:
            return {c: copy.deepcopy(docs) for c, docs in self._data.items()}

    # -----------------------------
    # Writes
    # -----------------------------
    def save(
        self,
        collection: str,
        doc: Mapping[str, Any],
        *,
        user_id: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Document:
        with self._lock:
            request, committed = self._save_locked(collection, doc, user_id, headers, context)
        self._run_after_save(request, committed)
        return copy.deepcopy(committed)

    def _save_locked(
        self,
        collection: str,
        doc: Mapping[str, Any],
        user_id: Optional[str],
        headers: Optional[Mapping[str, str]],
        context: Optional[Dict[str, Any]],
    ):
        object_id = doc.get("objectId")
        existing = self._data[collection].get(object_id) if object_id else None
        if object_id and existing is None:
            raise CatalogError(f"Object not found: {collection}/{object_id}")

        supplied = frozenset(k for k in doc.keys() if k not in _STORE_FIELDS)
        candidate = copy.deepcopy(existing) if existing is not None else {}
        candidate.update({k: copy.deepcopy(v) for k, v in doc.items() if k not in _STORE_FIELDS})

        request = WriteRequest(
            collection=collection,
            record=candidate,
            original=copy.deepcopy(existing) if existing is not None else None,
            supplied=supplied,
            user_id=user_id,
            headers=dict(headers or {}),
            context=dict(context or {}),
        )
        for fn in self._before_save[collection]:
            request.record = fn(request)

        now = self._clock().isoformat()
        committed = dict(request.record)
        if existing is None:
            committed["objectId"] = new_object_id()
            committed["createdAt"] = now
        else:
            committed["objectId"] = object_id
            committed["createdAt"] = existing.get("createdAt", now)
        committed["updatedAt"] = now
        self._data[collection][committed["objectId"]] = committed
        return request, copy.deepcopy(committed)

    def _run_after_save(self, request: WriteRequest, committed: Document) -> None:
        for fn in self._after_save[request.collection]:
            try:
                fn(request, copy.deepcopy(committed))
            except Exception as e:
                logger.error(
                    "after_save failed | collection=%s | id=%s | err=%r",
                    request.collection,
                    committed.get("objectId"),
                    e,
                )

    def save_all(
        self,
        collection: str,
        docs: Iterable[Mapping[str, Any]],
        *,
        user_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> BulkResult:
        succeeded: List[str] = []
        failures: List[ItemFailure] = []
        for doc in docs:
            label = str(doc.get("objectId") or "(new)")
            try:
                saved = self.save(collection, doc, user_id=user_id, context=context)
            except CatalogError as e:
                failures.append(ItemFailure(object_id=label, reason=str(e)))
                continue
            except Exception as e:
                logger.error("save failed | collection=%s | id=%s | err=%r", collection, label, e)
                failures.append(ItemFailure(object_id=label, reason=repr(e)))
                continue
            succeeded.append(saved["objectId"])
        return BulkResult(succeeded=tuple(succeeded), failures=tuple(failures))

    def destroy(self, collection: str, object_id: str) -> None:
        with self._lock:
            doc = self._data[collection].get(object_id)
            if doc is None:
                raise CatalogError(f"Object not found: {collection}/{object_id}")
            for fn in self._before_delete[collection]:
                fn(object_id, copy.deepcopy(doc))
            del self._data[collection][object_id]

    def destroy_all(self, collection: str, object_ids: Iterable[str]) -> BulkResult:
        succeeded: List[str] = []
        failures: List[ItemFailure] = []
        for object_id in object_ids:
            try:
                self.destroy(collection, object_id)
            except CatalogError as e:
                failures.append(ItemFailure(object_id=object_id, reason=str(e)))
                continue
            except Exception as e:
                logger.error("delete failed | collection=%s | id=%s | err=%r", collection, object_id, e)
                failures.append(ItemFailure(object_id=object_id, reason=repr(e)))
                continue
            succeeded.append(object_id)
        return BulkResult(succeeded=tuple(succeeded), failures=tuple(failures))
