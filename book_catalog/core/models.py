from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

BOOKS = "books"
LANGUAGES = "language"
TAGS = "tag"
USERS = "_User"

SYSTEM_TAG_PREFIX = "system:"
DEFAULT_TAG_PREFIX = "topic:"
BOOKSHELF_TAG_PREFIX = "bookshelf:"
INCOMING_TAG = "system:Incoming"

HARVEST_NEW = "New"
HARVEST_UPDATED = "Updated"


@dataclass(frozen=True)
class Provenance:
    source: str
    explicit: bool
    is_desktop: bool
    set_last_uploaded: bool
    is_new_upload: bool
    is_new_upload_via_two_phase: bool


@dataclass(frozen=True)
class NormalizedTags:
    tags: Tuple[str, ...]
    search: str


@dataclass
class WriteRequest:
    """
    One in-flight create/update.

    `record` is the full candidate document (prior values overlaid with the
    supplied fields), `original` the persisted snapshot (None when new) and
    `supplied` the field names the writer actually sent.
    """

    collection: str
    record: Dict[str, Any]
    original: Optional[Dict[str, Any]]
    supplied: FrozenSet[str]
    user_id: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
    provenance: Optional[Provenance] = None

    @property
    def is_new(self) -> bool:
        return self.original is None

    def header(self, name: str) -> str:
        name = name.lower()
        for k, v in self.headers.items():
            if k.lower() == name:
                return v or ""
        return ""


@dataclass(frozen=True)
class ItemFailure:
    object_id: str
    reason: str


@dataclass(frozen=True)
class BulkResult:
    succeeded: Tuple[str, ...]
    failures: Tuple[ItemFailure, ...]

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class LanguageUsage:
    counts: Mapping[str, int]
    protected: FrozenSet[str]

    def count_for(self, language_id: str) -> int:
        return int(self.counts.get(language_id, 0))


@dataclass(frozen=True)
class Metric:
    field: str
    feed_key: str
    kind: str  # "int" | "decimal"


@dataclass(frozen=True)
class JobResult:
    job: str
    message: str
    scanned: int = 0
    updated: int = 0
    deleted: int = 0
