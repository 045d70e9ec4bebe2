from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from book_catalog.core.models import (
    BOOKSHELF_TAG_PREFIX,
    DEFAULT_TAG_PREFIX,
    SYSTEM_TAG_PREFIX,
    NormalizedTags,
)


def _split_tag(tag: str) -> Tuple[str, int]:
    tag = tag or ""
    colon = tag.find(":")
    if colon < 0:
        # older desktop clients send topics without a prefix
        tag = DEFAULT_TAG_PREFIX + tag
        colon = len(DEFAULT_TAG_PREFIX) - 1
    return tag, colon


def normalize_tag(tag: str) -> str:
    return _split_tag(tag)[0]


def normalize_tags(tags: Optional[Iterable[str]], title: Optional[str]) -> NormalizedTags:
    """
    Prefix bare tags with "topic:" and build the search string.

    Order and duplicates are kept; empty or None tags are dropped. The search
    string is the lower-cased title followed by the lower-cased value part of
    every non-system tag.
    """
    out: List[str] = []
    search = (title or "").lower()
    for raw in tags or []:
        if not raw:
            continue
        tag, colon = _split_tag(raw)
        out.append(tag)
        if tag.startswith(SYSTEM_TAG_PREFIX):
            continue
        search = search + " " + tag[colon + 1 :].lower()
    return NormalizedTags(tags=tuple(out), search=search)


def bookshelves_from_tags(tags: Sequence[str]) -> List[str]:
    shelves: List[str] = []
    for tag in tags:
        if not tag.startswith("bookshelf"):
            continue
        name = tag.replace(BOOKSHELF_TAG_PREFIX, "", 1)
        if name not in shelves:
            shelves.append(name)
    return shelves


def lineage_array(lineage: Optional[str]) -> Optional[List[str]]:
    if not lineage:
        return None
    return lineage.split(",")
