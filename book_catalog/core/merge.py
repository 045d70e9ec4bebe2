from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from book_catalog.core.models import HARVEST_NEW, HARVEST_UPDATED, INCOMING_TAG, Provenance

# Fields a moderator may curate which an upload must not blank out.
STICKY_SCALAR_FIELDS = ("summary", "librarianNote", "publisher", "originalPublisher")
# Array fields whose prior values are unioned into the upload rather than replaced.
UNION_ARRAY_FIELDS = ("tags", "bookshelves")


def add_unique(values: Optional[Iterable[Any]], extra: Iterable[Any]) -> List[Any]:
    out = list(values or [])
    for v in extra:
        if v not in out:
            out.append(v)
    return out


def merge_upload_fields(
    incoming: Dict[str, Any],
    original: Optional[Dict[str, Any]],
    provenance: Provenance,
    *,
    is_new: bool,
) -> Dict[str, Any]:
    """
    Apply the desktop-upload merge rules and return a new record.

    Writes that did not come from a desktop client are returned unchanged
    (as a copy). For desktop uploads:
      - the incoming system tag is added exactly once
      - harvestState becomes "New" for new records and two-phase new uploads, else "Updated"
      - sticky scalar fields left falsy by the upload keep their prior value
      - prior values of union array fields are kept alongside the uploaded ones
    """
    merged = dict(incoming)
    if not provenance.is_desktop:
        return merged

    merged["tags"] = add_unique(merged.get("tags"), [INCOMING_TAG])
    if is_new or provenance.is_new_upload_via_two_phase:
        merged["harvestState"] = HARVEST_NEW
    else:
        merged["harvestState"] = HARVEST_UPDATED

    if not original:
        return merged

    for name in STICKY_SCALAR_FIELDS:
        if not merged.get(name) and original.get(name):
            merged[name] = original[name]

    for name in UNION_ARRAY_FIELDS:
        prior = original.get(name)
        if prior and len(prior) >= 1:
            merged[name] = add_unique(merged.get(name), prior)

    return merged
