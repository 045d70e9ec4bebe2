from __future__ import annotations

from typing import Any, Mapping, Optional

BLOOM_PUB_ARTIFACT = "bloomReader"

# Highest precedence first: the end user, then a moderator, then the harvester tool.
_OVERRIDE_CHAIN = ("user", "librarian", "harvester")


def artifact_visible(show: Optional[Mapping[str, Any]], artifact: str, default: bool = True) -> bool:
    """
    Resolve the show.<artifact>.{user,librarian,harvester} override chain.

    The first tier holding an explicit boolean decides; with none set the
    artifact is visible (the harvester's default).
    """
    prefs = (show or {}).get(artifact)
    if not isinstance(prefs, Mapping):
        return default
    for tier in _OVERRIDE_CHAIN:
        value = prefs.get(tier)
        if isinstance(value, bool):
            return value
    return default


def has_bloom_pub(show: Optional[Mapping[str, Any]]) -> bool:
    return artifact_visible(show, BLOOM_PUB_ARTIFACT)
