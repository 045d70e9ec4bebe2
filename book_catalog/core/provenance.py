from __future__ import annotations

from typing import Optional

from book_catalog.core.models import Provenance

# Desktop clients send "BloomDesktop {version}", optionally suffixed for two-phase uploads.
DESKTOP_SOURCE_PREFIX = "BloomDesktop"
TWO_PHASE_NEW_BOOK_SUFFIX = "(new book)"

LEGACY_DESKTOP_SOURCE = "legacy-desktop"
DASHBOARD_SOURCE = "dashboard"
UNKNOWN_SOURCE = "unknown"

LEGACY_DESKTOP_USER_AGENT_PREFIX = "RestSharp"
DASHBOARD_REFERER_MARKER = "dashboard/apps/"


def is_desktop_source(source: str) -> bool:
    source = source or ""
    return source.startswith(DESKTOP_SOURCE_PREFIX) or source == LEGACY_DESKTOP_SOURCE


def is_two_phase_new_book_source(source: str) -> bool:
    source = (source or "").rstrip()
    return source.startswith(DESKTOP_SOURCE_PREFIX) and source.endswith(TWO_PHASE_NEW_BOOK_SUFFIX)


def classify_provenance(
    supplied_source: Optional[str],
    *,
    explicit: bool,
    user_agent: str = "",
    referer: str = "",
    is_new: bool = False,
) -> Provenance:
    """
    Decide where a write came from.

    Priority: an explicitly supplied source wins verbatim, then the legacy
    desktop HTTP client (detected by user agent), then the moderation
    dashboard (detected by referer), then "unknown".
    """
    set_last_uploaded = False
    if explicit:
        source = supplied_source or ""
    elif (user_agent or "").startswith(LEGACY_DESKTOP_USER_AGENT_PREFIX):
        source = LEGACY_DESKTOP_SOURCE
        # old desktop clients never set lastUploaded themselves
        set_last_uploaded = True
    elif DASHBOARD_REFERER_MARKER in (referer or ""):
        source = DASHBOARD_SOURCE
    else:
        source = UNKNOWN_SOURCE

    two_phase = is_two_phase_new_book_source(source)
    return Provenance(
        source=source,
        explicit=explicit,
        is_desktop=is_desktop_source(source),
        set_last_uploaded=set_last_uploaded,
        is_new_upload=bool(is_new or two_phase),
        is_new_upload_via_two_phase=two_phase,
    )
