from book_catalog.core.provenance import (
    DASHBOARD_SOURCE,
    LEGACY_DESKTOP_SOURCE,
    UNKNOWN_SOURCE,
    classify_provenance,
)


def test_explicit_source_is_used_verbatim() -> None:
    p = classify_provenance("BloomDesktop 5.4", explicit=True, user_agent="RestSharp/1.0")
    assert p.source == "BloomDesktop 5.4"
    assert p.is_desktop
    assert not p.set_last_uploaded
    assert not p.is_new_upload_via_two_phase


def test_legacy_desktop_user_agent() -> None:
    p = classify_provenance(None, explicit=False, user_agent="RestSharp/106.0", referer="")
    assert p.source == LEGACY_DESKTOP_SOURCE
    assert p.is_desktop
    assert p.set_last_uploaded


def test_dashboard_referer() -> None:
    p = classify_provenance(None, explicit=False, referer="https://host/dashboard/apps/Library/browser/books")
    assert p.source == DASHBOARD_SOURCE
    assert not p.is_desktop


def test_unknown_when_nothing_matches() -> None:
    p = classify_provenance("stale value", explicit=False, user_agent="curl/8", referer="")
    assert p.source == UNKNOWN_SOURCE
    assert not p.is_desktop
    assert not p.is_new_upload


def test_two_phase_new_book_marker() -> None:
    p = classify_provenance("BloomDesktop 6.0 (new book)", explicit=True, is_new=False)
    assert p.is_new_upload_via_two_phase
    assert p.is_new_upload


def test_new_book_marker_needs_desktop_prefix() -> None:
    p = classify_provenance("script (new book)", explicit=True)
    assert not p.is_new_upload_via_two_phase
    assert not p.is_desktop
