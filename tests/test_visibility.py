from book_catalog.core.visibility import artifact_visible, has_bloom_pub


def test_default_is_visible() -> None:
    assert has_bloom_pub(None)
    assert has_bloom_pub({})
    assert has_bloom_pub({"bloomReader": {}})


def test_override_precedence() -> None:
    assert not has_bloom_pub({"bloomReader": {"harvester": False}})
    assert not has_bloom_pub({"bloomReader": {"harvester": True, "librarian": False}})
    assert has_bloom_pub({"bloomReader": {"harvester": False, "librarian": False, "user": True}})
    assert not has_bloom_pub({"bloomReader": {"librarian": True, "user": False}})


def test_other_artifacts() -> None:
    show = {"pdf": {"user": False}, "bloomReader": {"user": True}}
    assert not artifact_visible(show, "pdf")
    assert artifact_visible(show, "epub")
