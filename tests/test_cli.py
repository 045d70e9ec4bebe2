import json

import pytest

from book_catalog.cli import build_parser, main
from book_catalog.core.models import BOOKS


@pytest.fixture
def catalog(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in ("ENV_PATH", "CATALOG_PATH", "MAIL_API_KEY"):
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    path = tmp_path / "catalog.json"
    base = {"bookInstanceId": "i", "uploader": {"objectId": "u1"}, "tags": ["topic:Math"]}
    path.write_text(
        json.dumps(
            {
                BOOKS: [
                    {**base, "objectId": "b1", "title": "One"},
                    {**base, "objectId": "b2", "title": "Two", "draft": True},
                ],
                "tag": {"t1": {"name": "topic:Math"}, "t2": {"name": "topic:Unused"}},
            }
        ),
        encoding="utf-8",
    )
    return path


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_backfill_command(catalog, capsys) -> None:
    code = main(["--catalog", str(catalog), "backfill", "--field", "draft", "--value", "false"])
    assert code == 0
    assert "Set draft on 1 records." in capsys.readouterr().out

    books = _read(catalog)[BOOKS]
    assert books["b1"]["draft"] is False
    assert books["b1"]["updateSource"] == "setDefaultValue"
    assert books["b2"]["draft"] is True


def test_prune_tags_command(catalog) -> None:
    assert main(["--catalog", str(catalog), "prune-tags"]) == 0
    assert sorted(_read(catalog)["tag"]) == ["t1"]


def test_dry_run_leaves_file_untouched(catalog) -> None:
    before = catalog.read_text(encoding="utf-8")
    assert main(["--catalog", str(catalog), "set-artifact-lang-tags", "--dry-run"]) == 0
    assert catalog.read_text(encoding="utf-8") == before


def test_sync_analytics_requires_stats_url(catalog, monkeypatch) -> None:
    monkeypatch.setenv("STATS_URL", "")
    with pytest.raises(SystemExit):
        main(["--catalog", str(catalog), "sync-analytics"])


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
