# book_catalog/cli.py
from __future__ import annotations

import argparse
import logging
from datetime import timedelta
from typing import List, Optional

import yaml
from rich.logging import RichHandler

from book_catalog.config import AppConfig, load_config, load_dotenv
from book_catalog.core.errors import JobError
from book_catalog.core.interceptor import BookWriteInterceptor
from book_catalog.core.store import MemoryStore
from book_catalog.integrations.http_client import build_store_query, fetch_book_stats, make_stats_session
from book_catalog.integrations.notifier import NewBookNotifier
from book_catalog.io.catalog_file import read_catalog, write_catalog
from book_catalog.jobs.analytics_sync import metrics_from_config, sync_book_analytics
from book_catalog.jobs.artifact_lang_tags import set_artifact_lang_tags
from book_catalog.jobs.default_backfill import backfill_default
from book_catalog.jobs.language_counts import update_language_records
from book_catalog.jobs.resave_books import resave_all_books
from book_catalog.jobs.tag_pruning import prune_unused_tags

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _parse_value(raw: str):
    # "false" -> False, "0" -> 0, "abc" -> "abc"
    return yaml.safe_load(raw)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="book-catalog",
        description="Book catalog maintenance jobs (language counts, tag pruning, backfill, analytics sync)",
    )
    ap.add_argument("--catalog", default=None, help="Catalog JSON file (defaults to CATALOG_PATH)")
    ap.add_argument("--settings", default=None, help="Optional YAML settings file")
    ap.add_argument("--log-level", default="info", help="Log level: debug, info, warning, error")

    sub = ap.add_subparsers(dest="command", required=True)
    sub.add_parser("update-languages", help="Recompute language usage counts and delete unused languages")
    sub.add_parser("prune-tags", help="Delete tag records no book uses")
    bf = sub.add_parser("backfill", help="Set a default value on every book missing a field")
    bf.add_argument("--field", required=True, help="Field name to backfill")
    bf.add_argument("--value", required=True, help="Default value (YAML scalar: false, 0, text)")
    sub.add_parser("sync-analytics", help="Copy per-book usage metrics from the stats service")
    sub.add_parser("resave-books", help="Re-run the write pipeline over every book")
    lt = sub.add_parser("set-artifact-lang-tags", help="Set epub/pdf langTag from the matching title language")
    lt.add_argument("--dry-run", action="store_true", help="Log intended changes without saving")
    return ap


def _setup_logging(level_name: str) -> None:
    logging.basicConfig(
        level=LOG_LEVELS.get(level_name.lower(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _open_store(cfg: AppConfig) -> MemoryStore:
    store = MemoryStore(read_catalog(cfg.catalog_path))
    notifier = NewBookNotifier(
        store,
        api_url=cfg.mail_api_url,
        api_key=cfg.mail_api_key,
        recipient=cfg.book_event_recipient,
        book_url_base=cfg.book_url_base,
        timeout_s=cfg.timeout_s,
    )
    BookWriteInterceptor(store, notifier=notifier).install()
    return store


def run_command(args: argparse.Namespace, cfg: AppConfig, store: MemoryStore):
    cap = cfg.failure_log_cap
    if args.command == "update-languages":
        grace = timedelta(hours=cfg.language_grace_hours)
        return update_language_records(store, grace=grace, failure_log_cap=cap)
    if args.command == "prune-tags":
        return prune_unused_tags(store, failure_log_cap=cap)
    if args.command == "backfill":
        return backfill_default(store, args.field, _parse_value(args.value), failure_log_cap=cap)
    if args.command == "sync-analytics":
        session = make_stats_session(cfg.stats_api_key)
        query = build_store_query(cfg.server_url, cfg.app_id)
        return sync_book_analytics(
            store,
            lambda: fetch_book_stats(session, cfg.stats_url, query, timeout_s=cfg.timeout_s, retries=cfg.retries),
            metrics=metrics_from_config(cfg.metrics),
            failure_log_cap=cap,
        )
    if args.command == "resave-books":
        return resave_all_books(store, failure_log_cap=cap)
    if args.command == "set-artifact-lang-tags":
        return set_artifact_lang_tags(store, dry_run=args.dry_run, failure_log_cap=cap)
    raise SystemExit(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    logger = logging.getLogger(__name__)
    args = build_parser().parse_args(argv)
    _setup_logging(args.log_level)

    used = load_dotenv()
    if used:
        logger.info("loaded .env: %s", used)
    else:
        logger.warning(".env not found via search paths; relying on existing environment variables")

    cfg = load_config(args.settings)
    if args.catalog:
        cfg.catalog_path = args.catalog
    cfg.validate(needs_stats=args.command == "sync-analytics")

    store = _open_store(cfg)
    dry_run = getattr(args, "dry_run", False)
    try:
        result = run_command(args, cfg, store)
    except JobError as e:
        logger.error("%s failed: %s", args.command, e)
        # items already applied stand, so keep them
        write_catalog(store, cfg.catalog_path)
        return 1

    if not dry_run:
        write_catalog(store, cfg.catalog_path)
    logger.info(
        "%s | %s | scanned=%s | updated=%s | deleted=%s",
        result.job,
        result.message,
        result.scanned,
        result.updated,
        result.deleted,
    )
    print(result.message)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
