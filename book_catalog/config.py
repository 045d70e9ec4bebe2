from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml

logger = logging.getLogger(__name__)


def _env_value(raw: str) -> str:
    raw = raw.strip()
    if raw[:1] in ("'", '"'):
        end = raw.find(raw[0], 1)
        if end > 0:
            return raw[1:end]
    # unquoted values end at the first " #"
    hash_at = raw.find(" #")
    return (raw if hash_at < 0 else raw[:hash_at]).rstrip()


def parse_env_text(text: str) -> Dict[str, str]:
    """Parse KEY=value lines; blank lines, comments and an `export ` prefix are allowed."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("export "):
            line = line[len("export ") :]
        key, sep, raw = line.partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        values[key] = _env_value(raw)
    return values


def _dotenv_candidates(path: Optional[str]) -> Iterator[Path]:
    override = os.getenv("ENV_PATH")
    if override:
        yield Path(override).expanduser()
    if path:
        yield Path(path).expanduser()
    yield Path.cwd() / ".env"


def load_dotenv(path: Optional[str] = None) -> Optional[str]:
    """
    Load the first .env found (ENV_PATH, then `path`, then ./.env) into os.environ.

    Variables already set in the environment win. Returns the file used, or None.
    """
    for candidate in _dotenv_candidates(path):
        candidate = candidate.resolve()
        if not candidate.is_file():
            continue
        try:
            text = candidate.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("could not read .env | path=%s | err=%s", candidate, e)
            continue
        for key, value in parse_env_text(text).items():
            os.environ.setdefault(key, value)
        return str(candidate)
    return None


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise SystemExit(f"{name} must be an integer (got {raw!r}).") from e


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise SystemExit(f"{name} must be a number (got {raw!r}).") from e


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    return (os.getenv(name) or "").strip() or default


def read_settings_file(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except FileNotFoundError as e:
        raise SystemExit(f"Settings file not found: {path}") from e
    except (OSError, yaml.YAMLError) as e:
        raise SystemExit(f"Failed to read settings file: {path} ({e})") from e
    if not isinstance(data, dict):
        raise SystemExit(f"Settings file must hold a mapping: {path}")
    logger.info("loaded settings file: %s", path)
    return data


@dataclass
class AppConfig:
    catalog_path: str
    server_url: str
    app_id: str

    stats_url: Optional[str]
    stats_api_key: Optional[str]

    mail_api_url: Optional[str]
    mail_api_key: Optional[str]
    book_event_recipient: Optional[str]
    book_url_base: str

    language_grace_hours: float = 2.0
    failure_log_cap: int = 20
    timeout_s: int = 60
    retries: int = 3

    metrics: List[Dict[str, Any]] = field(default_factory=list)

    def validate(self, *, needs_stats: bool = False) -> None:
        if not self.catalog_path.strip():
            raise SystemExit("Missing CATALOG_PATH (set in .env, environment or --catalog).")
        if self.language_grace_hours < 0:
            raise SystemExit("LANGUAGE_GRACE_HOURS must not be negative.")
        if needs_stats:
            if not (self.stats_url or "").strip():
                raise SystemExit("Analytics sync needs STATS_URL (set in .env or environment).")
            if not self.server_url.startswith(("http://", "https://")):
                raise SystemExit("SERVER_URL should be a full URL (https://...).")


_SETTINGS_KEYS = {
    "catalog_path": str,
    "server_url": str,
    "app_id": str,
    "stats_url": str,
    "book_url_base": str,
    "language_grace_hours": float,
    "failure_log_cap": int,
    "timeout_s": int,
    "retries": int,
}


def load_config(settings_path: Optional[str] = None) -> AppConfig:
    cfg = AppConfig(
        catalog_path=_env_str("CATALOG_PATH", "catalog.json"),
        server_url=_env_str("SERVER_URL", "http://localhost:1337/parse"),
        app_id=_env_str("APP_ID", "myAppId"),
        stats_url=_env_str("STATS_URL"),
        stats_api_key=_env_str("STATS_API_KEY"),
        mail_api_url=_env_str("MAIL_API_URL"),
        mail_api_key=_env_str("MAIL_API_KEY"),
        book_event_recipient=_env_str("EMAIL_BOOK_EVENT_RECIPIENT"),
        book_url_base=_env_str("BOOK_URL_BASE", "https://example.org/book/"),
        language_grace_hours=_env_float("LANGUAGE_GRACE_HOURS", 2.0),
        failure_log_cap=_env_int("FAILURE_LOG_CAP", 20),
        timeout_s=_env_int("HTTP_TIMEOUT", 60),
        retries=_env_int("HTTP_RETRIES", 3),
    )
    if not settings_path:
        return cfg

    data = read_settings_file(Path(settings_path))
    for key, cast in _SETTINGS_KEYS.items():
        if key in data and data[key] is not None:
            try:
                setattr(cfg, key, cast(data[key]))
            except (TypeError, ValueError) as e:
                raise SystemExit(f"Settings file: {key} has an invalid value ({data[key]!r}).") from e
    metrics = data.get("metrics")
    if metrics is not None:
        if not isinstance(metrics, list):
            raise SystemExit("Settings file: metrics must be a list.")
        cfg.metrics = [dict(m) for m in metrics if isinstance(m, dict)]
    return cfg
