from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


def _safe_body_preview(resp: requests.Response, limit: int = 800) -> str:
    try:
        text = resp.text or ""
    except Exception:
        return "<unavailable>"
    text = text.replace("\r", " ").strip()
    if len(text) > limit:
        return text[:limit].rstrip() + "..."
    return text


class StatsFeedError(RuntimeError):
    pass


def make_stats_session(api_key: Optional[str]) -> requests.Session:
    s = requests.Session()
    headers: Dict[str, str] = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "User-Agent": "book-catalog/1.0",
    }
    if api_key:
        headers["x-functions-key"] = api_key
    s.headers.update(headers)
    return s


def _sleep_jitter(base: float, jitter: float = 0.25) -> None:
    time.sleep(max(0.0, base + random.random() * jitter))


def build_store_query(
    server_url: str,
    app_id: str,
    *,
    keys: Sequence[str] = ("objectId", "bookInstanceId"),
    limit: int = 1000000,
) -> Dict[str, Any]:
    """
    Describe the catalog query the stats service runs to find the books it reports on.

    The limit overrides the store's default page size so every book comes back.
    """
    return {
        "url": f"{server_url.rstrip('/')}/classes/books",
        "method": "get",
        "options": {
            "headers": {"X-Parse-Application-Id": app_id},
            "params": {"limit": limit, "keys": ",".join(keys)},
        },
    }


def stats_post(
    session: requests.Session,
    url: str,
    *,
    payload: dict,
    timeout_s: int,
    retries: int,
) -> dict:
    """
    POST helper for the stats service with:
      - exponential backoff + jitter for 429/5xx/network
      - no retry on 401/403
    """
    backoff = 1.0
    for attempt in range(1, retries + 2):
        try:
            logger.debug("request | method=POST | url=%s | attempt=%s/%s", url, attempt, retries + 1)
            r = session.post(url, data=json.dumps(payload), timeout=timeout_s)

            if r.status_code in RETRYABLE_STATUSES and attempt <= retries:
                ra = r.headers.get("Retry-After")
                if ra and ra.isdigit():
                    logger.warning("retrying after %ss | status=%s | url=%s", ra, r.status_code, url)
                    _sleep_jitter(float(ra), 0.5)
                else:
                    logger.warning("retrying | status=%s | backoff=%s | url=%s", r.status_code, backoff, url)
                    _sleep_jitter(backoff, 0.5)
                backoff = min(30.0, backoff * 2)
                continue

            if r.status_code in (401, 403):
                logger.error("auth error | status=%s | url=%s | body=%s", r.status_code, url, _safe_body_preview(r))
                raise StatsFeedError(f"{r.status_code} from stats service (check STATS_API_KEY)")

            if r.status_code >= 400:
                logger.error("http error | status=%s | url=%s | body=%s", r.status_code, url, _safe_body_preview(r))
                raise StatsFeedError(f"Stats request failed ({r.status_code}): {url}")

            data = r.json() if r.content else {}
            if not isinstance(data, dict):
                raise StatsFeedError(f"Unexpected stats response type: {type(data).__name__}")
            return data

        except (requests.RequestException, ValueError) as e:
            if attempt <= retries:
                logger.warning("request error | url=%s | err=%r (retrying)", url, e)
                _sleep_jitter(backoff, 0.5)
                backoff = min(30.0, backoff * 2)
                continue
            raise StatsFeedError(f"Request failed: {url} error={e}") from e

    raise StatsFeedError(f"Request failed after {retries + 1} attempts: {url}")


def fetch_book_stats(
    session: requests.Session,
    url: str,
    store_query: Dict[str, Any],
    *,
    timeout_s: int = 60,
    retries: int = 3,
) -> List[Dict[str, Any]]:
    payload = {"filter": {"parseDBQuery": store_query}}
    data = stats_post(session, url, payload=payload, timeout_s=timeout_s, retries=retries)
    rows = data.get("stats")
    if rows is None:
        raise StatsFeedError("Stats response has no 'stats' list")
    if not isinstance(rows, list):
        raise StatsFeedError(f"Stats 'stats' is not a list: {type(rows).__name__}")
    logger.info("stats fetched | rows=%s", len(rows))
    return [r for r in rows if isinstance(r, dict)]
