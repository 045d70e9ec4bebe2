from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

import requests

from book_catalog.core.models import USERS
from book_catalog.core.store import MemoryStore, ref_id

logger = logging.getLogger(__name__)

NEW_BOOK_TEMPLATE = "announce-book-uploaded"
DEFAULT_SENDER = "Book Bot <bot@example.org>"


class NotificationError(RuntimeError):
    pass


def build_template_data(book: Mapping[str, Any], uploader_name: Optional[str], book_url_base: str) -> Dict[str, str]:
    data: Dict[str, str] = {}
    for name in ("title", "copyright", "license"):
        data[name] = book.get(name) or f"unknown {name}"
    data["uploader"] = uploader_name or "unknown uploader"
    data["url"] = book_url_base + str(book.get("objectId") or "")
    return data


class NewBookNotifier:
    """
    Announces newly visible books to an internal address through the mail API.

    Without an API key or recipient it only logs, so local and test runs never send mail.
    """

    def __init__(
        self,
        store: MemoryStore,
        *,
        api_url: Optional[str],
        api_key: Optional[str],
        recipient: Optional[str],
        book_url_base: str,
        sender: str = DEFAULT_SENDER,
        timeout_s: int = 20,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.store = store
        self.api_url = api_url
        self.api_key = api_key
        self.recipient = recipient
        self.book_url_base = book_url_base
        self.sender = sender
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def uploader_name(self, book: Mapping[str, Any]) -> Optional[str]:
        uploader = book.get("uploader")
        if isinstance(uploader, Mapping) and uploader.get("username"):
            return str(uploader["username"])
        user_id = ref_id(uploader)
        if not user_id:
            return None
        user = self.store.get(USERS, user_id)
        return (user or {}).get("username")

    def build_message(self, book: Mapping[str, Any]) -> Dict[str, str]:
        template_data = build_template_data(book, self.uploader_name(book), self.book_url_base)
        return {
            "from": self.sender,
            "to": self.recipient or "",
            "subject": f"[BookCatalog] {template_data['uploader']} added {template_data['title']}",
            "template": NEW_BOOK_TEMPLATE,
            "h:X-Mailgun-Variables": json.dumps(template_data),
        }

    def __call__(self, book: Dict[str, Any]) -> None:
        if not self.api_key or not self.api_url:
            logger.info("mail API not configured; new book notice not sent | id=%s", book.get("objectId"))
            return
        if not self.recipient:
            logger.info("no recipient configured; new book notice not sent | id=%s", book.get("objectId"))
            return
        message = self.build_message(book)
        try:
            r = self.session.post(self.api_url, auth=("api", self.api_key), data=message, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise NotificationError(f"Mail API request failed: {e}") from e
        if r.status_code >= 400:
            raise NotificationError(f"Mail API returned {r.status_code}: {(r.text or '')[:300]}")
