"""Gmail REST API access for Scholar alert threads."""

from __future__ import annotations

import base64
import json
import logging
import os
import time
from datetime import UTC, datetime
from typing import Any

import requests

from models import Message, Thread

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
REQUEST_TIMEOUT_SECONDS = 30
MAX_RETRIES = 3
PAGE_SIZE = 100

LOGGER = logging.getLogger(__name__)


class GmailClient:
    """Thread search over the Gmail API.

    Requires an OAuth access token with a Gmail read scope, taken from
    GMAIL_ACCESS_TOKEN when not passed in.
    """

    def __init__(self, access_token: str | None = None, user_id: str = "me") -> None:
        self.access_token = access_token or os.getenv("GMAIL_ACCESS_TOKEN")
        self.user_id = user_id

    def search_threads(self, query: str) -> list[Thread]:
        """Return every thread matching a Gmail search expression, oldest message first."""
        thread_ids = self._list_thread_ids(query)
        LOGGER.info("Gmail search: query=%r threads=%s", query, len(thread_ids))

        threads: list[Thread] = []
        for thread_id in thread_ids:
            payload = self._get(f"users/{self.user_id}/threads/{thread_id}", {"format": "full"})
            threads.append(parse_thread(payload))
        return threads

    def _list_thread_ids(self, query: str) -> list[str]:
        ids: list[str] = []
        params: dict[str, Any] = {"q": query, "maxResults": PAGE_SIZE}

        while True:
            body = self._get(f"users/{self.user_id}/threads", params)
            ids.extend(item["id"] for item in body.get("threads", []) if item.get("id"))
            page_token = body.get("nextPageToken")
            if not page_token:
                return ids
            params = {**params, "pageToken": page_token}

    def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        response = _request_with_backoff(
            url=f"{GMAIL_API_BASE_URL}/{path}",
            headers=self._headers(),
            params=params,
        )
        return response.json()

    def _headers(self) -> dict[str, str]:
        if not self.access_token:
            raise RuntimeError("GMAIL_ACCESS_TOKEN environment variable is required")
        return {"Authorization": f"Bearer {self.access_token}"}


def parse_thread(payload: dict[str, Any]) -> Thread:
    """Convert a ``threads.get(format=full)`` response into a Thread."""
    raw_messages = payload.get("messages") or []
    subject = _header(raw_messages[0], "Subject") if raw_messages else ""

    messages = [
        Message(body=_message_body(raw.get("payload") or {}), sent_date=_internal_date(raw))
        for raw in raw_messages
    ]
    return Thread(subject=subject, messages=messages)


def _header(raw_message: dict[str, Any], name: str) -> str:
    headers = (raw_message.get("payload") or {}).get("headers") or []
    for header in headers:
        if str(header.get("name", "")).lower() == name.lower():
            return str(header.get("value", ""))
    return ""


def _message_body(part: dict[str, Any]) -> str:
    """Prefer the first text/html part anywhere in the MIME tree, else text/plain."""
    html_body = _find_part(part, "text/html")
    if html_body is not None:
        return html_body
    plain_body = _find_part(part, "text/plain")
    return plain_body or ""


def _find_part(part: dict[str, Any], mime_type: str) -> str | None:
    if part.get("mimeType") == mime_type:
        data = (part.get("body") or {}).get("data")
        if data:
            return _decode_base64url(data)
    for child in part.get("parts") or []:
        found = _find_part(child, mime_type)
        if found is not None:
            return found
    return None


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _internal_date(raw_message: dict[str, Any]) -> datetime:
    try:
        millis = int(raw_message.get("internalDate", ""))
    except (TypeError, ValueError):
        return datetime.now(UTC)
    return datetime.fromtimestamp(millis / 1000, tz=UTC)


def _is_retryable(exc: requests.RequestException) -> bool:
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        status = exc.response.status_code
        return status == 429 or status >= 500
    return True


def _request_with_backoff(
    *,
    url: str,
    headers: dict[str, str],
    params: dict[str, Any],
) -> requests.Response:
    """Send a Gmail GET with simple exponential backoff for rate limits.

    Gmail answers 429 when the per-user quota is exhausted and 5xx on backend
    hiccups; those and network errors are retried after 1s, then 2s. Other
    HTTP errors (401 for an expired token, 400 for a bad query) fail at once.
    Either way the failure surfaces as RuntimeError with the API error body.
    """
    delay_seconds = 1.0
    last_error: Exception | None = None

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            response = requests.get(
                url,
                headers=headers,
                params=params,
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            if response.status_code == 429 and attempt < MAX_RETRIES:
                time.sleep(delay_seconds)
                delay_seconds *= 2
                continue
            response.raise_for_status()
            return response
        except requests.RequestException as exc:
            last_error = exc
            if attempt >= MAX_RETRIES or not _is_retryable(exc):
                break
            time.sleep(delay_seconds)
            delay_seconds *= 2

    response_text = ""
    if isinstance(last_error, requests.HTTPError) and last_error.response is not None:
        try:
            response_text = json.dumps(last_error.response.json())
        except ValueError:
            response_text = last_error.response.text

    raise RuntimeError(f"Gmail API request failed: {last_error} {response_text}")
