from __future__ import annotations

import base64
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest
import requests

from gmail_client import GmailClient, parse_thread


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _raw_message(subject: str, html: str, internal_date: str = "1749398400000") -> dict:
    return {
        "id": "m1",
        "internalDate": internal_date,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [{"name": "Subject", "value": subject}],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64("plain body")}},
                {"mimeType": "text/html", "body": {"data": _b64(html)}},
            ],
        },
    }


def _mock_resp(payload: dict, status_code: int = 200) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = payload
    return mock


def test_parse_thread_picks_html_part_and_subject() -> None:
    payload = {
        "id": "t1",
        "messages": [
            _raw_message("Jane Roe - new articles", "<p>first</p>"),
            _raw_message("Re: Jane Roe - new articles", "<p>latest</p>", "1749484800000"),
        ],
    }

    thread = parse_thread(payload)

    assert thread.subject == "Jane Roe - new articles"
    assert [m.body for m in thread.messages] == ["<p>first</p>", "<p>latest</p>"]
    assert thread.messages[-1].sent_date == datetime(2025, 6, 9, 16, 0, tzinfo=UTC)


def test_parse_thread_falls_back_to_plain_text() -> None:
    message = {
        "internalDate": "0",
        "payload": {"mimeType": "text/plain", "headers": [], "body": {"data": _b64("just text")}},
    }

    thread = parse_thread({"messages": [message]})

    assert thread.subject == ""
    assert thread.messages[0].body == "just text"


def test_parse_thread_without_messages() -> None:
    thread = parse_thread({"id": "t1"})
    assert thread.subject == ""
    assert thread.messages == []


def test_search_threads_pages_and_fetches_each_thread() -> None:
    list_page_1 = {"threads": [{"id": "t1"}], "nextPageToken": "next"}
    list_page_2 = {"threads": [{"id": "t2"}]}
    thread_1 = {"id": "t1", "messages": [_raw_message("A - new articles", "<p>1</p>")]}
    thread_2 = {"id": "t2", "messages": [_raw_message("B - new articles", "<p>2</p>")]}

    with patch(
        "gmail_client.requests.get",
        side_effect=[_mock_resp(p) for p in (list_page_1, list_page_2, thread_1, thread_2)],
    ) as mock_get:
        threads = GmailClient(access_token="token").search_threads("from:scholaralerts-noreply@google.com")

    assert [t.subject for t in threads] == ["A - new articles", "B - new articles"]
    assert mock_get.call_count == 4
    first_call = mock_get.call_args_list[0]
    assert first_call.kwargs["params"]["q"] == "from:scholaralerts-noreply@google.com"
    assert first_call.kwargs["headers"] == {"Authorization": "Bearer token"}
    assert mock_get.call_args_list[1].kwargs["params"]["pageToken"] == "next"
    assert mock_get.call_args_list[2].kwargs["params"] == {"format": "full"}


def test_search_threads_empty_result() -> None:
    with patch("gmail_client.requests.get", return_value=_mock_resp({"resultSizeEstimate": 0})):
        assert GmailClient(access_token="token").search_threads("from:x") == []


def test_missing_token_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GMAIL_ACCESS_TOKEN", raising=False)
    with pytest.raises(RuntimeError, match="GMAIL_ACCESS_TOKEN"):
        GmailClient().search_threads("from:x")


def test_rate_limited_request_is_retried() -> None:
    with patch("gmail_client.time.sleep") as mock_sleep, \
         patch(
             "gmail_client.requests.get",
             side_effect=[_mock_resp({}, status_code=429), _mock_resp({"threads": []})],
         ) as mock_get:
        threads = GmailClient(access_token="token").search_threads("from:x")

    assert threads == []
    assert mock_get.call_count == 2
    mock_sleep.assert_called_once_with(1.0)


def test_request_failure_after_retries_raises() -> None:
    with patch("gmail_client.time.sleep"), \
         patch("gmail_client.requests.get", side_effect=requests.ConnectionError("down")) as mock_get:
        with pytest.raises(RuntimeError, match="Gmail API request failed"):
            GmailClient(access_token="token").search_threads("from:x")

    assert mock_get.call_count == 3


def _http_error_resp(status_code: int, payload: dict) -> MagicMock:
    mock = _mock_resp(payload, status_code=status_code)
    mock.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error", response=mock)
    return mock


def test_server_error_is_retried() -> None:
    with patch("gmail_client.time.sleep") as mock_sleep, \
         patch(
             "gmail_client.requests.get",
             side_effect=[_http_error_resp(503, {"error": {"code": 503}}), _mock_resp({"threads": []})],
         ) as mock_get:
        assert GmailClient(access_token="token").search_threads("from:x") == []

    assert mock_get.call_count == 2
    mock_sleep.assert_called_once_with(1.0)


def test_expired_token_fails_without_retry() -> None:
    error_body = {"error": {"code": 401, "message": "Invalid Credentials"}}

    with patch("gmail_client.time.sleep") as mock_sleep, \
         patch("gmail_client.requests.get", return_value=_http_error_resp(401, error_body)) as mock_get:
        with pytest.raises(RuntimeError, match="Invalid Credentials"):
            GmailClient(access_token="expired").search_threads("from:x")

    assert mock_get.call_count == 1
    mock_sleep.assert_not_called()
