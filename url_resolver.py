"""Unwrap Google Scholar redirect links into the destination URL."""

from __future__ import annotations

import html
import logging
import re
from urllib.parse import unquote

LOGGER = logging.getLogger(__name__)

_URL_PARAM_PATTERN = re.compile(r"[?&]url=([^&]+)", re.IGNORECASE)
# A "%" not followed by two hex digits. unquote() leaves these in place and
# keeps decoding, so they are rejected before decoding.
_MALFORMED_ESCAPE_PATTERN = re.compile(r"%(?![0-9A-Fa-f]{2})")


def resolve_scholar_url(scholar_url: str) -> str:
    """Return the target of a ``scholar_url?url=...`` redirect.

    Scholar double-encodes some destinations, so a second decode is attempted.
    A failed second decode keeps the first result; a failed first decode, or a
    link without a ``url`` parameter, returns the input unchanged. Malformed
    escapes and escapes that are not valid UTF-8 both count as failures.
    """
    unescaped = html.unescape(scholar_url)
    match = _URL_PARAM_PATTERN.search(unescaped)
    if not match:
        return scholar_url

    try:
        decoded = _percent_decode(match.group(1))
    except ValueError as exc:
        LOGGER.warning("Could not decode scholar url=%s: %s", scholar_url, exc)
        return scholar_url

    try:
        decoded = _percent_decode(decoded)
    except ValueError:
        pass

    return decoded


def _percent_decode(text: str) -> str:
    """Strict percent-decoding; raises ValueError (or UnicodeDecodeError) on bad input."""
    bad = _MALFORMED_ESCAPE_PATTERN.search(text)
    if bad:
        raise ValueError(f"malformed percent escape at position {bad.start()}")
    return unquote(text, errors="strict")
