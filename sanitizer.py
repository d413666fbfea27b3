"""Clean minutes before they reach the document exporters.

Never raises: anything odd is removed or truncated.
"""

from __future__ import annotations

import re
from typing import Optional

from models import FormattedMinutes

MAX_HTML_LENGTH = 10_000
MAX_TEXT_LENGTH = 1_000

_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>.*?</script\b[^>]*>", re.IGNORECASE | re.DOTALL)
_SCRIPT_TAG = re.compile(r"</?script\b[^>]*>", re.IGNORECASE)
_EVENT_HANDLER = re.compile(
    r"""\s*\bon[a-z]+\s*=\s*(?:"[^"]*"|'[^']*'|[^\s>]+)""",
    re.IGNORECASE,
)
_JAVASCRIPT_SCHEME = re.compile(r"javascript\s*:", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def _strip_unsafe(html: str) -> str:
    # Repeat until stable so removals cannot splice a new payload together.
    while True:
        cleaned = _SCRIPT_BLOCK.sub("", html)
        cleaned = _SCRIPT_TAG.sub("", cleaned)
        cleaned = _EVENT_HANDLER.sub("", cleaned)
        cleaned = _JAVASCRIPT_SCHEME.sub("", cleaned)
        if cleaned == html:
            return cleaned
        html = cleaned


def sanitize_html(html: Optional[str]) -> str:
    if not html or not isinstance(html, str):
        return ""
    cleaned = _strip_unsafe(html).strip()
    return cleaned[:MAX_HTML_LENGTH].strip()


def sanitize_text(text: Optional[str], limit: int = MAX_TEXT_LENGTH) -> str:
    if not text or not isinstance(text, str):
        return ""
    collapsed = _WHITESPACE.sub(" ", text).strip()
    return collapsed[:limit].strip()


def _sanitize_list(items: Optional[list[str]]) -> Optional[list[str]]:
    if items is None:
        return None
    return [cleaned for cleaned in (sanitize_text(item) for item in items) if cleaned]


def sanitize_minutes(minutes: FormattedMinutes) -> FormattedMinutes:
    return FormattedMinutes(
        html_content=sanitize_html(minutes.html_content),
        summary=sanitize_text(minutes.summary),
        action_items=_sanitize_list(minutes.action_items),
        decisions=_sanitize_list(minutes.decisions),
        next_meeting=(
            sanitize_text(minutes.next_meeting) if minutes.next_meeting is not None else None
        ),
    )
