"""Plain agenda items built straight from the transcript.

Used when the formatting service is unavailable or returns something that
does not look like minutes. No network access; the same transcript always
yields the same minutes.
"""

from __future__ import annotations

import html
import re

from models import FormattedMinutes

FALLBACK_SUMMARY = (
    "Meeting minutes generated from transcript. Professional formatting was not available."
)
EMPTY_TRANSCRIPT_ITEM = "No substantive discussion was captured in the transcript"
MIN_SENTENCE_LENGTH = 10
MAX_ITEMS = 8

_SENTENCE_END = re.compile(r"[.!?]+")


def agenda_item_html(number: int, body: str) -> str:
    return f'<div class="agenda-item">\n<span class="agenda-number">{number}.</span>\n{body}\n</div>'


def split_sentences(transcript: str) -> list[str]:
    pieces = (piece.strip() for piece in _SENTENCE_END.split(transcript))
    return [piece for piece in pieces if len(piece) >= MIN_SENTENCE_LENGTH][:MAX_ITEMS]


def generate_fallback_minutes(transcript: str) -> FormattedMinutes:
    sentences = split_sentences(transcript or "") or [EMPTY_TRANSCRIPT_ITEM]
    html_content = "\n\n".join(
        agenda_item_html(index, html.escape(f"{sentence}.", quote=False))
        for index, sentence in enumerate(sentences, start=1)
    )
    return FormattedMinutes(html_content=html_content, summary=FALLBACK_SUMMARY)
