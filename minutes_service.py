"""Minutes pipeline: AI formatting with a deterministic fallback."""

from __future__ import annotations

import structlog

from errors import FALLBACK_WARNING, ProviderError, ValidationError
from fallback import generate_fallback_minutes
from interfaces import MinutesFormatting
from minutes_formatter import validate_minutes_html, validate_request
from models import MeetingMetadata, MinutesResult, MinutesSource
from sanitizer import sanitize_minutes

logger = structlog.get_logger(__name__)


class MinutesService:
    def __init__(self, formatter: MinutesFormatting) -> None:
        self._formatter = formatter

    def produce(self, transcript: str, meta: MeetingMetadata) -> MinutesResult:
        """Format minutes, falling back to plain agenda items if the AI path fails.

        Bad input (empty or oversized transcript, missing chair or minutes
        taker) raises ``ValidationError``. Every returned result has been
        through the sanitizer, whichever path produced it.
        """
        validate_request(transcript, meta)

        try:
            minutes = sanitize_minutes(self._formatter.format(transcript, meta.copy()))
            validate_minutes_html(minutes.html_content)
        except (ValidationError, ProviderError) as exc:
            logger.warning("minutes.fallback_used", reason=str(exc), code=exc.code)
            return MinutesResult(
                minutes=sanitize_minutes(generate_fallback_minutes(transcript)),
                source=MinutesSource.FALLBACK,
                warning=FALLBACK_WARNING,
            )

        logger.info("minutes.formatted", html_chars=len(minutes.html_content))
        return MinutesResult(minutes=minutes, source=MinutesSource.AI)
