"""Turn a meeting transcript into HTML minutes with a text-generation model.

The prompt pins the output to numbered ``agenda-item`` blocks so the result
drops straight into the club's minutes template. Anything that comes back
without at least one such block is rejected with ``ValidationError`` and the
caller falls back to ``fallback.generate_fallback_minutes``.
"""

from __future__ import annotations

import re
from http import HTTPStatus

import requests
import structlog

from errors import ConfigError, ProviderError, ValidationError
from interfaces import TextGenerator
from models import FormattedMinutes, MeetingMetadata

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = structlog.get_logger(__name__)

MAX_TRANSCRIPT_LENGTH = 50_000
SUMMARY_PREFIX = "Meeting minutes processed successfully."
SUMMARY_EXCERPT_LENGTH = 100
DEFAULT_CLUB_NAME = "Lobethal Harmony Club"

_AGENDA_ITEM = re.compile(r"""<div\s+class\s*=\s*["']agenda-item["']\s*>""", re.IGNORECASE)
_FIRST_ITEM_TEXT = re.compile(r'<span class="agenda-number">\d+\.</span>\s*([^<]+)')

FORMATTING_INSTRUCTIONS = """\
You write the official meeting minutes for the {club}, a community music club.

Turn the transcript below into formal minutes for the club's minutes template.

## OUTPUT FORMAT
Reply with HTML fragments only, one block per topic discussed:

<div class="agenda-item">
<span class="agenda-number">1.</span>
Minutes text for the topic, with <span class="highlight">key facts</span> highlighted.
</div>

## RULES
1. Number the blocks sequentially starting at 1 (1., 2., 3., ...).
2. Wrap every block in <div class="agenda-item"> and its number in <span class="agenda-number">.
3. Wrap names, dates, decisions, assigned actions, events and figures in <span class="highlight">.
4. Write complete sentences. Do not use bullet points or lists.
5. Keep a formal but friendly tone suitable for club minutes.
6. Only include what was actually said, in the order it was discussed.

## EXAMPLE
<div class="agenda-item">
<span class="agenda-number">1.</span>
John welcomed all and apologies were noted. <span class="highlight">Peter directed the choir</span> in Alex's absence.
</div>

<div class="agenda-item">
<span class="agenda-number">2.</span>
The <span class="highlight">Strathalbyn concert will take place on 21st September</span>.
</div>"""


def validate_transcript(transcript: str) -> None:
    if not transcript or not isinstance(transcript, str) or not transcript.strip():
        raise ValidationError("Transcript cannot be empty")
    if len(transcript) > MAX_TRANSCRIPT_LENGTH:
        raise ValidationError("Transcript too long. Maximum 50,000 characters allowed.")


def validate_request(transcript: str, meta: MeetingMetadata) -> None:
    validate_transcript(transcript)
    if not meta.chairperson.strip() or not meta.minutes_by.strip():
        raise ValidationError("Meeting chairperson and minutes taker are required")


def validate_minutes_html(content: str) -> None:
    if not content or not content.strip():
        raise ValidationError("No response from AI service")
    if not _AGENDA_ITEM.search(content):
        raise ValidationError("Invalid response format from AI service")


def build_prompt(
    transcript: str,
    meta: MeetingMetadata,
    club_name: str = DEFAULT_CLUB_NAME,
) -> str:
    return (
        f"{FORMATTING_INSTRUCTIONS.format(club=club_name)}\n\n"
        "## MEETING CONTEXT\n"
        f"- Date: {meta.date}\n"
        f"- Type: {meta.type.value}\n"
        f"- Chair: {meta.chairperson}\n"
        f"- Present: {meta.present}\n"
        f"- Apologies: {meta.apologies}\n"
        f"- Minutes by: {meta.minutes_by}\n\n"
        "## TRANSCRIPT\n"
        f"{transcript.strip()}\n\n"
        "Format this transcript into meeting minutes as described above."
    )


def extract_summary(html_content: str) -> str:
    match = _FIRST_ITEM_TEXT.search(html_content)
    if not match:
        return SUMMARY_PREFIX
    excerpt = match.group(1).strip()[:SUMMARY_EXCERPT_LENGTH]
    return f"{SUMMARY_PREFIX} {excerpt}..."


class MinutesFormatter:
    def __init__(self, generator: TextGenerator, club_name: str = DEFAULT_CLUB_NAME) -> None:
        self._generator = generator
        self._club_name = club_name

    def format(
        self,
        transcript: str,
        meta: MeetingMetadata,
        require_officers: bool = True,
    ) -> FormattedMinutes:
        if require_officers:
            validate_request(transcript, meta)
        else:
            validate_transcript(transcript)
        prompt = build_prompt(transcript, meta.copy(), self._club_name)
        logger.info("minutes.format_requested", transcript_chars=len(transcript))

        content = (self._generator.generate(prompt) or "").strip()
        try:
            validate_minutes_html(content)
        except ValidationError:
            logger.warning("minutes.invalid_ai_output", preview=content[:200])
            raise

        return FormattedMinutes(html_content=content, summary=extract_summary(content))


class DashscopeTextGenerator:
    def __init__(
        self,
        api_key: str,
        model: str = "qwen-plus",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        request_timeout_s: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._request_timeout_s = request_timeout_s

    def generate(self, prompt: str) -> str:
        if dashscope is None:
            raise ConfigError("dashscope is not installed")
        if not self._api_key:
            raise ConfigError("No DashScope API key configured")

        try:
            response = dashscope.Generation.call(
                api_key=self._api_key,
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                result_format="message",
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                timeout=self._request_timeout_s,
            )
        except Exception as exc:
            logger.error("dashscope.call_failed", error=str(exc))
            raise ProviderError(f"Text generation failed: {exc}") from exc

        status = self._get(response, "status_code")
        if status != HTTPStatus.OK:
            logger.error(
                "dashscope.bad_status",
                status=status,
                code=self._get(response, "code"),
                message=self._get(response, "message"),
            )
            raise ProviderError(f"Text generation returned status {status}")

        text = self._extract_text(response)
        if not text:
            raise ProviderError("No content received from text generation")
        return text

    def _extract_text(self, response: object) -> str:
        """Pull the message content out of a dashscope response dict."""
        output = self._get(response, "output") or {}
        if not isinstance(output, dict):
            return ""
        choices = output.get("choices") or []
        if not choices:
            return str(output.get("text") or "")
        message = choices[0].get("message", {})
        content = message.get("content", "")
        if isinstance(content, list):
            return "".join(
                str(part.get("text", "")) for part in content if isinstance(part, dict)
            )
        return str(content or "")

    @staticmethod
    def _get(response: object, key: str) -> object:
        if isinstance(response, dict):
            return response.get(key)
        return getattr(response, key, None)


class EndpointMinutesFormatter:
    """Format minutes through the app's own ``/api/format-minutes`` route."""

    def __init__(self, url: str, timeout_s: float = 90.0) -> None:
        self._url = url
        self._timeout_s = timeout_s

    def format(self, transcript: str, meta: MeetingMetadata) -> FormattedMinutes:
        validate_request(transcript, meta)
        payload = {
            "transcript": transcript.strip(),
            "meetingInfo": {
                "date": meta.date,
                "type": meta.type.value,
                "chairperson": meta.chairperson,
                "present": meta.present,
                "apologies": meta.apologies,
                "minutesBy": meta.minutes_by,
            },
        }
        try:
            response = requests.post(self._url, json=payload, timeout=self._timeout_s)
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ProviderError(f"Minutes endpoint unreachable: {exc}") from exc

        if not isinstance(data, dict) or not data.get("success"):
            error = data.get("error") if isinstance(data, dict) else None
            logger.warning("minutes.endpoint_failed", status=response.status_code, error=error)
            raise ProviderError(error or "Failed to format minutes")

        minutes = data.get("formattedMinutes")
        if not isinstance(minutes, dict):
            raise ProviderError("No formatted minutes received from service")

        content = str(minutes.get("htmlContent") or "")
        validate_minutes_html(content)
        return FormattedMinutes(
            html_content=content,
            summary=str(minutes.get("summary") or extract_summary(content)),
        )
