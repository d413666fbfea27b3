"""Tests for the AI minutes formatter and its text-generation backends."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from errors import ConfigError, ProviderError, ValidationError
from minutes_formatter import (
    SUMMARY_PREFIX,
    DashscopeTextGenerator,
    EndpointMinutesFormatter,
    MinutesFormatter,
    build_prompt,
    extract_summary,
    validate_minutes_html,
)
from models import MeetingMetadata, MeetingType

AI_HTML = (
    '<div class="agenda-item">\n<span class="agenda-number">1.</span>\n'
    'John welcomed all and <span class="highlight">apologies were noted</span>.\n</div>'
)

META = MeetingMetadata(
    date="2025-08-19",
    type=MeetingType.PRACTICE,
    chairperson="John",
    present="Peter, Mary",
    apologies="Alex",
    minutes_by="Mary",
)


class FakeGenerator:
    def __init__(self, reply: str = AI_HTML, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


def _dashscope_response(status: int = 200, content: object = AI_HTML) -> dict:
    return {
        "status_code": status,
        "code": "" if status == 200 else "Throttling",
        "message": "" if status == 200 else "Requests rate limit exceeded",
        "output": {"choices": [{"message": {"role": "assistant", "content": content}}]},
    }


# ---------------------------------------------------------------
# Validation
# ---------------------------------------------------------------

@pytest.mark.parametrize("transcript", ["", "   \n  "])
def test_empty_transcript_is_rejected(transcript: str) -> None:
    generator = FakeGenerator()

    with pytest.raises(ValidationError, match="cannot be empty"):
        MinutesFormatter(generator).format(transcript, META)
    assert generator.prompts == []


def test_oversized_transcript_is_rejected() -> None:
    generator = FakeGenerator()

    with pytest.raises(ValidationError, match="50,000"):
        MinutesFormatter(generator).format("a" * 50_001, META)
    assert generator.prompts == []


def test_transcript_at_limit_is_accepted() -> None:
    minutes = MinutesFormatter(FakeGenerator()).format("a" * 50_000, META)
    assert minutes.html_content == AI_HTML


def test_missing_chair_is_rejected_unless_relaxed() -> None:
    meta = MeetingMetadata(date="2025-08-19", minutes_by="Mary")
    formatter = MinutesFormatter(FakeGenerator())

    with pytest.raises(ValidationError, match="chairperson"):
        formatter.format("John welcomed all.", meta)
    assert formatter.format("John welcomed all.", meta, require_officers=False).html_content == AI_HTML


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("", "No response"),
        ("<p>Here are your minutes</p>", "Invalid response format"),
        ("1. John welcomed all.", "Invalid response format"),
    ],
)
def test_output_without_agenda_items_is_rejected(content: str, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        MinutesFormatter(FakeGenerator(reply=content)).format("John welcomed all.", META)


def test_agenda_marker_check_tolerates_quote_style() -> None:
    validate_minutes_html("<div class='agenda-item'>x</div>")


# ---------------------------------------------------------------
# Prompt and summary
# ---------------------------------------------------------------

def test_prompt_carries_metadata_and_transcript() -> None:
    prompt = build_prompt("  Peter directed the choir.  ", META)

    assert "Lobethal Harmony Club" in prompt
    assert '<div class="agenda-item">' in prompt
    assert "- Date: 2025-08-19" in prompt
    assert "- Type: Practice" in prompt
    assert "- Chair: John" in prompt
    assert "- Apologies: Alex" in prompt
    assert "- Minutes by: Mary" in prompt
    assert prompt.rstrip().endswith("as described above.")
    assert "\nPeter directed the choir.\n" in prompt


def test_formatter_uses_club_name() -> None:
    generator = FakeGenerator()
    MinutesFormatter(generator, club_name="Hills Choir").format("John welcomed all.", META)

    assert "Hills Choir" in generator.prompts[0]


def test_summary_uses_first_item() -> None:
    summary = extract_summary(AI_HTML)

    assert summary.startswith(f"{SUMMARY_PREFIX} John welcomed all and")
    assert summary.endswith("...")


def test_summary_excerpt_is_capped() -> None:
    html = f'<span class="agenda-number">1.</span>{"x" * 300}'
    summary = extract_summary(html)

    assert summary == f"{SUMMARY_PREFIX} {'x' * 100}..."


def test_summary_without_items() -> None:
    assert extract_summary("<p>nothing</p>") == SUMMARY_PREFIX


# ---------------------------------------------------------------
# DashscopeTextGenerator
# ---------------------------------------------------------------

@patch("minutes_formatter.dashscope")
def test_dashscope_generator_returns_message_content(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.return_value = _dashscope_response()
    generator = DashscopeTextGenerator(api_key="sk-test", model="qwen-plus")

    assert generator.generate("prompt text") == AI_HTML

    kwargs = mock_dashscope.Generation.call.call_args.kwargs
    assert kwargs["api_key"] == "sk-test"
    assert kwargs["model"] == "qwen-plus"
    assert kwargs["messages"] == [{"role": "user", "content": "prompt text"}]
    assert kwargs["result_format"] == "message"
    assert kwargs["temperature"] == pytest.approx(0.1)
    assert kwargs["max_tokens"] == 2000


@patch("minutes_formatter.dashscope")
def test_dashscope_generator_joins_content_parts(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.return_value = _dashscope_response(
        content=[{"text": "<div class=\"agenda-item\">"}, {"text": "x</div>"}]
    )

    assert DashscopeTextGenerator(api_key="sk").generate("p") == '<div class="agenda-item">x</div>'


@patch("minutes_formatter.dashscope")
def test_dashscope_bad_status_raises_provider_error(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.return_value = _dashscope_response(status=429)

    with pytest.raises(ProviderError, match="429"):
        DashscopeTextGenerator(api_key="sk").generate("p")


@patch("minutes_formatter.dashscope")
def test_dashscope_exception_raises_provider_error(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.side_effect = RuntimeError("timed out")

    with pytest.raises(ProviderError):
        DashscopeTextGenerator(api_key="sk").generate("p")


@patch("minutes_formatter.dashscope")
def test_dashscope_empty_content_raises_provider_error(mock_dashscope: MagicMock) -> None:
    mock_dashscope.Generation.call.return_value = _dashscope_response(content="")

    with pytest.raises(ProviderError):
        DashscopeTextGenerator(api_key="sk").generate("p")


@patch("minutes_formatter.dashscope")
def test_dashscope_without_key_is_config_error(mock_dashscope: MagicMock) -> None:
    with pytest.raises(ConfigError):
        DashscopeTextGenerator(api_key="").generate("p")
    mock_dashscope.Generation.call.assert_not_called()


@patch("minutes_formatter.dashscope", None)
def test_dashscope_missing_package_is_config_error() -> None:
    with pytest.raises(ConfigError):
        DashscopeTextGenerator(api_key="sk").generate("p")


def test_generator_errors_propagate_from_formatter() -> None:
    formatter = MinutesFormatter(FakeGenerator(error=ProviderError("down")))

    with pytest.raises(ProviderError):
        formatter.format("John welcomed all.", META)


# ---------------------------------------------------------------
# EndpointMinutesFormatter
# ---------------------------------------------------------------

def _http_response(status: int, payload: object) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    return response


@patch("minutes_formatter.requests.post")
def test_endpoint_formatter_posts_camel_case_payload(mock_post: MagicMock) -> None:
    mock_post.return_value = _http_response(
        200,
        {"success": True, "formattedMinutes": {"htmlContent": AI_HTML, "summary": "Done."}},
    )

    minutes = EndpointMinutesFormatter("http://localhost/api/format-minutes").format(
        " John welcomed all. ", META
    )

    payload = mock_post.call_args.kwargs["json"]
    assert payload["transcript"] == "John welcomed all."
    assert payload["meetingInfo"]["minutesBy"] == "Mary"
    assert payload["meetingInfo"]["type"] == "Practice"
    assert minutes.html_content == AI_HTML
    assert minutes.summary == "Done."


@patch("minutes_formatter.requests.post")
def test_endpoint_formatter_failure_is_provider_error(mock_post: MagicMock) -> None:
    mock_post.return_value = _http_response(503, {"success": False, "error": "Formatting service unavailable"})

    with pytest.raises(ProviderError, match="Formatting service unavailable"):
        EndpointMinutesFormatter("http://localhost/api/format-minutes").format("John welcomed all.", META)


@patch("minutes_formatter.requests.post")
def test_endpoint_formatter_network_error(mock_post: MagicMock) -> None:
    mock_post.side_effect = requests.Timeout("slow")

    with pytest.raises(ProviderError):
        EndpointMinutesFormatter("http://localhost/api/format-minutes").format("John welcomed all.", META)


@patch("minutes_formatter.requests.post")
def test_endpoint_formatter_rejects_markerless_html(mock_post: MagicMock) -> None:
    mock_post.return_value = _http_response(
        200, {"success": True, "formattedMinutes": {"htmlContent": "<p>hi</p>", "summary": ""}}
    )

    with pytest.raises(ValidationError):
        EndpointMinutesFormatter("http://localhost/api/format-minutes").format("John welcomed all.", META)
