"""Tests for DeepgramStreamClient."""

from __future__ import annotations

import json
import threading
import time
from queue import Queue
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from websockets.exceptions import ConnectionClosedError

from errors import NETWORK_ERROR, AuthError, StreamConnectionError
from models import AudioFrame, Credential, StreamEvent, StreamEventKind, StreamState
from transcriber import DeepgramStreamClient, build_listen_url, parse_transcript_message


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

class FakeBroker:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = 0

    def ensure_valid_credential(self) -> Credential:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return Credential(secret="secret-token")


class FakeWebSocket:
    """Stands in for a websockets sync ClientConnection."""

    def __init__(
        self,
        messages: list[str | bytes] | None = None,
        hold_open: bool = True,
        drop: Exception | None = None,
    ) -> None:
        self.sent: list[bytes] = []
        self.closed = threading.Event()
        self._messages = messages or []
        self._hold_open = hold_open
        self._drop = drop

    def send(self, data: bytes) -> None:
        self.sent.append(data)

    def close(self) -> None:
        self.closed.set()

    def __iter__(self):
        for message in self._messages:
            yield message
        if self._drop is not None:
            raise self._drop
        if self._hold_open:
            self.closed.wait(timeout=5)


def _message(text: str, is_final: bool = False, confidence: float | None = 0.9) -> str:
    alternative: dict = {"transcript": text}
    if confidence is not None:
        alternative["confidence"] = confidence
    return json.dumps({"type": "Results", "is_final": is_final, "channel": {"alternatives": [alternative]}})


def _make_frame(n_samples: int = 1600) -> AudioFrame:
    return AudioFrame(pcm16_bytes=b"\x00\x00" * n_samples)


def _wait_until(predicate, timeout: float = 3.0) -> None:  # noqa: ANN001
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return
        time.sleep(0.02)


# ---------------------------------------------------------------
# URL and message parsing
# ---------------------------------------------------------------

def test_listen_url_fixes_stream_parameters() -> None:
    url = urlparse(build_listen_url())
    params = {key: values[0] for key, values in parse_qs(url.query).items()}

    assert url.scheme == "wss"
    assert url.netloc == "api.deepgram.com"
    assert params == {
        "model": "nova-2-general",
        "language": "en-AU",
        "punctuate": "true",
        "interim_results": "true",
        "encoding": "linear16",
        "sample_rate": "16000",
        "channels": "1",
    }


def test_parse_interim_and_final_messages() -> None:
    interim = parse_transcript_message(_message("the concert", is_final=False, confidence=0.71))
    final = parse_transcript_message(_message("The concert is on Sunday.", is_final=True))

    assert interim is not None and interim.is_final is False
    assert interim.text == "the concert"
    assert interim.confidence == pytest.approx(0.71)
    assert final is not None and final.is_final is True


def test_parse_without_confidence() -> None:
    delta = parse_transcript_message(_message("hello", confidence=None))
    assert delta is not None
    assert delta.confidence is None


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        json.dumps({"type": "Metadata", "request_id": "abc"}),
        json.dumps({"channel": {"alternatives": []}}),
        _message("   "),
        json.dumps(["unexpected"]),
    ],
)
def test_parse_ignores_messages_without_text(raw: str) -> None:
    assert parse_transcript_message(raw) is None


# ---------------------------------------------------------------
# Connecting
# ---------------------------------------------------------------

@patch("transcriber.connect")
def test_credential_is_sent_as_subprotocol_not_in_url(mock_connect: MagicMock) -> None:
    mock_connect.return_value = FakeWebSocket()
    client = DeepgramStreamClient(FakeBroker())

    client.start(Queue(), lambda event: None)
    try:
        args, kwargs = mock_connect.call_args
        assert "secret-token" not in args[0]
        assert kwargs["subprotocols"] == ["token", "secret-token"]
        assert client.state == StreamState.STREAMING
    finally:
        client.stop()
    assert client.state == StreamState.CLOSED


@patch("transcriber.connect")
def test_connect_failure_raises_stream_connection_error(mock_connect: MagicMock) -> None:
    mock_connect.side_effect = OSError("Name or service not known")
    client = DeepgramStreamClient(FakeBroker())

    with pytest.raises(StreamConnectionError):
        client.start(Queue(), lambda event: None)
    assert client.state == StreamState.CLOSED


@patch("transcriber.connect")
def test_auth_error_propagates_before_connecting(mock_connect: MagicMock) -> None:
    client = DeepgramStreamClient(FakeBroker(error=AuthError("no token")))

    with pytest.raises(AuthError):
        client.start(Queue(), lambda event: None)
    mock_connect.assert_not_called()
    assert client.state == StreamState.CLOSED


# ---------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------

@patch("transcriber.connect")
def test_frames_are_forwarded_as_binary_messages(mock_connect: MagicMock) -> None:
    ws = FakeWebSocket()
    mock_connect.return_value = ws
    client = DeepgramStreamClient(FakeBroker())
    q: Queue[AudioFrame | None] = Queue()

    client.start(q, lambda event: None)
    q.put(_make_frame(10))
    q.put(_make_frame(20))
    _wait_until(lambda: len(ws.sent) == 2)
    client.stop()

    assert ws.sent == [b"\x00\x00" * 10, b"\x00\x00" * 20]
    assert client.frames_sent == 2
    assert ws.closed.is_set()


@patch("transcriber.connect")
def test_provider_messages_become_transcript_events(mock_connect: MagicMock) -> None:
    mock_connect.return_value = FakeWebSocket(
        messages=[
            _message("John", is_final=False),
            "{garbage",
            b"\x00\x01",
            _message("John welcomed all.", is_final=True),
        ]
    )
    events: list[StreamEvent] = []
    client = DeepgramStreamClient(FakeBroker())

    client.start(Queue(), events.append)
    _wait_until(lambda: len(events) == 2)
    client.stop()

    assert [e.kind for e in events] == [StreamEventKind.TRANSCRIPT.value] * 2
    assert [(e.delta.text, e.delta.is_final) for e in events] == [
        ("John", False),
        ("John welcomed all.", True),
    ]


@patch("transcriber.connect")
def test_provider_close_emits_closed_event(mock_connect: MagicMock) -> None:
    mock_connect.return_value = FakeWebSocket(messages=[_message("hi there", True)], hold_open=False)
    events: list[StreamEvent] = []
    client = DeepgramStreamClient(FakeBroker())

    client.start(Queue(), events.append)
    _wait_until(lambda: any(e.kind == StreamEventKind.CLOSED.value for e in events))

    closed = [e for e in events if e.kind == StreamEventKind.CLOSED.value]
    assert len(closed) == 1
    assert closed[0].code == NETWORK_ERROR
    assert client.state == StreamState.CLOSED
    client.stop()


@patch("transcriber.connect")
def test_dropped_connection_emits_closed_event(mock_connect: MagicMock) -> None:
    mock_connect.return_value = FakeWebSocket(drop=ConnectionClosedError(None, None))
    events: list[StreamEvent] = []
    client = DeepgramStreamClient(FakeBroker())

    client.start(Queue(), events.append)
    _wait_until(lambda: bool(events))

    assert events[0].kind == StreamEventKind.CLOSED.value
    assert "dropped" in events[0].message
    client.stop()


@patch("transcriber.connect")
def test_handler_errors_do_not_stop_the_stream(mock_connect: MagicMock) -> None:
    mock_connect.return_value = FakeWebSocket(
        messages=[_message("first words"), _message("second words", True)]
    )
    seen: list[str] = []

    def handler(event: StreamEvent) -> None:
        seen.append(event.delta.text)
        if len(seen) == 1:
            raise ValueError("boom")

    client = DeepgramStreamClient(FakeBroker())
    client.start(Queue(), handler)
    _wait_until(lambda: len(seen) == 2)
    client.stop()

    assert seen == ["first words", "second words"]


@patch("transcriber.connect")
def test_explicit_stop_emits_no_closed_event(mock_connect: MagicMock) -> None:
    mock_connect.return_value = FakeWebSocket()
    events: list[StreamEvent] = []
    client = DeepgramStreamClient(FakeBroker())

    client.start(Queue(), events.append)
    client.stop()
    client.stop()  # idempotent
    time.sleep(0.1)

    assert events == []
    assert client.state == StreamState.CLOSED


@patch("transcriber.connect")
def test_no_frames_forwarded_after_stop(mock_connect: MagicMock) -> None:
    ws = FakeWebSocket()
    mock_connect.return_value = ws
    client = DeepgramStreamClient(FakeBroker())
    q: Queue[AudioFrame | None] = Queue()

    client.start(q, lambda event: None)
    client.stop()
    q.put(_make_frame())
    time.sleep(0.3)

    assert ws.sent == []
