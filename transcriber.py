"""Deepgram live transcription over a websocket.

Frames pulled from the audio queue are forwarded one by one as binary
messages by a sender thread; a receiver thread parses each provider
message into a ``TranscriptDelta`` and reports it through ``on_event``.
The credential travels as a websocket subprotocol so it never appears in
the URL (and therefore in access logs).
"""

from __future__ import annotations

import json
import threading
from queue import Empty, Queue
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import structlog
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect

from errors import NETWORK_ERROR, StreamConnectionError
from interfaces import CredentialSource
from models import AudioFrame, StreamEvent, StreamEventKind, StreamState, TranscriptDelta

logger = structlog.get_logger(__name__)

LISTEN_URL = "wss://api.deepgram.com/v1/listen"
DEFAULT_MODEL = "nova-2-general"
DEFAULT_LANGUAGE = "en-AU"


def build_listen_url(
    model: str = DEFAULT_MODEL,
    language: str = DEFAULT_LANGUAGE,
    sample_rate: int = 16000,
    channels: int = 1,
    base_url: str = LISTEN_URL,
) -> str:
    params = {
        "model": model,
        "language": language,
        "punctuate": "true",
        "interim_results": "true",
        "encoding": "linear16",
        "sample_rate": str(sample_rate),
        "channels": str(channels),
    }
    return f"{base_url}?{urlencode(params)}"


def parse_transcript_message(raw: str | bytes) -> Optional[TranscriptDelta]:
    """Turn a provider envelope into a delta, or None if it carries no text."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("stream.malformed_message", size=len(raw))
        return None
    if not isinstance(data, dict):
        return None

    channel = data.get("channel")
    if not isinstance(channel, dict):
        return None
    alternatives = channel.get("alternatives")
    if not isinstance(alternatives, list) or not alternatives:
        return None
    alternative = alternatives[0]
    if not isinstance(alternative, dict):
        return None

    text = str(alternative.get("transcript") or "")
    if not text.strip():
        return None

    confidence = alternative.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = None
    return TranscriptDelta(
        text=text,
        is_final=bool(data.get("is_final", False)),
        confidence=float(confidence) if confidence is not None else None,
    )


class DeepgramStreamClient:
    def __init__(
        self,
        credentials: CredentialSource,
        model: str = DEFAULT_MODEL,
        language: str = DEFAULT_LANGUAGE,
        sample_rate: int = 16000,
        channels: int = 1,
        open_timeout_s: float = 10.0,
        base_url: str = LISTEN_URL,
    ) -> None:
        self._credentials = credentials
        self._url = build_listen_url(model, language, sample_rate, channels, base_url)
        self._open_timeout_s = open_timeout_s
        self._lock = threading.Lock()
        self._state = StreamState.IDLE
        self._ws: Any = None
        self._stop_event = threading.Event()
        self._sender: Optional[threading.Thread] = None
        self._receiver: Optional[threading.Thread] = None
        self._audio_queue: Optional[Queue[AudioFrame | None]] = None
        self._on_event: Optional[Callable[[StreamEvent], None]] = None
        self.frames_sent = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    def start(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_event: Callable[[StreamEvent], None],
    ) -> None:
        with self._lock:
            if self._state in (StreamState.CONNECTING, StreamState.STREAMING):
                return
            self._state = StreamState.CONNECTING

        try:
            credential = self._credentials.ensure_valid_credential()
            ws = connect(
                self._url,
                subprotocols=["token", credential.secret],
                open_timeout=self._open_timeout_s,
            )
        except (OSError, TimeoutError, WebSocketException) as exc:
            self._state = StreamState.CLOSED
            logger.warning("stream.connect_failed", error=str(exc))
            raise StreamConnectionError(f"Could not connect to transcription service: {exc}") from exc
        except Exception:
            self._state = StreamState.CLOSED
            raise

        with self._lock:
            self._ws = ws
            self._audio_queue = audio_queue
            self._on_event = on_event
            self._stop_event.clear()
            self.frames_sent = 0
            self._state = StreamState.STREAMING
            self._sender = threading.Thread(target=self._send_loop, daemon=True)
            self._receiver = threading.Thread(target=self._receive_loop, daemon=True)
            self._sender.start()
            self._receiver.start()
        logger.info("stream.connected", url=self._url)

    def stop(self) -> None:
        with self._lock:
            ws, self._ws = self._ws, None
            if ws is None:
                return
            self._stop_event.set()
            sender, receiver = self._sender, self._receiver

        current = threading.current_thread()
        try:
            if sender is not None and sender is not current:
                sender.join(timeout=1.0)
        finally:
            try:
                ws.close()
            except Exception:
                logger.warning("stream.close_error", exc_info=True)
            if receiver is not None and receiver is not current:
                receiver.join(timeout=1.0)
            self._state = StreamState.CLOSED
            logger.info("stream.closed", frames_sent=self.frames_sent)

    # ------------------------------------------------------------------
    # Worker threads
    # ------------------------------------------------------------------

    def _send_loop(self) -> None:
        ws = self._ws
        if self._audio_queue is None or ws is None:
            return
        while not self._stop_event.is_set():
            try:
                frame = self._audio_queue.get(timeout=0.2)
            except Empty:
                continue
            if frame is None:  # Sentinel
                break
            if self._stop_event.is_set():
                break
            try:
                ws.send(frame.pcm16_bytes)
            except ConnectionClosed:
                break
            self.frames_sent += 1

    def _receive_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        reason = "Transcription connection closed"
        try:
            for message in ws:
                if isinstance(message, bytes):
                    continue
                delta = parse_transcript_message(message)
                if delta is None:
                    continue
                self._emit(StreamEvent(kind=StreamEventKind.TRANSCRIPT.value, delta=delta))
        except ConnectionClosed as exc:
            reason = f"Transcription connection dropped: {exc}"
            logger.warning("stream.dropped", error=str(exc))
        finally:
            self._state = StreamState.CLOSED

        if not self._stop_event.is_set():
            logger.info("stream.closed_by_provider")
            self._emit(
                StreamEvent(
                    kind=StreamEventKind.CLOSED.value,
                    code=NETWORK_ERROR,
                    message=reason,
                )
            )

    def _emit(self, event: StreamEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.exception("stream.event_handler_failed", kind=event.kind)
