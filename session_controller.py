"""State-machine based recording session orchestration."""

from __future__ import annotations

import threading
from queue import Queue
from typing import Callable, Optional

import structlog

from errors import NETWORK_ERROR, MinutesError, user_message
from interfaces import Recorder, TranscriptionStream
from models import AudioFrame, SessionState, StreamEvent, StreamEventKind
from transcript import TranscriptAssembler

logger = structlog.get_logger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
TranscriptCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]


class RecordingSession:
    def __init__(
        self,
        recorder: Recorder,
        stream: TranscriptionStream,
        assembler: Optional[TranscriptAssembler] = None,
        queue_maxsize: int = 50,
        on_state_change: Optional[StateCallback] = None,
        on_transcript: Optional[TranscriptCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._recorder = recorder
        self._stream = stream
        self._assembler = assembler or TranscriptAssembler()
        self._on_state_change = on_state_change
        self._on_transcript = on_transcript
        self._on_error = on_error

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session_id = 0
        self._audio_queue: Queue[AudioFrame | None] = Queue(maxsize=queue_maxsize)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def transcript(self) -> str:
        return self._assembler.text

    def start_session(self) -> None:
        with self._lock:
            if self._state != SessionState.IDLE:
                return
            self._session_id += 1
            self._audio_queue = Queue(maxsize=self._audio_queue.maxsize)
            self._transition(SessionState.CONNECTING)
            try:
                self._recorder.start(self._audio_queue)
                self._stream.start(self._audio_queue, self._handle_stream_event)
            except MinutesError as exc:
                self._fail(exc.code, exc.message)
                return
            except Exception as exc:
                logger.exception("session.start_failed")
                self._fail(NETWORK_ERROR, f"start failed: {exc}")
                return
            self._transition(SessionState.RECORDING)
            logger.info("session.recording", session_id=self._session_id)

    def stop_session(self) -> str:
        """Stop recording and return the transcript with interim text removed."""
        with self._lock:
            if self._state not in (SessionState.CONNECTING, SessionState.RECORDING):
                return self._assembler.text
            self._transition(SessionState.STOPPING)

        # Outside the lock: a receiver delivering a late event must not block on it.
        self._release()

        with self._lock:
            text = self._assembler.finish()
            self._transition(SessionState.IDLE)
            logger.info("session.stopped", session_id=self._session_id, chars=len(text))
            return text

    def cancel_session(self, reason: str) -> None:
        with self._lock:
            if self._state in (SessionState.IDLE, SessionState.STOPPING):
                return
            self._transition(SessionState.STOPPING)
            self._emit_error(NETWORK_ERROR, reason)

        self._release()

        with self._lock:
            self._assembler.finish()
            self._transition(SessionState.IDLE)

    def clear_transcript(self) -> None:
        self._assembler.clear()
        if self._on_transcript:
            self._on_transcript("")

    def _handle_stream_event(self, event: StreamEvent) -> None:
        with self._lock:
            if self._state not in (SessionState.CONNECTING, SessionState.RECORDING):
                return
            if event.kind == StreamEventKind.TRANSCRIPT.value and event.delta is not None:
                text = self._assembler.apply(event.delta)
                if self._on_transcript:
                    self._on_transcript(text)
                return
            if event.kind == StreamEventKind.CLOSED.value:
                self._fail(event.code or NETWORK_ERROR, event.message)

    def _fail(self, code: str, message: str) -> None:
        logger.warning("session.failed", code=code, message=message)
        self._transition(SessionState.ERROR)
        self._emit_error(code, message or user_message(code))
        self._release()
        self._assembler.finish()
        self._transition(SessionState.IDLE)

    def _release(self) -> None:
        # Order matters: stop forwarding and close the socket, then free the mic.
        self._safe_stop_stream()
        self._safe_stop_recorder()

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception:
            logger.warning("session.recorder_stop_failed", exc_info=True)

    def _safe_stop_stream(self) -> None:
        try:
            self._stream.stop()
        except Exception:
            logger.warning("session.stream_stop_failed", exc_info=True)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
