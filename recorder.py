"""Microphone recorder adapter."""

from __future__ import annotations

import threading
import time
from queue import Full, Queue
from typing import Any

import numpy as np
import structlog

from errors import DeviceError
from models import AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = structlog.get_logger(__name__)

PCM16_MAX = 32767


def float_to_pcm16(samples: Any) -> bytes:
    """Clamp float samples to [-1, 1] and scale to little-endian int16 bytes."""
    data = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    return np.rint(data * PCM16_MAX).astype("<i2").tobytes()


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None

    @property
    def block_size(self) -> int:
        return int(self.sample_rate * (self.chunk_ms / 1000.0))

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise DeviceError("sounddevice is not installed")
            self._audio_queue = audio_queue
            stream = None
            try:
                stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="float32",
                    blocksize=self.block_size,
                    callback=self._on_audio,
                )
                stream.start()
            except Exception as exc:
                logger.warning("recorder.open_failed", error=str(exc))
                if stream is not None:
                    self._close_quietly(stream)
                raise DeviceError(f"Microphone unavailable: {exc}") from exc
            self._stream = stream
            self._running = True
            logger.info(
                "recorder.started",
                sample_rate=self.sample_rate,
                block_size=self.block_size,
            )

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                self._signal_end_of_audio()
                return
            # Frames are only queued while _running is set under this lock.
            self._running = False
            stream, self._stream = self._stream, None

        try:
            if stream is not None:
                try:
                    stream.stop()
                finally:
                    stream.close()
        finally:
            self._signal_end_of_audio()
            logger.info("recorder.stopped", dropped_chunks=self.dropped_chunks)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("recorder.status", status=str(status))
        payload = float_to_pcm16(indata)
        frame = AudioFrame(
            pcm16_bytes=payload,
            sample_rate=self.sample_rate,
            channels=self.channels,
            timestamp_ms=int(time.time() * 1000),
        )
        with self._lock:
            if not self._running or self._audio_queue is None:
                return
            try:
                self._audio_queue.put_nowait(frame)
            except Full:
                self.dropped_chunks += 1

    def _signal_end_of_audio(self) -> None:
        if self._audio_queue is None:
            return
        try:
            self._audio_queue.put_nowait(None)
        except Full:
            pass

    @staticmethod
    def _close_quietly(stream: Any) -> None:
        try:
            stream.close()
        except Exception:
            logger.warning("recorder.close_failed", exc_info=True)
