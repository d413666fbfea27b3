"""Protocol interfaces used by RecordingSession and the minutes pipeline."""

from __future__ import annotations

from queue import Queue
from typing import Callable, Protocol

from models import AudioFrame, Credential, FormattedMinutes, MeetingMetadata, StreamEvent


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class TranscriptionStream(Protocol):
    def start(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_event: Callable[[StreamEvent], None],
    ) -> None: ...

    def stop(self) -> None: ...


class TokenIssuer(Protocol):
    def issue(self, duration: int) -> Credential: ...


class CredentialSource(Protocol):
    def ensure_valid_credential(self) -> Credential: ...


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str: ...


class MinutesFormatting(Protocol):
    def format(self, transcript: str, meta: MeetingMetadata) -> FormattedMinutes: ...


class ConfigStore(Protocol):
    def get_deepgram_api_key(self) -> str: ...

    def get_token_endpoint(self) -> str: ...

    def get_dashscope_api_key(self) -> str: ...

    def get_minutes_endpoint(self) -> str: ...

    def get_language(self) -> str: ...
