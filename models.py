"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class SessionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    RECORDING = "RECORDING"
    STOPPING = "STOPPING"
    ERROR = "ERROR"


class StreamState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    STREAMING = "STREAMING"
    CLOSED = "CLOSED"


class StreamEventKind(str, Enum):
    TRANSCRIPT = "transcript"
    CLOSED = "closed"


class MeetingType(str, Enum):
    MEETING = "Meeting"
    PRACTICE = "Practice"
    COMMITTEE = "Committee"
    PERFORMANCE = "Performance"
    SPECIAL = "Special"


class MinutesSource(str, Enum):
    AI = "ai"
    FALLBACK = "fallback"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass(frozen=True)
class TranscriptDelta:
    text: str
    is_final: bool = False
    confidence: Optional[float] = None


@dataclass
class StreamEvent:
    kind: str
    delta: Optional[TranscriptDelta] = None
    code: str = ""
    message: str = ""


@dataclass(frozen=True)
class Credential:
    secret: str
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class MeetingMetadata:
    date: str
    type: MeetingType = MeetingType.MEETING
    chairperson: str = ""
    present: str = ""
    apologies: str = ""
    minutes_by: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "MeetingMetadata":
        """Build metadata from the camelCase payload used by the HTTP API."""
        raw_type = str(data.get("type") or MeetingType.MEETING.value)
        try:
            meeting_type = MeetingType(raw_type)
        except ValueError:
            meeting_type = MeetingType.MEETING
        return cls(
            date=str(data.get("date") or ""),
            type=meeting_type,
            chairperson=str(data.get("chairperson") or ""),
            present=str(data.get("present") or ""),
            apologies=str(data.get("apologies") or ""),
            minutes_by=str(data.get("minutesBy") or ""),
        )

    def copy(self) -> "MeetingMetadata":
        return replace(self)


@dataclass
class FormattedMinutes:
    html_content: str
    summary: str
    action_items: Optional[list[str]] = None
    decisions: Optional[list[str]] = None
    next_meeting: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict = {"htmlContent": self.html_content, "summary": self.summary}
        if self.action_items is not None:
            data["actionItems"] = list(self.action_items)
        if self.decisions is not None:
            data["decisions"] = list(self.decisions)
        if self.next_meeting is not None:
            data["nextMeeting"] = self.next_meeting
        return data


@dataclass
class MinutesResult:
    minutes: FormattedMinutes
    source: MinutesSource
    warning: str = ""
