"""Live transcript assembly.

The provider revises its hypothesis for an utterance several times before
finalising it. The transcript is kept as committed text plus at most one
provisional suffix, which every new delta replaces.
"""

from __future__ import annotations

import threading
from typing import Optional

from models import TranscriptDelta


class TranscriptAssembler:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._committed = ""
        self._provisional: Optional[str] = None

    @property
    def committed(self) -> str:
        return self._committed

    @property
    def provisional(self) -> Optional[str]:
        return self._provisional

    @property
    def text(self) -> str:
        with self._lock:
            return self._committed + (self._provisional or "")

    def apply(self, delta: TranscriptDelta) -> str:
        """Fold one delta into the transcript and return the rendered text."""
        with self._lock:
            self._provisional = None
            if self._committed and not self._committed[-1].isspace():
                self._committed += " "
            if delta.is_final:
                self._committed += delta.text + " "
            else:
                self._provisional = delta.text
            return self._committed + (self._provisional or "")

    def finish(self) -> str:
        """Drop any leftover interim text and trim the committed transcript."""
        with self._lock:
            self._provisional = None
            self._committed = self._committed.strip()
            return self._committed

    def clear(self) -> None:
        with self._lock:
            self._committed = ""
            self._provisional = None
