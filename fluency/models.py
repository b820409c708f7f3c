"""Dataclasses describing persistent objects for fluency."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

TYPING_WPM = 40.0
SPEAKING_WPM = 150.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def count_words(text: str) -> int:
    return len(text.split())


def _default_device() -> str:
    return "mac" if sys.platform == "darwin" else "desktop"


@dataclass(slots=True)
class Record:
    """A single dictation or capture event."""

    id: str
    text: str
    created_at: datetime
    duration_seconds: float
    word_count: int
    remote_id: Optional[str] = None
    is_synced: bool = False

    @classmethod
    def create(cls, text: str, duration_seconds: float = 0.0) -> "Record":
        return cls(
            id=uuid.uuid4().hex,
            text=text,
            created_at=utcnow(),
            duration_seconds=float(duration_seconds),
            word_count=count_words(text),
        )


@dataclass(slots=True)
class AggregateStats:
    """Running usage totals for this device."""

    total_words: int
    total_transcriptions: int
    total_duration_seconds: float
    first_use_at: datetime

    @property
    def days_active(self) -> int:
        return max(1, (utcnow() - self.first_use_at).days)

    @property
    def estimated_time_saved_seconds(self) -> float:
        typing_time = self.total_words / TYPING_WPM * 60
        speaking_time = self.total_words / SPEAKING_WPM * 60
        return max(0.0, typing_time - speaking_time)


@dataclass(slots=True)
class StatsComparison:
    """Local counters compared against the server's aggregate snapshot."""

    local_words: int
    remote_words: int
    remote_transcriptions: int = 0
    remote_duration_seconds: float = 0.0

    @property
    def remote_ahead(self) -> bool:
        return self.remote_words > self.local_words


@dataclass(slots=True)
class Config:
    """User configuration stored on disk."""

    server_address: Optional[str] = None
    device: str = field(default_factory=_default_device)
    probe_timeout: float = 3.0
    api_timeout: float = 5.0
    transcription_model: str = "gpt-4o-mini-transcribe"
    speech_model: str = "gpt-4o-mini-tts"
    voice: str = "alloy"
    style_instructions: str = ""
    tone_model: str = "moonshotai/kimi-k2-instruct-0905"
