"""The one path that turns a dictation into a stored record."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import StoreError
from .models import Record
from .providers import TranscriptionProvider
from .storage import Storage
from .sync import SyncEngine

log = logging.getLogger(__name__)


class DictationService:
    """Create records and keep the aggregate stats in step with them.

    Every record is appended and counted exactly once here. When a sync
    engine is attached and an event loop is running, the new record is
    handed to it as background work.
    """

    def __init__(
        self,
        storage: Storage,
        transcriber: Optional[TranscriptionProvider] = None,
        sync: Optional[SyncEngine] = None,
    ) -> None:
        self.storage = storage
        self.transcriber = transcriber
        self.sync = sync

    def record(self, text: str, duration_seconds: float = 0.0) -> Record:
        text = text.strip()
        if not text:
            raise StoreError("Refusing to store an empty transcript")
        record = Record.create(text, duration_seconds)
        self.storage.append(record)
        self.storage.record_event(record.word_count, record.duration_seconds)
        self._schedule_sync(record)
        return record

    def dictate(self, audio: bytes, duration_seconds: float, filename: str = "audio.m4a") -> Record:
        if self.transcriber is None:
            raise RuntimeError("No transcription provider configured")
        text = self.transcriber.transcribe(audio, filename=filename)
        return self.record(text, duration_seconds)

    def _schedule_sync(self, record: Record) -> None:
        if self.sync is None or not self.sync.sync_enabled:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running event loop; record %s waits for the next sync pass", record.id)
            return
        self.sync.spawn(self.sync.sync_record(record))
