"""FastAPI companion server that receives records and stats from fluency clients."""

from __future__ import annotations

import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..config import APP_DIR
from ..connectivity import API_PREFIX

SERVER_DB_PATH = APP_DIR / "server.db"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PingResponse(BaseModel):
    status: str = "ok"


class TranscriptionIn(_CamelModel):
    id: str = Field(min_length=1)
    text: str
    created_at: datetime
    duration: float = Field(ge=0)
    word_count: int = Field(ge=0)
    device: str = "unknown"


class TranscriptionCreated(BaseModel):
    id: str


class TranscriptionOut(_CamelModel):
    id: str
    client_id: str
    text: str
    created_at: datetime
    duration: float
    word_count: int
    device: str


class StatsIn(_CamelModel):
    total_words: int = Field(ge=0)
    total_transcriptions: int = Field(ge=0)
    total_duration: float = Field(ge=0)
    device: str = "unknown"


class DeviceStats(StatsIn):
    updated_at: datetime


class StatsOut(_CamelModel):
    total_words: int
    total_transcriptions: int
    total_duration: float
    devices: List[DeviceStats] = Field(default_factory=list)


class ServerStorage:
    """SQLite persistence for everything the clients push."""

    def __init__(self, db_path: Path = SERVER_DB_PATH) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._ensure_initialised()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transcriptions (
                    id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL UNIQUE,
                    text TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    duration REAL NOT NULL,
                    word_count INTEGER NOT NULL,
                    device TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS device_stats (
                    device TEXT PRIMARY KEY,
                    total_words INTEGER NOT NULL,
                    total_transcriptions INTEGER NOT NULL,
                    total_duration REAL NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def add_transcription(self, payload: TranscriptionIn) -> str:
        """Store a transcription; a client id seen before returns its existing remote id."""
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT id FROM transcriptions WHERE client_id = ?", (payload.id,)
            ).fetchone()
            if row is not None:
                return row["id"]
            remote_id = uuid.uuid4().hex
            conn.execute(
                """
                INSERT INTO transcriptions(id, client_id, text, created_at, duration, word_count, device)
                VALUES(?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    remote_id,
                    payload.id,
                    payload.text,
                    payload.created_at.isoformat(),
                    payload.duration,
                    payload.word_count,
                    payload.device,
                ),
            )
        return remote_id

    def list_transcriptions(self) -> List[TranscriptionOut]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM transcriptions ORDER BY created_at DESC").fetchall()
        return [
            TranscriptionOut(
                id=row["id"],
                client_id=row["client_id"],
                text=row["text"],
                created_at=datetime.fromisoformat(row["created_at"]),
                duration=row["duration"],
                word_count=row["word_count"],
                device=row["device"],
            )
            for row in rows
        ]

    def save_stats(self, payload: StatsIn) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO device_stats(device, total_words, total_transcriptions, total_duration, updated_at)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(device) DO UPDATE SET
                    total_words = excluded.total_words,
                    total_transcriptions = excluded.total_transcriptions,
                    total_duration = excluded.total_duration,
                    updated_at = excluded.updated_at
                """,
                (payload.device, payload.total_words, payload.total_transcriptions, payload.total_duration, now),
            )

    def stats(self) -> StatsOut:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM device_stats ORDER BY device").fetchall()
        devices = [
            DeviceStats(
                device=row["device"],
                total_words=row["total_words"],
                total_transcriptions=row["total_transcriptions"],
                total_duration=row["total_duration"],
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
            for row in rows
        ]
        return StatsOut(
            total_words=sum(d.total_words for d in devices),
            total_transcriptions=sum(d.total_transcriptions for d in devices),
            total_duration=sum(d.total_duration for d in devices),
            devices=devices,
        )


def get_storage(request: Request) -> ServerStorage:
    return request.app.state.storage


router = APIRouter(prefix=API_PREFIX)


@router.get("/ping", response_model=PingResponse)
def ping() -> PingResponse:
    return PingResponse()


@router.post("/transcriptions", response_model=TranscriptionCreated, status_code=status.HTTP_201_CREATED)
def create_transcription(
    payload: TranscriptionIn,
    storage: ServerStorage = Depends(get_storage),
) -> TranscriptionCreated:
    return TranscriptionCreated(id=storage.add_transcription(payload))


@router.get("/transcriptions", response_model=List[TranscriptionOut])
def list_transcriptions(storage: ServerStorage = Depends(get_storage)) -> List[TranscriptionOut]:
    return storage.list_transcriptions()


@router.get("/stats", response_model=StatsOut)
def get_stats(storage: ServerStorage = Depends(get_storage)) -> StatsOut:
    return storage.stats()


@router.post("/stats", response_model=PingResponse)
def post_stats(payload: StatsIn, storage: ServerStorage = Depends(get_storage)) -> PingResponse:
    storage.save_stats(payload)
    return PingResponse()


def create_app(storage: Optional[ServerStorage] = None) -> FastAPI:
    app = FastAPI(
        title="fluency sync server",
        description="Companion server mirroring dictation records and usage stats.",
        version="0.1.0",
    )
    app.state.storage = storage or ServerStorage()
    app.include_router(router)
    return app
