"""Best-effort propagation of local records and stats to the companion server."""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Coroutine, Dict, Iterable, Optional, Set

import httpx

from .connectivity import ConnectivityProbe, resolve_base_url
from .errors import StoreError
from .models import Config, Record, StatsComparison
from .storage import Storage

log = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncReport:
    """Outcome of a sync pass."""

    attempted: int = 0
    synced: int = 0
    skipped_reason: Optional[str] = None
    stats: Optional[StatsComparison] = None


def format_created_at(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def record_payload(record: Record, device: str) -> Dict[str, Any]:
    return {
        "id": record.id,
        "text": record.text,
        "createdAt": format_created_at(record.created_at),
        "duration": record.duration_seconds,
        "wordCount": record.word_count,
        "device": device,
    }


class SyncEngine:
    """Push unsynced records and stats to the server; never raises on remote failure.

    A record is only marked synced after the server answered 200/201 with a
    remote id, and the flip goes through :meth:`Storage.mark_synced` so that it
    happens at most once. Stats flow the other way only as information: a
    server snapshot that is ahead of the local counters is reported, never
    merged.
    """

    def __init__(
        self,
        storage: Storage,
        server_address: Optional[str],
        device: str,
        probe_timeout: float = 3.0,
        api_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        probe: Optional[ConnectivityProbe] = None,
    ) -> None:
        self.storage = storage
        self.base_url = resolve_base_url(server_address)
        self.device = device
        self.probe_timeout = probe_timeout
        self.api_timeout = api_timeout
        self._transport = transport
        self.probe = probe or ConnectivityProbe(transport=transport)
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        storage: Storage,
        config: Config,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SyncEngine":
        return cls(
            storage,
            config.server_address,
            config.device,
            probe_timeout=config.probe_timeout,
            api_timeout=config.api_timeout,
            transport=transport,
        )

    @property
    def sync_enabled(self) -> bool:
        return self.base_url is not None

    @property
    def is_connected(self) -> bool:
        return self.probe.is_connected

    async def check_connection(self) -> bool:
        if self.base_url is None:
            return False
        return await self.probe.probe(self.base_url, self.probe_timeout)

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.base_url is None:
            raise RuntimeError("No server address configured")
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.api_timeout,
            transport=self._transport,
        ) as client:
            yield client

    # Records

    async def sync_record(self, record: Record) -> bool:
        """Upload one record. Returns True when this call marked it synced."""
        if not self.sync_enabled or record.is_synced:
            return False
        if not await self.check_connection():
            log.debug("Server unreachable; record %s stays unsynced", record.id)
            return False
        async with self._client() as client:
            return await self._push_record(client, record)

    async def sync_all_unsynced(self, records: Optional[Iterable[Record]] = None) -> SyncReport:
        if not self.sync_enabled:
            return SyncReport(skipped_reason="disabled")
        if records is None:
            pending = self.storage.list_unsynced()
        else:
            pending = sorted((r for r in records if not r.is_synced), key=lambda r: r.created_at)
        report = SyncReport()
        if not pending:
            return report
        if not await self.check_connection():
            report.skipped_reason = "disconnected"
            return report
        async with self._client() as client:
            for record in pending:
                report.attempted += 1
                if await self._push_record(client, record):
                    report.synced += 1
        log.info("Synced %s of %s records", report.synced, report.attempted)
        return report

    async def _push_record(self, client: httpx.AsyncClient, record: Record) -> bool:
        try:
            response = await client.post("/transcriptions", json=record_payload(record, self.device))
        except httpx.HTTPError as exc:
            log.warning("Sync of record %s failed: %s", record.id, exc)
            return False
        if response.status_code not in (200, 201):
            log.warning("Server rejected record %s with status %s", record.id, response.status_code)
            return False
        remote_id = _extract_remote_id(response)
        if remote_id is None:
            log.warning("Server response for record %s carried no id", record.id)
            return False
        try:
            flipped = self.storage.mark_synced(record.id, remote_id)
        except StoreError:
            log.exception("Could not mark record %s as synced", record.id)
            return False
        if not flipped:
            log.debug("Record %s was already synced or has been deleted", record.id)
            return False
        record.remote_id = remote_id
        record.is_synced = True
        log.debug("Record %s synced as %s", record.id, remote_id)
        return True

    # Stats

    async def sync_stats(self) -> Optional[StatsComparison]:
        """Push the local snapshot, then pull the server's for comparison."""
        if not await self.check_connection():
            return None
        stats = self.storage.stats()
        payload = {
            "totalWords": stats.total_words,
            "totalTranscriptions": stats.total_transcriptions,
            "totalDuration": stats.total_duration_seconds,
            "device": self.device,
        }
        async with self._client() as client:
            try:
                response = await client.post("/stats", json=payload)
            except httpx.HTTPError as exc:
                log.warning("Stats sync failed: %s", exc)
            else:
                if response.status_code != 200:
                    log.debug("Server answered %s to stats push", response.status_code)
            return await self._pull_stats(client)

    async def fetch_stats(self) -> Optional[StatsComparison]:
        if not await self.check_connection():
            return None
        async with self._client() as client:
            return await self._pull_stats(client)

    async def _pull_stats(self, client: httpx.AsyncClient) -> Optional[StatsComparison]:
        try:
            response = await client.get("/stats")
        except httpx.HTTPError as exc:
            log.warning("Fetching server stats failed: %s", exc)
            return None
        if response.status_code != 200:
            log.debug("Server answered %s to stats fetch", response.status_code)
            return None
        try:
            body = response.json()
            remote_words = _as_int(body["totalWords"])
            remote_transcriptions = _as_int(body.get("totalTranscriptions", 0))
            remote_duration = float(_as_number(body.get("totalDuration", 0)))
        except (ValueError, TypeError, KeyError, AttributeError, OverflowError) as exc:
            log.warning("Malformed stats payload from server: %s", exc)
            return None
        comparison = StatsComparison(
            local_words=self.storage.stats().total_words,
            remote_words=remote_words,
            remote_transcriptions=remote_transcriptions,
            remote_duration_seconds=remote_duration,
        )
        if comparison.remote_ahead:
            log.info(
                "Server stats: %s words (local %s); other devices have contributed",
                comparison.remote_words,
                comparison.local_words,
            )
        return comparison

    async def sync_everything(self) -> SyncReport:
        report = await self.sync_all_unsynced()
        if report.skipped_reason is None:
            report.stats = await self.sync_stats()
        return report

    # Background work

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` in the background; :meth:`drain` waits for it."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        while self._tasks:
            results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    log.error("Background sync task failed: %s", result)


def _extract_remote_id(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    remote_id = body.get("id")
    if isinstance(remote_id, str) and remote_id:
        return remote_id
    return None


def _as_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected a number, got {value!r}")
    if not math.isfinite(value):
        raise ValueError(f"Expected a finite number, got {value!r}")
    return value


def _as_int(value: Any) -> int:
    return int(_as_number(value))
