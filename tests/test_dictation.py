import httpx
import pytest

from fluency.dictation import DictationService
from fluency.errors import NoCredential, StoreError
from fluency.sync import SyncEngine


class StubTranscriber:
    def __init__(self, text="hello world", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe(self, audio, filename="audio.m4a"):
        self.calls.append((audio, filename))
        if self.error:
            raise self.error
        return self.text


def test_record_appends_and_counts_once(storage):
    service = DictationService(storage)

    record = service.record("hello world", 2.0)

    assert [r.id for r in storage.list_all()] == [record.id]
    assert record.is_synced is False
    stats = storage.stats()
    assert stats.total_words == 2
    assert stats.total_transcriptions == 1
    assert stats.total_duration_seconds == 2.0


def test_empty_text_records_nothing(storage):
    with pytest.raises(StoreError):
        DictationService(storage).record("   ", 1.0)
    assert storage.list_all() == []
    assert storage.stats().total_transcriptions == 0


def test_dictate_uses_transcriber(storage):
    transcriber = StubTranscriber(" spoken words here \n")
    service = DictationService(storage, transcriber=transcriber)

    record = service.dictate(b"audio", 3.0, filename="clip.m4a")

    assert record.text == "spoken words here"
    assert transcriber.calls == [(b"audio", "clip.m4a")]
    assert storage.stats().total_words == 3


def test_dictate_propagates_provider_errors(storage):
    service = DictationService(storage, transcriber=StubTranscriber(error=NoCredential("openai")))
    with pytest.raises(NoCredential):
        service.dictate(b"audio", 1.0)
    assert storage.list_all() == []


def test_record_without_event_loop_skips_sync(storage):
    requests = []
    transport = httpx.MockTransport(lambda request: requests.append(request) or httpx.Response(200))
    engine = SyncEngine(storage, "server.local", "mac", transport=transport)

    record = DictationService(storage, sync=engine).record("offline note")

    assert record.is_synced is False
    assert requests == []


@pytest.mark.asyncio
async def test_record_schedules_background_sync(storage):
    def handler(request):
        if request.url.path.endswith("/ping"):
            return httpx.Response(200)
        return httpx.Response(201, json={"id": "srv-1"})

    engine = SyncEngine(storage, "server.local", "mac", transport=httpx.MockTransport(handler))
    service = DictationService(storage, sync=engine)

    record = service.record("hello world", 2.0)
    await engine.drain()

    assert record.is_synced is True
    assert storage.get(record.id).remote_id == "srv-1"
    assert storage.stats().total_transcriptions == 1
