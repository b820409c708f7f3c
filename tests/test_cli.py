import json

import httpx
import pytest
from typer.testing import CliRunner

from fluency import cli, config, keystore
from fluency.storage import Storage
from fluency.sync import SyncEngine

runner = CliRunner()


@pytest.fixture
def env(tmp_path, monkeypatch):
    db_path = tmp_path / "fluency.db"
    monkeypatch.setattr(config, "CONFIG_PATH", tmp_path / "config.json")
    monkeypatch.setattr(keystore, "SECRETS_PATH", tmp_path / "secrets.json")
    monkeypatch.setattr(cli, "Storage", lambda: Storage(db_path=db_path))
    return tmp_path


def test_add_list_and_stats(env):
    result = runner.invoke(cli.app, ["add", "hello world", "--duration", "2"])
    assert result.exit_code == 0, result.output
    assert "2 words" in result.output

    result = runner.invoke(cli.app, ["list"])
    assert result.exit_code == 0
    assert "hello world" in result.output

    result = runner.invoke(cli.app, ["stats"])
    assert result.exit_code == 0
    assert "Words" in result.output
    assert "First use" in result.output


def test_search_and_show(env):
    runner.invoke(cli.app, ["add", "remember the milk"])
    record = cli.Storage().list_all()[0]

    result = runner.invoke(cli.app, ["search", "MILK"])
    assert "remember the milk" in result.output

    result = runner.invoke(cli.app, ["show", record.id[:6]])
    assert result.exit_code == 0
    assert record.id in result.output
    assert "Not synced" in result.output


def test_delete_missing_record_is_not_an_error(env):
    result = runner.invoke(cli.app, ["delete", "nope"])
    assert result.exit_code == 0
    assert "nothing to delete" in result.output


def test_clear_and_reset_keep_each_other_apart(env):
    runner.invoke(cli.app, ["add", "one two three"])

    assert runner.invoke(cli.app, ["reset-stats", "--yes"]).exit_code == 0
    storage = cli.Storage()
    assert storage.stats().total_words == 0
    assert len(storage.list_all()) == 1

    assert runner.invoke(cli.app, ["clear", "--yes"]).exit_code == 0
    assert cli.Storage().list_all() == []


def test_sync_requires_server(env):
    result = runner.invoke(cli.app, ["sync"])
    assert result.exit_code == 1


def test_sync_uploads_records(env, monkeypatch):
    def handler(request):
        path = request.url.path
        if path.endswith("/ping") or (path.endswith("/stats") and request.method == "POST"):
            return httpx.Response(200)
        if path.endswith("/stats"):
            return httpx.Response(200, json={"totalWords": 40, "totalTranscriptions": 3, "totalDuration": 9})
        return httpx.Response(201, json={"id": "srv-1"})

    transport = httpx.MockTransport(handler)
    monkeypatch.setattr(
        cli, "_sync_engine", lambda storage, cfg: SyncEngine.from_config(storage, cfg, transport=transport)
    )
    runner.invoke(cli.app, ["add", "hello world"])
    config.update_config(server_address="server.local")

    result = runner.invoke(cli.app, ["sync"])

    assert result.exit_code == 0, result.output
    assert "Synced 1 of 1 records" in result.output
    assert "local counters are left unchanged" in result.output
    assert cli.Storage().list_all()[0].remote_id == "srv-1"


def test_sync_reports_unreachable_server(env, monkeypatch):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    transport = httpx.MockTransport(handler)
    monkeypatch.setattr(
        cli, "_sync_engine", lambda storage, cfg: SyncEngine.from_config(storage, cfg, transport=transport)
    )
    runner.invoke(cli.app, ["add", "hello world"])
    config.update_config(server_address="server.local")

    result = runner.invoke(cli.app, ["sync"])

    assert result.exit_code == 0
    assert "Server unavailable" in result.output
    assert cli.Storage().list_all()[0].is_synced is False


def test_config_update_and_show(env):
    assert runner.invoke(cli.app, ["config", "--server-address", "10.0.0.5"]).exit_code == 0

    result = runner.invoke(cli.app, ["config", "--show"])
    assert json.loads(result.output)["server_address"] == "10.0.0.5"


def test_config_rejects_unparseable_server_address(env):
    result = runner.invoke(cli.app, ["config", "--server-address", "nas.local:abc"])
    assert result.exit_code == 1
    assert config.load_config().server_address is None


def test_add_still_stores_with_unparseable_server_address(env):
    (env / "config.json").write_text(json.dumps({"server_address": "nas.local:abc"}))

    result = runner.invoke(cli.app, ["add", "hello world"])
    assert result.exit_code == 0, result.output
    records = cli.Storage().list_all()
    assert [r.text for r in records] == ["hello world"]
    assert records[0].is_synced is False
    assert cli.Storage().stats().total_words == 2


def test_secret_set_and_show(env):
    result = runner.invoke(cli.app, ["secret", "set", "openai", "--value", "sk-test"])
    assert result.exit_code == 0
    assert keystore.SecretStore().get("openai") == "sk-test"

    result = runner.invoke(cli.app, ["secret", "show"])
    assert "openai: configured" in result.output
    assert "groq: missing" in result.output


def test_secret_set_rejects_unknown_name(env):
    result = runner.invoke(cli.app, ["secret", "set", "github", "--value", "x"])
    assert result.exit_code == 1


def test_dictate_without_key_fails_cleanly(env):
    audio = env / "clip.m4a"
    audio.write_bytes(b"fake audio")

    result = runner.invoke(cli.app, ["dictate", str(audio), "--duration", "1"])

    assert result.exit_code == 1
    assert cli.Storage().list_all() == []
