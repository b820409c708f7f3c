"""Command line interface for the fluency application."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from . import config as config_mod
from .capture import MacPasteboard, capture_selection
from .config import ConfigError
from .dictation import DictationService
from .errors import ProviderError, StoreError
from .keystore import KNOWN_SECRETS, SecretStore
from .models import AggregateStats, Record, StatsComparison
from .providers import OpenAISpeech, OpenAITranscriber, ToneAnalyzer
from .storage import Storage
from .sync import SyncEngine

app = typer.Typer(add_completion=False, help="Dictation history, stats and server sync.")
secret_app = typer.Typer(add_completion=False, help="Manage API keys.")
app.add_typer(secret_app, name="secret")

console = Console()


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _load_config() -> config_mod.Config:
    try:
        return config_mod.load_config()
    except ConfigError as exc:
        _fail(str(exc))


def _sync_engine(storage: Storage, cfg: config_mod.Config) -> SyncEngine:
    return SyncEngine.from_config(storage, cfg)


def _format_duration(seconds: float) -> str:
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


def _print_records(records: List[Record], empty_message: str) -> None:
    if not records:
        typer.echo(empty_message)
        return
    table = Table(show_lines=False)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Created", no_wrap=True)
    table.add_column("Words", justify="right")
    table.add_column("Synced", justify="center")
    table.add_column("Text")
    for record in records:
        preview = record.text if len(record.text) <= 60 else record.text[:57] + "..."
        table.add_row(
            record.id[:8],
            record.created_at.astimezone().strftime("%Y-%m-%d %H:%M"),
            str(record.word_count),
            "✓" if record.is_synced else "-",
            preview,
        )
    console.print(table)


def _resolve_record(storage: Storage, prefix: str) -> Record:
    matches = [record for record in storage.list_all() if record.id.startswith(prefix)]
    if not matches:
        _fail(f"Record with id {prefix} not found")
    if len(matches) > 1:
        _fail(f"Id prefix {prefix} is ambiguous; use more characters.")
    return matches[0]


def _print_comparison(comparison: Optional[StatsComparison]) -> None:
    if comparison is None:
        return
    typer.echo(f"Server total: {comparison.remote_words} words, {comparison.remote_transcriptions} transcriptions")
    if comparison.remote_ahead:
        typer.secho(
            f"The server holds {comparison.remote_words - comparison.local_words} more words than this "
            "device; local counters are left unchanged.",
            fg=typer.colors.YELLOW,
        )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Log sync activity to stderr."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    if version:
        typer.echo(f"fluency v{__version__}")
        raise typer.Exit()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _store_and_sync(text: str, duration: float, audio: Optional[Path] = None) -> Record:
    cfg = _load_config()
    storage = Storage()
    engine = _sync_engine(storage, cfg)
    transcriber = OpenAITranscriber(SecretStore(), model=cfg.transcription_model)
    service = DictationService(storage, transcriber=transcriber, sync=engine)

    async def run() -> Record:
        if audio is not None:
            record = service.dictate(audio.read_bytes(), duration, filename=audio.name)
        else:
            record = service.record(text, duration)
        await engine.drain()
        return record

    try:
        return asyncio.run(run())
    except (ProviderError, StoreError) as exc:
        _fail(str(exc))


@app.command()
def dictate(
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Path to the recorded audio."),
    duration: float = typer.Option(0.0, "--duration", min=0, help="Length of the recording in seconds."),
) -> None:
    """Transcribe an audio file and store the result."""

    record = _store_and_sync("", duration, audio=audio)
    typer.echo(record.text)
    state = "synced" if record.is_synced else "not synced"
    typer.secho(f"\nSaved record {record.id[:8]} ({record.word_count} words, {state}).", fg=typer.colors.BLUE)


@app.command()
def add(
    text: str = typer.Argument(..., help="Text to store as a dictation."),
    duration: float = typer.Option(0.0, "--duration", min=0, help="Speaking time in seconds."),
) -> None:
    """Store text that was dictated elsewhere."""

    record = _store_and_sync(text, duration)
    typer.secho(f"Saved record {record.id[:8]} ({record.word_count} words).", fg=typer.colors.BLUE)


@app.command()
def capture() -> None:
    """Store the text currently selected in the frontmost application."""

    try:
        clipboard = MacPasteboard()
    except RuntimeError as exc:
        _fail(str(exc))
    selection = capture_selection(clipboard)
    if not selection:
        _fail("Nothing is selected.")
    record = _store_and_sync(selection, 0.0)
    typer.secho(f"Captured record {record.id[:8]} ({record.word_count} words).", fg=typer.colors.BLUE)


@app.command("list")
def list_command() -> None:
    """List stored records, newest first."""

    _print_records(Storage().list_all(), "No records found. Use `fluency dictate` to create one.")


@app.command()
def search(query: str = typer.Argument(..., help="Case-insensitive text to look for.")) -> None:
    """Search stored records."""

    _print_records(Storage().search(query), f"No records matching {query!r}.")


@app.command()
def show(record_id: str = typer.Argument(..., help="Record id or unique prefix.")) -> None:
    """Show a stored record."""

    record = _resolve_record(Storage(), record_id)
    typer.secho(f"Id: {record.id}", fg=typer.colors.BLUE)
    typer.echo(f"Created: {record.created_at.astimezone():%Y-%m-%d %H:%M}")
    typer.echo(f"Words: {record.word_count}  Duration: {_format_duration(record.duration_seconds)}")
    if record.is_synced:
        typer.secho(f"Synced as {record.remote_id}", fg=typer.colors.GREEN)
    else:
        typer.echo("Not synced")
    typer.echo("\n" + record.text)


@app.command()
def delete(record_id: str = typer.Argument(..., help="Record id or unique prefix.")) -> None:
    """Delete a stored record."""

    storage = Storage()
    matches = [record for record in storage.list_all() if record.id.startswith(record_id)]
    if len(matches) > 1:
        _fail(f"Id prefix {record_id} is ambiguous; use more characters.")
    if not matches:
        typer.echo(f"No record {record_id}; nothing to delete.")
        return
    storage.delete(matches[0].id)
    typer.secho(f"Record {matches[0].id[:8]} deleted.", fg=typer.colors.BLUE)


@app.command()
def clear(yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt.")) -> None:
    """Delete every stored record."""

    if not yes:
        typer.confirm("Delete all records?", abort=True)
    removed = Storage().delete_all()
    typer.secho(f"Deleted {removed} records.", fg=typer.colors.BLUE)


def _stats_table(stats: AggregateStats) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column(justify="right")
    table.add_row("Words", f"{stats.total_words:,}")
    table.add_row("Transcriptions", f"{stats.total_transcriptions:,}")
    table.add_row("Speaking time", _format_duration(stats.total_duration_seconds))
    table.add_row("First use", stats.first_use_at.astimezone().strftime("%Y-%m-%d"))
    table.add_row("Days active", str(stats.days_active))
    table.add_row("Time saved", _format_duration(stats.estimated_time_saved_seconds))
    return table


@app.command()
def stats(
    remote: bool = typer.Option(False, "--remote", help="Compare with the server's totals."),
) -> None:
    """Show usage statistics for this device."""

    storage = Storage()
    console.print(_stats_table(storage.stats()))
    if remote:
        engine = _sync_engine(storage, _load_config())
        if not engine.sync_enabled:
            _fail("No sync server configured. Run `fluency config --server-address HOST` first.")
        comparison = asyncio.run(engine.fetch_stats())
        if comparison is None:
            typer.secho("Server unavailable.", fg=typer.colors.YELLOW)
        _print_comparison(comparison)


@app.command("reset-stats")
def reset_stats(yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt.")) -> None:
    """Zero the usage counters. Records are kept."""

    if not yes:
        typer.confirm("Reset all statistics?", abort=True)
    Storage().reset()
    typer.secho("Statistics reset.", fg=typer.colors.BLUE)


@app.command()
def sync() -> None:
    """Upload unsynced records and stats to the configured server."""

    storage = Storage()
    engine = _sync_engine(storage, _load_config())
    report = asyncio.run(engine.sync_everything())
    if report.skipped_reason == "disabled":
        _fail("No sync server configured. Run `fluency config --server-address HOST` first.")
    if report.skipped_reason == "disconnected":
        typer.secho("Server unavailable; nothing was synced.", fg=typer.colors.YELLOW)
        return
    typer.secho(f"Synced {report.synced} of {report.attempted} records.", fg=typer.colors.BLUE)
    _print_comparison(report.stats)


@app.command()
def ping() -> None:
    """Check connectivity to the configured sync server."""

    engine = _sync_engine(Storage(), _load_config())
    if not engine.sync_enabled:
        _fail("No sync server configured. Run `fluency config --server-address HOST` first.")
    if asyncio.run(engine.check_connection()):
        typer.secho(f"Connected to {engine.base_url}", fg=typer.colors.GREEN)
    else:
        _fail(f"Server at {engine.base_url} is not reachable.")


@app.command()
def speak(
    text: str = typer.Argument(..., help="Text to read aloud."),
    output: Path = typer.Option(Path("speech.mp3"), "--output", "-o", help="Where to write the mp3."),
    voice: Optional[str] = typer.Option(None, "--voice", help="Voice id; defaults to the configured voice."),
    style: Optional[str] = typer.Option(None, "--style", help="Style instructions for the voice."),
    auto_style: bool = typer.Option(False, "--auto-style", help="Derive style instructions from the text."),
) -> None:
    """Synthesize speech for some text."""

    cfg = _load_config()
    secrets = SecretStore()
    instructions = style or cfg.style_instructions or None
    try:
        if auto_style:
            instructions = ToneAnalyzer(secrets, model=cfg.tone_model).analyze(text)
            typer.secho(f"Style: {instructions}", fg=typer.colors.CYAN)
        speech = OpenAISpeech(secrets, model=cfg.speech_model, voice=cfg.voice)
        with output.open("wb") as fh:
            for chunk in speech.synthesize(text, voice=voice, instructions=instructions):
                fh.write(chunk)
    except ProviderError as exc:
        output.unlink(missing_ok=True)
        _fail(str(exc))
    typer.secho(f"Audio written to {output}", fg=typer.colors.BLUE)


@secret_app.command("set")
def secret_set(
    name: str = typer.Argument(..., help=f"One of: {', '.join(KNOWN_SECRETS)}."),
    value: str = typer.Option(..., "--value", prompt=True, hide_input=True, help="The API key."),
    verify: bool = typer.Option(False, "--verify", help="Check a Groq key before storing it."),
) -> None:
    """Store an API key."""

    if name not in KNOWN_SECRETS:
        _fail(f"Unknown secret {name!r}; expected one of: {', '.join(KNOWN_SECRETS)}.")
    secrets = SecretStore()
    if verify and name == "groq":
        try:
            ToneAnalyzer(secrets).verify_key(value)
        except ProviderError as exc:
            _fail(str(exc))
    secrets.set(name, value)
    typer.secho(f"{name} key stored.", fg=typer.colors.BLUE)


@secret_app.command("delete")
def secret_delete(name: str = typer.Argument(..., help="Secret to remove.")) -> None:
    """Remove an API key."""

    SecretStore().delete(name)
    typer.secho(f"{name} key removed.", fg=typer.colors.BLUE)


@secret_app.command("show")
def secret_show() -> None:
    """List which API keys are configured."""

    secrets = SecretStore()
    for name in KNOWN_SECRETS:
        state = "configured" if secrets.get(name) else "missing"
        typer.echo(f"{name}: {state}")


@app.command()
def config(
    server_address: Optional[str] = typer.Option(
        None, help="Sync server host or host:port. Pass an empty string to disable sync."
    ),
    device: Optional[str] = typer.Option(None, help="Device tag sent with synced data."),
    probe_timeout: Optional[float] = typer.Option(None, help="Timeout (seconds) for the connectivity check."),
    api_timeout: Optional[float] = typer.Option(None, help="Timeout (seconds) for sync requests."),
    transcription_model: Optional[str] = typer.Option(None, help="OpenAI transcription model id."),
    speech_model: Optional[str] = typer.Option(None, help="OpenAI speech model id."),
    voice: Optional[str] = typer.Option(None, help="Default voice for speech synthesis."),
    style_instructions: Optional[str] = typer.Option(None, help="Default style instructions for speech."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "server_address": server_address,
            "device": device,
            "probe_timeout": probe_timeout,
            "api_timeout": api_timeout,
            "transcription_model": transcription_model,
            "speech_model": speech_model,
            "voice": voice,
            "style_instructions": style_instructions,
        }.items()
        if value is not None
    }

    if show or not updates:
        cfg = _load_config()
        typer.echo(json.dumps(asdict(cfg), indent=2, default=str))
        return

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        _fail(str(exc))
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Interface to bind."),
    port: int = typer.Option(7006, help="Port to listen on."),
    db_path: Optional[Path] = typer.Option(None, help="SQLite file for the server's data."),
) -> None:  # pragma: no cover - runs a server
    """Run the companion sync server."""

    import uvicorn

    from .api import ServerStorage, create_app

    storage = ServerStorage(db_path) if db_path else ServerStorage()
    uvicorn.run(create_app(storage), host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    app()
