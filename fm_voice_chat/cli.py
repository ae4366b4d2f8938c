"""
FM Voice Chat CLI: launcher and maintenance commands.

Registered as `fm-voice-chat` console script via pyproject.toml.
"""

import importlib.util
import logging
from pathlib import Path

import click

from .config import VALID_LOG_LEVELS, ChatConfig
from .exceptions import AppleFMSetupError
from .formatting import format_timestamp_short
from .inference import check_model_availability
from .session_store import SessionStore
from .storage import JsonFileKeyValueStore


def _fail_missing_dependencies(
    *,
    command_name: str,
    missing: list[str],
    install_steps: list[str],
) -> None:
    """Exit with actionable dependency guidance."""
    if not missing:
        return
    click.secho(
        f"{command_name} requires optional dependencies that are missing:",
        fg="red",
        err=True,
        bold=True,
    )
    for module in missing:
        click.echo(f"  - {module}", err=True)
    click.echo("", err=True)
    click.secho("Install with:", fg="cyan", err=True)
    for step in install_steps:
        click.echo(f"  {step}", err=True)
    raise SystemExit(2)


def _toga_installed() -> bool:
    return importlib.util.find_spec("toga") is not None


def _open_store(config: ChatConfig) -> SessionStore:
    store = SessionStore(JsonFileKeyValueStore(config.data_dir))
    store.load()
    return store


def _status_line(label: str, ok: bool, detail: str = "") -> None:
    mark = click.style("ok", fg="green") if ok else click.style("missing", fg="red")
    suffix = f" ({detail})" if detail else ""
    click.echo(f"  {label:<22}{mark}{suffix}")


# ── Main group ────────────────────────────────────────────────────────────────


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="fm-voice-chat")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding chat history and config.toml (default: ~/.fm_voice_chat).",
)
@click.option(
    "--log-level",
    type=click.Choice(VALID_LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Override the log level from config.toml.",
)
@click.pass_context
def cli(ctx: click.Context, data_dir: Path | None, log_level: str | None) -> None:
    """FM Voice Chat: on-device voice chat with Apple Foundation Models."""
    config = ChatConfig.load(data_dir)
    if log_level:
        config.log_level = log_level.lower()
    logging.basicConfig(
        level=config.logging_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


# ── App ───────────────────────────────────────────────────────────────────────


@cli.command()
@click.pass_obj
def run(config: ChatConfig) -> None:
    """Launch the desktop chat window."""
    if not _toga_installed():
        _fail_missing_dependencies(
            command_name="fm-voice-chat run",
            missing=["toga"],
            install_steps=['pip install "fm-voice-chat[app]"'],
        )
    from .app import main

    main(config).main_loop()


@cli.command()
@click.option("--skip-microphone", is_flag=True, help="Do not open the microphone.")
@click.pass_obj
def doctor(config: ChatConfig, skip_microphone: bool) -> None:
    """Report language model, microphone and speech engine availability."""
    click.secho("\nFM Voice Chat doctor\n", fg="cyan", bold=True)
    click.echo(f"  {'data directory':<22}{config.data_dir}")

    model_ok, reason = check_model_availability()
    _status_line("language model", model_ok, reason)

    toga_ok = _toga_installed()
    _status_line("toga (desktop UI)", toga_ok, "" if toga_ok else 'pip install "fm-voice-chat[app]"')

    mic_ok = True
    if not skip_microphone:
        from .voice.capture import SpeechCapture

        mic_ok = SpeechCapture(backend=config.speech_backend).request_authorization()
        _status_line("microphone", mic_ok, "" if mic_ok else "PyAudio or input device missing")

    from .voice.playback import SpeechPlayback

    playback = SpeechPlayback()
    try:
        voices = playback.available_voices()
    except (RuntimeError, OSError, ImportError) as exc:
        tts_ok, detail = False, str(exc) or type(exc).__name__
    else:
        tts_ok, detail = True, f"{len(voices)} voices"
    finally:
        playback.shutdown()
    _status_line("speech engine", tts_ok, detail)
    click.echo()

    if not (model_ok and mic_ok and tts_ok):
        raise SystemExit(1)


# ── History & memory ──────────────────────────────────────────────────────────


@cli.command()
@click.option("--search", "query", default="", help="Only sessions whose title or messages contain this text.")
@click.option("--limit", type=click.IntRange(min=1), default=None, help="Show at most N sessions.")
@click.pass_obj
def sessions(config: ChatConfig, query: str, limit: int | None) -> None:
    """List stored chat sessions, most recent first."""
    store = _open_store(config)
    found = store.search(query) if query.strip() else store.recent_sessions()
    if limit is not None:
        found = found[:limit]
    if not found:
        click.secho("No chats found.", fg="yellow")
        return
    for session in found:
        marker = "*" if session.id == store.current_session_id else " "
        when = format_timestamp_short(session.last_modified)
        click.echo(f"{marker} {session.id}  {session.title:<50}  {len(session.messages):>4} msgs  {when}")


@cli.command()
@click.pass_obj
def memory(config: ChatConfig) -> None:
    """Show what is remembered about the user."""
    mem = _open_store(config).memory
    click.echo(f"Name:          {mem.user_name or '(not set)'}")
    click.echo(f"Current chat:  {mem.last_chat_session_id or '(none)'}")
    click.echo("Preferences:")
    if mem.preferences:
        for key, value in sorted(mem.preferences.items()):
            click.echo(f"  {key} = {value}")
    else:
        click.echo("  (none)")
    click.echo("Important facts:")
    if mem.important_facts:
        for fact in mem.important_facts:
            click.echo(f"  - {fact}")
    else:
        click.echo("  (none)")


@cli.command()
@click.argument("text", required=False)
@click.option("--reset", is_flag=True, help="Restore the default system prompt.")
@click.pass_obj
def prompt(config: ChatConfig, text: str | None, reset: bool) -> None:
    """Show, set, or reset the system prompt."""
    if reset and text:
        raise click.UsageError("Pass either TEXT or --reset, not both.")
    store = _open_store(config)
    if reset:
        store.reset_system_prompt()
        click.secho("System prompt reset to default.", fg="green")
    elif text is not None:
        if not text.strip():
            raise click.BadParameter("system prompt cannot be blank", param_hint="TEXT")
        store.update_system_prompt(text.strip())
        click.secho("System prompt updated.", fg="green")
    click.echo(store.memory.system_prompt)


# ── Entry point ───────────────────────────────────────────────────────────────


def cli_entry() -> None:
    """Entry point for the console_scripts."""
    try:
        cli()
    except AppleFMSetupError as exc:
        click.secho(str(exc), fg="red", err=True)
        raise SystemExit(2) from exc


if __name__ == "__main__":
    cli_entry()
