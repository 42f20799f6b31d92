"""Command line interface for the verbalist application."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Awaitable, Callable, Dict, NoReturn, Optional, TypeVar

import typer

from . import config as config_mod
from .audio import AudioCapture, FileCapture, MicrophoneCapture
from .capture import CaptureStateMachine
from .config import AVAILABLE_LLM_MODELS, AVAILABLE_WHISPER_MODELS, ConfigError
from .extractor import ExtractionError, GroqExtractor
from .models import TaskRecord
from .state import Committed, Error, Listening, Parsing, Previewing, Transcribing
from .store import HttpTaskStore, RemoteStore, StoreError, open_store
from .tasklist import SortPolicy, TaskListModel

app = typer.Typer(add_completion=False, help="Turn spoken brain dumps into a task list.")

T = TypeVar("T")

STATUS_TEXT = {
    Listening: "Listening... press Enter to stop, Ctrl+C to cancel.",
    Transcribing: "Converting speech to text...",
    Parsing: "Extracting tasks from your speech...",
    Committed: "Tasks added to your list!",
}


@dataclasses.dataclass
class _Options:
    offline: bool = False


def _exit_with(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _load_config() -> config_mod.Config:
    try:
        return config_mod.load_config()
    except ConfigError as exc:
        _exit_with(str(exc))


def _run(ctx: typer.Context, body: Callable[[TaskListModel, RemoteStore, config_mod.Config], Awaitable[T]]) -> T:
    """Open the store, load the task list and run ``body`` on one event loop."""

    cfg = _load_config()
    options: _Options = ctx.obj or _Options()

    async def main() -> T:
        store = open_store(cfg, offline=options.offline)
        tasks = TaskListModel(store, SortPolicy(cfg.sort_policy))
        try:
            await tasks.refresh()
            return await body(tasks, store, cfg)
        finally:
            if isinstance(store, HttpTaskStore):
                await store.aclose()

    try:
        return asyncio.run(main())
    except StoreError as exc:
        _exit_with(f"Task store request failed: {exc}")


def _machine(
    tasks: TaskListModel,
    store: RemoteStore,
    cfg: config_mod.Config,
    audio: Optional[AudioCapture] = None,
    with_extractor: bool = False,
) -> CaptureStateMachine:
    extractor = None
    if with_extractor:
        try:
            extractor = GroqExtractor.from_config(cfg)
        except ExtractionError as exc:
            _exit_with(str(exc))
    machine = CaptureStateMachine(
        store,
        tasks,
        audio=audio,
        extractor=extractor,
        batch_commit_delay=cfg.batch_commit_delay,
        edit_commit_delay=cfg.edit_commit_delay,
    )
    machine.subscribe(_print_state)
    return machine


def _print_state(state) -> None:
    if isinstance(state, Error):
        typer.secho(state.message, fg=typer.colors.RED, err=True)
        return
    text = STATUS_TEXT.get(type(state))
    if text:
        typer.secho(text, fg=typer.colors.BLUE)


def _task_at(tasks: TaskListModel, position: int) -> TaskRecord:
    if not 1 <= position <= len(tasks):
        _exit_with(f"No task at position {position}. Run `verbalist list` to see positions.")
    return tasks[position - 1]


def _print_tasks(tasks: TaskListModel) -> None:
    if not len(tasks):
        typer.echo("No tasks yet. Use `verbalist capture` to create some by voice.")
        return
    boundary = tasks.partition_boundary
    for index, task in enumerate(tasks):
        if index == boundary and boundary:
            typer.echo("-" * 40)
        mark = "x" if task.completed else " "
        line = f"{index + 1:>3}. [{mark}] {task.title}"
        typer.secho(line, dim=task.completed)


async def _wait_for_enter() -> None:
    """Wait for a line on stdin without tying up the default executor.

    The reader is a daemon thread, so a process interrupted while waiting can
    exit without anyone pressing Enter.
    """

    loop = asyncio.get_running_loop()
    entered = loop.create_future()

    def resolve() -> None:
        if not entered.done():
            entered.set_result(None)

    def read() -> None:
        try:
            sys.stdin.readline()
        except (OSError, ValueError) as exc:
            logging.debug("Cannot read from stdin: %s", exc)
        try:
            loop.call_soon_threadsafe(resolve)
        except RuntimeError:
            logging.debug("Event loop closed before Enter was pressed")

    threading.Thread(target=read, name="verbalist-stdin", daemon=True).start()
    await entered


async def _listen_until_enter(
    machine: CaptureStateMachine,
    wait: Callable[[], Awaitable[None]] = _wait_for_enter,
) -> bool:
    """Keep recording until Enter; returns False when the user cancelled."""

    try:
        await wait()
    except (asyncio.CancelledError, KeyboardInterrupt):
        machine.cancel_listening()
        typer.echo("Recording cancelled.")
        return False
    except Exception:
        machine.cancel_listening()
        raise
    await machine.stop_listening()
    return True


def _finish_cycle(machine: CaptureStateMachine, before: int) -> None:
    state = machine.state
    machine.close()
    if isinstance(state, Error):
        raise typer.Exit(code=1)
    added = len(machine.tasks) - before
    if added > 0:
        typer.echo(f"Added {added} task(s):")
        _print_tasks(machine.tasks)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    offline: bool = typer.Option(False, "--offline", help="Use the local task database even if a server is set."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    if version:
        typer.echo("verbalist v0.1.0")
        raise typer.Exit()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = _Options(offline=offline)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("list")
def list_command(ctx: typer.Context) -> None:
    """List tasks, open ones first."""

    async def body(tasks, store, cfg) -> None:
        _print_tasks(tasks)

    _run(ctx, body)


@app.command()
def add(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Title of the new task."),
) -> None:
    """Add a single task without speaking it."""

    async def body(tasks, store, cfg) -> None:
        machine = _machine(tasks, store, cfg)
        machine.preview(TaskRecord.new(title))
        saved = await machine.commit_preview()
        machine.close()
        if saved is None:
            raise typer.Exit(code=1)
        typer.secho(f"Added: {saved.title}", fg=typer.colors.GREEN)

    _run(ctx, body)


@app.command()
def edit(
    ctx: typer.Context,
    position: int = typer.Argument(..., help="Position shown by `verbalist list`."),
    title: str = typer.Argument(..., help="New title."),
) -> None:
    """Rename a task."""

    async def body(tasks, store, cfg) -> None:
        task = _task_at(tasks, position)
        machine = _machine(tasks, store, cfg)
        machine.preview(task)
        saved = await machine.commit_preview(dataclasses.replace(task, title=title))
        machine.close()
        if saved is None:
            raise typer.Exit(code=1)
        typer.secho(f"Updated: {saved.title}", fg=typer.colors.GREEN)

    _run(ctx, body)


@app.command()
def done(
    ctx: typer.Context,
    position: int = typer.Argument(..., help="Position shown by `verbalist list`."),
) -> None:
    """Toggle a task between open and completed."""

    async def body(tasks, store, cfg) -> None:
        task = _task_at(tasks, position)
        saved = await tasks.toggle_completion(task.id)
        if saved is None:
            _exit_with("Could not save the change; it will be lost on the next refresh.")
        state = "completed" if saved.completed else "reopened"
        typer.secho(f"{saved.title} {state}.", fg=typer.colors.GREEN)

    _run(ctx, body)


@app.command()
def delete(
    ctx: typer.Context,
    position: int = typer.Argument(..., help="Position shown by `verbalist list`."),
) -> None:
    """Delete a task."""

    async def body(tasks, store, cfg) -> None:
        task = _task_at(tasks, position)
        if not await tasks.delete(task.id):
            _exit_with(f"Failed to delete {task.title!r}.")
        typer.secho(f"Deleted: {task.title}", fg=typer.colors.BLUE)

    _run(ctx, body)


@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every task."""

    if not yes and not typer.confirm("Are you sure you want to delete all tasks? This cannot be undone."):
        raise typer.Exit()

    async def body(tasks, store, cfg) -> None:
        total = len(tasks)
        deleted = await tasks.clear_all()
        typer.secho(f"Deleted {deleted} of {total} task(s).", fg=typer.colors.BLUE)
        if deleted < total:
            raise typer.Exit(code=1)

    _run(ctx, body)


@app.command()
def move(
    ctx: typer.Context,
    source: int = typer.Argument(..., help="Current position of the task."),
    target: int = typer.Argument(..., help="Position the task should end up at."),
) -> None:
    """Reorder a task within its section."""

    async def body(tasks, store, cfg) -> None:
        _task_at(tasks, source)
        _task_at(tasks, target)
        offset = target if target > source else target - 1
        if not await tasks.move([source - 1], offset):
            _exit_with("Open and completed tasks cannot be moved across each other.")
        _print_tasks(tasks)

    _run(ctx, body)


@app.command()
def capture(ctx: typer.Context) -> None:  # pragma: no cover - interactive
    """Record from the microphone and add every task you mention."""

    try:
        audio = MicrophoneCapture()
    except RuntimeError as exc:
        _exit_with(str(exc))

    async def body(tasks, store, cfg) -> None:
        machine = _machine(tasks, store, cfg, audio=audio, with_extractor=True)
        before = len(tasks)
        await machine.start_listening()
        if isinstance(machine.state, Listening) and not await _listen_until_enter(machine):
            return
        _finish_cycle(machine, before)

    _run(ctx, body)


@app.command()
def process(
    ctx: typer.Context,
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Path to the audio file."),
) -> None:
    """Extract tasks from a recorded audio file."""

    async def body(tasks, store, cfg) -> None:
        machine = _machine(tasks, store, cfg, audio=FileCapture(audio), with_extractor=True)
        before = len(tasks)
        await machine.start_listening()
        await machine.stop_listening()
        _finish_cycle(machine, before)

    _run(ctx, body)


@app.command()
def parse(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="What you would have said."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Save without asking."),
) -> None:
    """Turn one sentence into a task, review it, then save it."""

    async def body(tasks, store, cfg) -> None:
        machine = _machine(tasks, store, cfg, with_extractor=True)
        await machine.review_text(text)
        state = machine.state
        if not isinstance(state, Previewing):
            machine.close()
            raise typer.Exit(code=1)
        draft = state.draft
        if not yes:
            title = typer.prompt("Task", default=draft.title)
            if not typer.confirm("Save this task?", default=True):
                machine.cancel_preview()
                typer.echo("Discarded.")
                return
            draft = dataclasses.replace(draft, title=title)
        saved = await machine.commit_preview(draft)
        machine.close()
        if saved is None:
            raise typer.Exit(code=1)
        typer.secho(f"Added: {saved.title}", fg=typer.colors.GREEN)

    _run(ctx, body)


@app.command()
def config(
    groq_api_key: Optional[str] = typer.Option(None, help="API key for the speech and language service."),
    api_base_url: Optional[str] = typer.Option(None, help="OpenAI compatible endpoint for speech and extraction."),
    llm_model: Optional[str] = typer.Option(None, help="Model used to extract tasks."),
    whisper_model: Optional[str] = typer.Option(None, help="Model used to transcribe speech."),
    server_url: Optional[str] = typer.Option(None, help="Base URL of the verbalist task server."),
    server_token: Optional[str] = typer.Option(None, help="Bearer token for the task server."),
    verify_ssl: Optional[bool] = typer.Option(
        None,
        "--verify-ssl/--no-verify-ssl",
        help="Toggle TLS certificate verification for task server calls.",
    ),
    api_timeout: Optional[float] = typer.Option(None, help="HTTP timeout (seconds) for remote calls."),
    sort_policy: Optional[str] = typer.Option(None, help="newest, oldest, alphabetical or incomplete_first."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "groq_api_key": groq_api_key,
            "api_base_url": api_base_url,
            "llm_model": llm_model,
            "whisper_model": whisper_model,
            "server_url": server_url,
            "server_token": server_token,
            "verify_ssl": verify_ssl,
            "api_timeout": api_timeout,
            "sort_policy": sort_policy,
        }.items()
        if value is not None
    }

    if show or not updates:
        cfg = _load_config()
        data = asdict(cfg)
        for secret in ("groq_api_key", "server_token"):
            if data.get(secret):
                data[secret] = "********"
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    if llm_model is not None and llm_model not in AVAILABLE_LLM_MODELS:
        _exit_with(f"Unknown model {llm_model}. Run `verbalist models` to list the options.")
    if whisper_model is not None and whisper_model not in AVAILABLE_WHISPER_MODELS:
        _exit_with(f"Unknown model {whisper_model}. Run `verbalist models` to list the options.")

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        _exit_with(str(exc))
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def models() -> None:
    """List the speech and extraction models that can be configured."""

    cfg = _load_config()
    typer.echo("Extraction models:")
    for name in AVAILABLE_LLM_MODELS:
        typer.echo(f"  {'*' if name == cfg.llm_model else ' '} {name}")
    typer.echo("Transcription models:")
    for name in AVAILABLE_WHISPER_MODELS:
        typer.echo(f"  {'*' if name == cfg.whisper_model else ' '} {name}")


@app.command()
def setup() -> None:  # pragma: no cover - interactive
    """Run the interactive setup wizard."""

    from .onboarding import run_onboarding

    try:
        run_onboarding()
    except ConfigError as exc:
        _exit_with(f"Setup failed: {exc}")


if __name__ == "__main__":  # pragma: no cover
    app()
