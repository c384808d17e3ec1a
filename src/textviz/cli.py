# src/textviz/cli.py
"""
textviz Command Line Interface (CLI).

This module implements the terminal interface using `typer` and `rich`.

Features
--------
- **Live Instructions**: a spinner tracks the instruction stream; the
  narrative guide is printed the moment the decoder surfaces it.
- **Export**: the generated document is written as a standalone HTML file.
- **Recording**: any document can be played in a headless sandbox and its
  canvas recorded to `.webm`.
- **Preview**: a headed sandbox driven by typed playback commands.
- **History**: the prompt log, newest first.

Usage
-----
    $ textviz generate "Demonstrate bubble sort with colored bars" --record
    $ textviz record visualization.html --seconds 15
    $ textviz preview visualization.html
    $ textviz history --limit 10
"""

from __future__ import annotations

import time
import traceback
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from textviz.core.contracts.instructions import NarrativeGuide
from textviz.core.errors import PersistenceError, RecordingError, SandboxError, TextVizError
from textviz.core.settings import load_settings
from textviz.pipelines.text_to_visualization import Stage, run_generation
from textviz.playback import PlaybackHost, PlaywrightSandbox, RelayOutcome
from textviz.recording import Recorder
from textviz.storage.prompt_log import PromptLogStore

# Ensure env vars (like GOOGLE_GENERATIVE_AI_API_KEY) are loaded before any logic runs
load_dotenv()

app = typer.Typer(
    help="textviz: turn a sentence into an animated, narrated HTML/Canvas visualization.",
    rich_markup_mode="markdown",
)
console = Console()


# --------------------------------------------------------------------------- #
# Helpers: Rendering
# --------------------------------------------------------------------------- #


def _render_guide(guide: NarrativeGuide) -> None:
    """Print the narrative guide as soon as it is available."""
    lines = []
    if guide.introduction:
        lines.append(f"[italic]{guide.introduction}[/italic]\n")
    for step in guide.steps:
        seconds = step.time_in_seconds if step.time_in_seconds is not None else 0.0
        lines.append(f"[cyan]{seconds:>5.1f}s[/cyan]  {step.text}")
    if guide.conclusion:
        lines.append(f"\n[italic]{guide.conclusion}[/italic]")
    body = "\n".join(lines) or "(empty)"
    console.print(Panel(body, title="Narrative guide", border_style="cyan"))


def _fail(exc: BaseException, verbose: bool, label: str) -> typer.Exit:
    message = exc.public_message if isinstance(exc, TextVizError) else str(exc)
    console.print(f"\n[bold red]❌ {label}:[/bold red] {message}")
    if verbose:
        traceback.print_exc()
    return typer.Exit(code=1)


def _open_prompt_log() -> PromptLogStore | None:
    try:
        return PromptLogStore(load_settings().prompt_log_path)
    except PersistenceError as exc:
        console.print(f"[dim yellow]Prompt log unavailable ({exc}); not recording.[/dim yellow]")
        return None


# --------------------------------------------------------------------------- #
# Helpers: Playback & Recording
# --------------------------------------------------------------------------- #


def _load_into_host(host: PlaybackHost, html: str) -> None:
    host.show(html)
    if not host.wait_until_ready():
        raise SandboxError("The visualization did not finish loading.")


def _record_document(html: str, seconds: float | None, output_dir: Path) -> Path:
    """Play ``html`` from the start in a headless sandbox and save its canvas video."""
    cfg = load_settings()
    with PlaywrightSandbox(
        headless=True,
        viewport_width=cfg.viewport_width,
        viewport_height=cfg.viewport_height,
    ) as sandbox:
        host = PlaybackHost(sandbox)
        _load_into_host(host, html)
        host.reset()
        host.play()
        canvas = host.canvas()
        if canvas is None:
            raise RecordingError(
                "document has no canvas#animationCanvas",
                public_message="This visualization has no canvas to record.",
            )
        recording = Recorder().record(canvas, seconds)
    return recording.save(output_dir)


# --------------------------------------------------------------------------- #
# Commands
# --------------------------------------------------------------------------- #


@app.command()  # type: ignore[misc]
def generate(
    prompt: Annotated[str, typer.Argument(help="What to visualize, in plain words.")],
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Where to write the generated HTML."),
    ] = Path("visualization.html"),
    record: Annotated[
        bool,
        typer.Option("--record/--no-record", help="Also record the canvas to .webm."),
    ] = False,
    seconds: Annotated[
        float | None,
        typer.Option("--seconds", "-s", help="Recording length (capped by the recording ceiling)."),
    ] = None,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", help="Directory for recordings."),
    ] = None,
    user: Annotated[
        str | None,
        typer.Option("--user", "-u", help="Prompt log user id (default: TEXTVIZ_CLI_USER)."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show full error tracebacks for debugging."),
    ] = False,
) -> None:
    """
    Generate a visualization: instruction stream → HTML document (→ video).
    """
    cfg = load_settings()
    console.print(
        Panel.fit(f"[bold cyan]textviz[/bold cyan]\nPrompt: [u]{prompt}[/u]", border_style="cyan")
    )

    start_time = time.time()
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("[cyan]Requesting instructions...", total=None)

            def on_chunk(text: str) -> None:
                description = f"[yellow]Streaming instructions ({len(text)} chars)..."
                progress.update(task, description=description)

            def on_stage(stage: Stage) -> None:
                if stage == "compiling":
                    progress.update(task, description="[magenta]Compiling visualization...")

            result = run_generation(
                prompt,
                user_id=user or cfg.cli_user,
                prompt_log=_open_prompt_log(),
                on_narrative_guide=_render_guide,
                on_chunk=on_chunk,
                on_stage=on_stage,
            )
    except KeyboardInterrupt:
        console.print("\n[yellow]Generation stopped.[/yellow]")
        raise typer.Exit(code=130) from None
    except (TextVizError, ValueError) as e:
        raise _fail(e, verbose, "Generation Error") from e

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(result["code"], encoding="utf-8")

    duration = time.time() - start_time
    console.print(f"\n[bold green]✅ Complete![/bold green] (took {duration:.1f}s)")
    if result["decode_error"]:
        console.print(f"[dim]Instructions were compiled unparsed: {result['decode_error']}[/dim]")
    if result["warning"]:
        console.print(f"[bold yellow]⚠️ {result['warning']}[/bold yellow]")
    saved = f"Saved to: [link=file://{output.resolve()}]{output}[/link]"
    console.print(Panel(saved, title="HTML", border_style="green"))

    if record:
        try:
            with console.status("[cyan]Recording canvas..."):
                video = _record_document(result["code"], seconds, output_dir or cfg.recording_dir)
        except TextVizError as e:
            raise _fail(e, verbose, "Recording Error") from e
        console.print(Panel(f"Saved to: {video}", title="Video", border_style="green"))


@app.command()  # type: ignore[misc]
def record(
    html_file: Annotated[
        Path,
        typer.Argument(exists=True, dir_okay=False, readable=True, help="Saved HTML document."),
    ],
    seconds: Annotated[
        float | None,
        typer.Option("--seconds", "-s", help="Recording length (capped by the recording ceiling)."),
    ] = None,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", help="Directory for recordings."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
) -> None:
    """
    Record a saved visualization's canvas to `.webm`.
    """
    html = html_file.read_text(encoding="utf-8")
    try:
        with console.status(f"[cyan]Recording {html_file.name}..."):
            video = _record_document(html, seconds, output_dir or load_settings().recording_dir)
    except TextVizError as e:
        raise _fail(e, verbose, "Recording Error") from e
    console.print(Panel(f"Saved to: {video}", title="Video", border_style="green"))


_PREVIEW_COMMANDS = {
    "play": PlaybackHost.play,
    "forward": PlaybackHost.step_forward,
    "back": PlaybackHost.step_backward,
    "reset": PlaybackHost.reset,
}


@app.command()  # type: ignore[misc]
def preview(
    html_file: Annotated[
        Path,
        typer.Argument(exists=True, dir_okay=False, readable=True, help="Saved HTML document."),
    ],
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
) -> None:
    """
    Open a visualization in a browser window and drive it from the terminal.

    Commands: `play`, `forward`, `back`, `reset`, `quit`.
    """
    cfg = load_settings()
    try:
        with PlaywrightSandbox(
            headless=False,
            viewport_width=cfg.viewport_width,
            viewport_height=cfg.viewport_height,
        ) as sandbox:
            host = PlaybackHost(sandbox)
            _load_into_host(host, html_file.read_text(encoding="utf-8"))
            commands = ", ".join([*_PREVIEW_COMMANDS, "quit"])
            console.print(
                f"[green]Ready[/green] (frame height {host.frame_height}px). Commands: {commands}"
            )
            while True:
                try:
                    command = console.input("[bold]> [/bold]").strip().lower()
                except EOFError:
                    break
                if command in ("quit", "exit", "q"):
                    break
                action = _PREVIEW_COMMANDS.get(command)
                if action is None:
                    console.print(f"[yellow]Unknown command:[/yellow] {command}")
                    continue
                outcome = action(host)
                style = "red" if outcome in (RelayOutcome.NOOP, RelayOutcome.SKIPPED) else "dim"
                console.print(f"[{style}]{command}: {outcome}[/{style}]")
    except TextVizError as e:
        raise _fail(e, verbose, "Preview Error") from e


@app.command()  # type: ignore[misc]
def history(
    user: Annotated[
        str | None,
        typer.Option("--user", "-u", help="User id (default: TEXTVIZ_CLI_USER)."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, max=200)] = 20,
    offset: Annotated[int, typer.Option("--offset", min=0)] = 0,
) -> None:
    """
    Show the prompt log, most recent first.
    """
    user_id = user or load_settings().cli_user
    try:
        store = PromptLogStore(load_settings().prompt_log_path)
        records = store.list(user_id, limit=limit, offset=offset)
        total = store.count(user_id)
    except PersistenceError as e:
        raise _fail(e, False, "History Error") from e

    table = Table(title=f"Prompt history for {user_id} ({total} total)")
    table.add_column("ID", justify="right")
    table.add_column("Created")
    table.add_column("Status")
    table.add_column("Prompt")
    table.add_column("Error", style="red")
    for rec in records:
        status_style = "green" if rec.status == "VISUALIZATION_COMPLETE" else "red"
        table.add_row(
            str(rec.id),
            rec.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{status_style}]{rec.status}[/{status_style}]",
            rec.prompt if len(rec.prompt) <= 60 else rec.prompt[:57] + "...",
            rec.error_message or "",
        )
    console.print(table)


if __name__ == "__main__":
    app()
