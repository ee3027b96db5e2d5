from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path

import typer
from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .agents.registry import AgentRegistry
from .app_context import AppContext
from .config.loader import load_behavior_config
from .coordinator import RunOptions
from .errors import Backpressure, PycrushError, RequestAlreadyResolved, TurnCancelled, UnknownPermissionRequest
from .events.models import Event, EventType
from .events.store import EventStore
from .log import setup_logging
from .prompt.system import initialize_prompt
from .runner import TurnResult
from .tools.permissions import PermissionGate

app = typer.Typer(add_completion=False, help="pycrush: terminal coding agent with coder, task and research modes.")
console = Console()


def _resolve_cwd(cwd: Path | None) -> Path:
    cwd = Path(str(cwd or Path.cwd())).expanduser()
    cwd = (Path.cwd() / cwd).resolve() if not cwd.is_absolute() else cwd.resolve()
    if cwd.exists() and not cwd.is_dir():
        raise typer.BadParameter(f"--cwd must be a directory, got file: {cwd}")
    cwd.mkdir(parents=True, exist_ok=True)
    return cwd


def _new_session_id() -> str:
    return f"sess_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"


def _header(ctx: AppContext, session_id: str) -> None:
    co = ctx.coordinator
    table = Table.grid(padding=(0, 2))
    table.add_row("📁 [bold green]cwd[/bold green]", f"[bright_cyan]{ctx.cwd}[/bright_cyan]")
    table.add_row("🆔 [bold green]session[/bold green]", f"[bright_cyan]{session_id}[/bright_cyan]")
    table.add_row("🔌 [bold green]provider[/bold green]", f"[bright_cyan]{ctx.provider_name}[/bright_cyan]")
    table.add_row("🧠 [bold green]model[/bold green]", f"[bright_cyan]{co.providers[co.profile.model].model}[/bright_cyan]")
    table.add_row("🤖 [bold green]mode[/bold green]", f"[bright_cyan]{co.profile.id}[/bright_cyan]")
    table.add_row("🧰 [bold green]tools[/bold green]", f"[bright_cyan]{', '.join(co.tool_names)}[/bright_cyan]")
    table.add_row("⚙️ [bold green]behavior_config[/bold green]", f"[bright_cyan]{ctx.behavior.loaded_from or '(none)'}[/bright_cyan]")
    console.print(Align.center(Panel(table, title="[bold magenta]pycrush[/bold magenta]", border_style="bright_blue")))


def _make_approver(gate: PermissionGate):
    """Sink answering permission requests from the terminal.

    The prompt runs in a worker thread; only the requesting turn waits on it.
    """

    async def _approve(ev: Event) -> None:
        req = ev.data.get("request") or {}
        rid = req.get("id", "")
        console.print(
            Panel.fit(
                f"[bold]tool:[/bold] {req.get('tool_name')}  [bold]action:[/bold] {req.get('action')}\n"
                f"[bold]path:[/bold] {req.get('path') or '-'}\n{req.get('description', '')}",
                title="Permission required",
                border_style="yellow",
            )
        )
        choice = await asyncio.to_thread(
            Prompt.ask,
            "Allow? [a]pprove / [s]ession / [d]eny",
            choices=["a", "s", "d"],
            default="d",
            console=console,
        )
        try:
            if choice == "a":
                gate.approve(rid)
            elif choice == "s":
                gate.approve(rid, persistent=True)
            else:
                gate.deny(rid)
        except (RequestAlreadyResolved, UnknownPermissionRequest) as e:
            console.print(f"[dim]{e}[/dim]")

    return _approve


def _make_printer(session_id: str):
    def _print(ev: Event) -> None:
        if ev.type is EventType.TEXT_DELTA and ev.session_id == session_id:
            console.print(ev.data.get("text", ""), end="", markup=False, highlight=False)
        elif ev.type is EventType.TOOL_INVOCATION and ev.data.get("status") in {"completed", "failed", "denied"}:
            style = "red" if ev.data.get("is_error") else "dim"
            console.print(f"\n[{style}]⚙ {ev.data.get('tool')} → {ev.data.get('status')}[/{style}]")
        elif ev.type is EventType.TURN_QUEUED:
            console.print(f"[dim]queued behind running turn (depth {ev.data.get('depth')})[/dim]")

    return _print


def _attach_observers(ctx: AppContext, session_id: str) -> None:
    bus = ctx.bus
    bus.attach(ctx.events)
    bus.attach(_make_approver(ctx.coordinator.gate), types=[EventType.PERMISSION_REQUESTED])
    bus.attach(
        _make_printer(session_id),
        types=[EventType.TEXT_DELTA, EventType.TOOL_INVOCATION, EventType.TURN_QUEUED],
    )


async def _one_turn(ctx: AppContext, session_id: str, prompt: str, max_steps: int | None) -> TurnResult | None:
    handle = ctx.coordinator.run(session_id, prompt, RunOptions(max_steps=max_steps))
    try:
        result = await handle
    except asyncio.CancelledError:
        handle.cancel()
        raise
    except TurnCancelled:
        console.print("\n[yellow]Turn canceled.[/yellow]")
        return None
    except PycrushError as e:
        console.print(f"\n[red]Turn failed ({type(e).__name__}):[/red] {e}")
        return None
    # Let pumps flush trailing events before printing the summary.
    await asyncio.sleep(0)
    console.print()
    console.print(f"[dim]tokens: in={result.usage.input_tokens} out={result.usage.output_tokens}[/dim]")
    if result.max_steps_reached:
        console.print("[yellow]Reached max steps.[/yellow]")
    return result


def _context(cwd, provider, config, model, yes, research, behavior_config, verbose) -> AppContext:
    setup_logging(logging.DEBUG if verbose else logging.WARNING, console=Console(stderr=True))
    try:
        return AppContext.from_env(
            _resolve_cwd(cwd),
            provider,
            config_path=config,
            model=model,
            auto_approve=yes,
            research=research,
            behavior_config=behavior_config,
        )
    except PycrushError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2)


@app.command()
def run(
    prompt: str = typer.Option(..., "--prompt", "-p", help="User prompt to run once."),
    provider: str = typer.Option(..., "--provider", help="Provider name registered in YAML."),
    config: Path = typer.Option(Path("pycrush.yaml"), "--config", help="Provider YAML path (default: ./pycrush.yaml)."),
    model: str = typer.Option(None, "--model", help="Override the provider's large model."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    session: str = typer.Option(None, "--session", help="Session id to append to (default creates new)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Auto-approve every tool call."),
    research: bool = typer.Option(False, "--research", help="Start in research mode."),
    max_steps: int = typer.Option(None, "--max-steps", help="Max model round trips for this turn."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (pycrush.json) path."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr."),
):
    """Run a single prompt and exit."""
    ctx = _context(cwd, provider, config, model, yes, research, behavior_config, verbose)
    session_id = session or _new_session_id()
    _header(ctx, session_id)

    async def _main() -> TurnResult | None:
        _attach_observers(ctx, session_id)
        console.print(f"\n[bold]You:[/bold] {prompt}\n\n[bold]Assistant:[/bold]")
        try:
            return await _one_turn(ctx, session_id, prompt, max_steps)
        finally:
            await ctx.bus.aclose()

    try:
        result = asyncio.run(_main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        raise typer.Exit(code=130)
    if result is None:
        raise typer.Exit(code=1)


@app.command()
def init(
    provider: str = typer.Option(..., "--provider", help="Provider name registered in YAML."),
    config: Path = typer.Option(Path("pycrush.yaml"), "--config", help="Provider YAML path (default: ./pycrush.yaml)."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Auto-approve every tool call."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr."),
):
    """Ask the coder agent to write a CRUSH.md describing this project."""
    ctx = _context(cwd, provider, config, None, yes, False, None, verbose)
    session_id = _new_session_id()
    _header(ctx, session_id)

    async def _main() -> TurnResult | None:
        _attach_observers(ctx, session_id)
        try:
            return await _one_turn(ctx, session_id, initialize_prompt(), None)
        finally:
            await ctx.bus.aclose()

    try:
        result = asyncio.run(_main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        raise typer.Exit(code=130)
    if result is None:
        raise typer.Exit(code=1)


@app.command()
def repl(
    provider: str = typer.Option(..., "--provider", help="Provider name registered in YAML."),
    config: Path = typer.Option(Path("pycrush.yaml"), "--config", help="Provider YAML path (default: ./pycrush.yaml)."),
    model: str = typer.Option(None, "--model", help="Override the provider's large model."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    session: str = typer.Option(None, "--session", help="Session id to append to (default creates new)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Auto-approve every tool call."),
    research: bool = typer.Option(False, "--research", help="Start in research mode."),
    max_steps: int = typer.Option(None, "--max-steps", help="Max model round trips per message."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (pycrush.json) path."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr."),
):
    """Interactive loop. `/mode <name>` switches agent, `/yes` auto-approves the session, `exit` quits."""
    ctx = _context(cwd, provider, config, model, yes, research, behavior_config, verbose)
    session_id = session or _new_session_id()
    _header(ctx, session_id)

    async def _main() -> None:
        _attach_observers(ctx, session_id)
        co = ctx.coordinator
        try:
            while True:
                try:
                    user = await asyncio.to_thread(Prompt.ask, "[bold]You[/bold]", console=console)
                except EOFError:
                    break
                text = user.strip()
                if not text:
                    continue
                if text.lower() in {"exit", "quit"}:
                    break
                if text.startswith("/mode"):
                    parts = text.split()
                    if len(parts) != 2:
                        console.print(f"[dim]mode: {co.profile.id} (known: {', '.join(co.agents.names())})[/dim]")
                        continue
                    try:
                        co.use_mode(parts[1])
                    except PycrushError as e:
                        console.print(f"[red]{e}[/red]")
                        continue
                    console.print(f"[dim]mode: {co.profile.id}; tools: {', '.join(co.tool_names)}[/dim]")
                    continue
                if text == "/yes":
                    co.gate.auto_approve_session(session_id)
                    console.print("[dim]tool calls in this session are auto-approved[/dim]")
                    continue
                console.print("\n[bold]Assistant:[/bold]")
                try:
                    await _one_turn(ctx, session_id, text, max_steps)
                except Backpressure as e:
                    console.print(f"[red]{e}[/red]")
                console.print()
        finally:
            await ctx.bus.aclose()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Bye.[/yellow]")


@app.command()
def agents(
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    research: bool = typer.Option(False, "--research", help="Show the research mode as active."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (pycrush.json) path."),
):
    """List agent profiles and their tool restrictions."""
    try:
        behavior = load_behavior_config(cwd=_resolve_cwd(cwd), explicit_path=behavior_config, research=research)
    except PycrushError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2)
    reg = AgentRegistry.from_behavior(behavior)

    table = Table(title=f"Agents (mode: {behavior.mode})")
    table.add_column("id", style="bold")
    table.add_column("name")
    table.add_column("model")
    table.add_column("tools")
    table.add_column("status")
    for a in reg.all():
        tools = "all" if a.allowed_tools is None else ", ".join(a.allowed_tools)
        status = "disabled" if a.disabled else ("active" if a.id == behavior.mode else "")
        table.add_row(a.id, a.name, a.model, tools, status)
    console.print(table)


@app.command()
def events(
    session: str = typer.Option(..., "--session", help="Session id to inspect events."),
    tail: int = typer.Option(200, "--tail", help="Show last N events."),
):
    """Show recorded turn, tool and permission events for a session."""
    es = EventStore.open()
    evs = list(es.iter_events(session))
    evs = evs[-tail:] if tail and tail > 0 else evs
    console.print(Panel.fit(f"session: {session}\nfile: {es.path_for(session)}\nevents: {len(evs)}", title="Events"))
    for e in evs:
        ts = datetime.fromtimestamp(float(e.get("ts") or 0)).strftime("%Y-%m-%d %H:%M:%S")
        console.print(
            Panel.fit(
                json.dumps(e.get("data") or {}, ensure_ascii=False, indent=2)[:4000],
                title=f"{ts}  {e.get('type')}",
            )
        )


if __name__ == "__main__":
    app()
