"""CLI and REPL for Pitwall."""

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel

from pitwall.config import Config
from pitwall.constants import SHELL_TOOL
from pitwall.errors import PitwallError
from pitwall.events import Event, EventKind
from pitwall.llm import list_models
from pitwall.messages import message_role
from pitwall.permissions import PermissionMode
from pitwall.runtime import AgentRuntime, Run, RunResult, ThreadSummary
from pitwall.state import ConfirmationDecision, PendingConfirmation

app = typer.Typer(help="Pitwall - Terminal Coding Agent")
console = Console()

RESULT_PREVIEW_LINES = 6
LATEST_ALIASES = ("latest", "last")


def resolve_thread_choice(choice: str, summaries: list[ThreadSummary]) -> Optional[str]:
    """Map a /resume argument to a stored thread id.

    Args:
        choice: Thread id, 1-based position in the listing, or "latest"
        summaries: Threads as returned by ``AgentRuntime.list_threads``

    Returns:
        Matching thread id, or None if nothing matches
    """
    choice = choice.strip()
    if not choice or not summaries:
        return None
    if choice.lower() in LATEST_ALIASES:
        return summaries[0].thread_id
    for summary in summaries:
        if summary.thread_id == choice:
            return summary.thread_id
    if choice.isdigit() and 1 <= int(choice) <= len(summaries):
        return summaries[int(choice) - 1].thread_id
    return None


class REPL:
    """Interactive REPL for Pitwall."""

    def __init__(
        self,
        project_root: Path,
        config: Config,
        thread_id: Optional[str] = None,
        continue_latest: bool = False,
    ):
        """Initialize REPL.

        Args:
            project_root: Project root directory
            config: Configuration object
            thread_id: Existing thread to continue (new thread if None)
            continue_latest: Continue the most recently updated thread
        """
        self.project_root = project_root
        self.config = config
        self.runtime = AgentRuntime.from_config(project_root, config)
        self.loop = asyncio.new_event_loop()
        if thread_id is None and continue_latest:
            thread_id = self.run_async(self.runtime.latest_thread())
        self.thread_id = thread_id or self.runtime.new_thread()
        self.last_usage: Optional[dict] = None
        self.streaming = False
        self.running = True

    def start(self) -> None:
        """Start the REPL."""
        settings = self.runtime.settings.current
        console.print(Panel.fit(
            "[bold cyan]Pitwall[/bold cyan] - Terminal Coding Agent\n"
            f"Project: {self.project_root}\n"
            f"Model: {settings.model}\n"
            f"Mode: {settings.permission_mode.value}\n"
            f"Thread: {self.thread_id}\n"
            "\n"
            "Type /help for commands or /quit to exit. Ctrl-C stops a running turn.",
            border_style="cyan"
        ))

        try:
            while self.running:
                try:
                    mode = self.runtime.settings.current.permission_mode
                    marker = "" if mode == PermissionMode.DEFAULT else f" [dim]({mode.value})[/dim]"
                    user_input = console.input(f"[bold cyan]pitwall{marker}>[/bold cyan] ").strip()

                    if not user_input:
                        continue

                    self.handle_input(user_input)

                except KeyboardInterrupt:
                    console.print("\n[dim]Use /quit to exit[/dim]")
                    continue
                except EOFError:
                    break
        finally:
            self.loop.close()

        console.print("\n[cyan]Goodbye![/cyan]")

    def handle_input(self, user_input: str) -> None:
        """Handle user input (command or natural language).

        Args:
            user_input: User input string
        """
        if user_input.startswith("/"):
            self.handle_command(user_input)
        else:
            self.handle_natural_language(user_input)

    def handle_command(self, command: str) -> None:
        """Handle slash command.

        Args:
            command: Command string (starting with /)
        """
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""

        try:
            if cmd == "/help":
                self.show_help()
            elif cmd == "/quit" or cmd == "/exit":
                self.running = False
            elif cmd == "/clear":
                self.thread_id = self.runtime.clear(self.thread_id)
                self.last_usage = None
                console.print(f"[green]Started new conversation: {self.thread_id}[/green]")
            elif cmd == "/compact":
                console.print("[dim]Compacting conversation...[/dim]")
                counts = self.run_async(self.runtime.compact(self.thread_id))
                if counts["before"] == counts["after"]:
                    console.print("[dim]Nothing to compact[/dim]")
                else:
                    console.print(
                        f"[green]Compacted {counts['before']} messages into {counts['after']}[/green]"
                    )
            elif cmd == "/mode":
                if args:
                    settings = self.runtime.settings.set_permission_mode(args)
                else:
                    settings = self.runtime.settings.cycle_permission_mode()
                console.print(f"[green]Permission mode: {settings.permission_mode.value}[/green]")
                console.print(f"[dim]Available: {', '.join(m.value for m in PermissionMode)}[/dim]")
            elif cmd == "/model":
                if args:
                    settings = self.runtime.settings.set_model(args)
                    console.print(f"[green]Switched to model: {settings.model}[/green]")
                else:
                    console.print(f"[dim]Current model: {self.runtime.settings.current.model}[/dim]")
                    console.print("\nAvailable models:")
                    for model in list_models():
                        console.print(f"  - {model}")
            elif cmd == "/threads":
                self.show_threads()
            elif cmd == "/resume":
                self.resume_thread(args)
            elif cmd == "/delete":
                if not args:
                    console.print("[red]Usage: /delete <thread id>[/red]")
                elif args == self.thread_id:
                    console.print("[red]Cannot delete the current conversation[/red]")
                elif self.run_async(self.runtime.delete_thread(args)):
                    console.print(f"[green]Deleted thread {args}[/green]")
                else:
                    console.print(f"[yellow]No thread named {args}[/yellow]")
            elif cmd == "/history":
                self.show_history()
            elif cmd == "/context":
                self.show_context()
            elif cmd == "/config":
                config_dict = self.config.to_dict()
                config_dict["thread_id"] = self.thread_id
                console.print(Panel(
                    "\n".join(f"{k}: {v}" for k, v in config_dict.items()),
                    title="Configuration",
                    border_style="blue"
                ))
            elif cmd == "/log":
                log_path = self.runtime.logger.log_path(self.thread_id)
                console.print(f"[dim]Run log: {log_path or 'disabled'}[/dim]")
            else:
                console.print(f"[red]Unknown command: {cmd}[/red]")
                console.print("[dim]Type /help for available commands[/dim]")

        except (PitwallError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")

    def handle_natural_language(self, text: str) -> None:
        """Send a message to the agent and follow the run to its end.

        Args:
            text: User's request
        """
        try:
            run = self.run_async(self.runtime.submit(self.thread_id, text))
            self.settle(self.follow(run))
        except PitwallError as e:
            self.end_stream()
            console.print(f"[red]Error: {e}[/red]")

    def settle(self, result: Optional[RunResult]) -> None:
        """Ask for confirmations until the thread stops suspending."""
        while result is not None and result.suspended:
            decision = self.ask_confirmation(result.pending)
            run = self.run_async(self.runtime.resume(self.thread_id, decision))
            result = self.follow(run)

    def show_threads(self) -> list[ThreadSummary]:
        """List stored conversations, newest first."""
        summaries = self.run_async(self.runtime.list_threads())
        if not summaries:
            console.print("[dim]No saved conversations[/dim]")
            return summaries
        for index, summary in enumerate(summaries, 1):
            marker = "*" if summary.thread_id == self.thread_id else " "
            status = " [yellow](waiting for confirmation)[/yellow]" if summary.suspended else ""
            console.print(
                f"{marker}{index:>3}. [bold]{escape(summary.title)}[/bold]{status}\n"
                f"      [dim]{summary.thread_id} - {summary.updated_at:%Y-%m-%d %H:%M} - "
                f"{summary.message_count} messages[/dim]",
                highlight=False,
            )
        return summaries

    def resume_thread(self, choice: str) -> None:
        """Switch to a stored conversation.

        Args:
            choice: Thread id, listing number or "latest" (asks when empty)
        """
        if choice:
            summaries = self.run_async(self.runtime.list_threads())
        else:
            summaries = self.show_threads()
            if not summaries:
                return
            choice = console.input("[bold]Resume which conversation?[/bold] ").strip()
            if not choice:
                return

        thread_id = resolve_thread_choice(choice, summaries)
        if thread_id is None:
            console.print(f"[red]No conversation matches: {choice}[/red]")
            return

        self.thread_id = thread_id
        self.last_usage = None
        summary = next(s for s in summaries if s.thread_id == thread_id)
        console.print(f"[green]Resumed: {escape(summary.title)} ({thread_id})[/green]")

        pending = self.run_async(self.runtime.pending_confirmation(thread_id))
        if pending is not None:
            console.print("[yellow]This conversation is waiting for a confirmation[/yellow]")
            self.settle(RunResult(thread_id=thread_id, suspended=True, pending=pending))

    def run_async(self, coro):
        return self.loop.run_until_complete(coro)

    def follow(self, run: Run) -> Optional[RunResult]:
        """Render a run's events until it finishes; Ctrl-C cancels it."""
        return self.run_async(self._follow(run))

    async def _follow(self, run: Run) -> Optional[RunResult]:
        try:
            self.loop.add_signal_handler(signal.SIGINT, self._cancel_current)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            handler_installed = False

        try:
            async for event in run.events():
                self.render_event(event)
            result = await run
        finally:
            if handler_installed:
                self.loop.remove_signal_handler(signal.SIGINT)

        self.end_stream()
        if result.interrupted:
            console.print("[yellow]Interrupted[/yellow]")
        return result

    def _cancel_current(self) -> None:
        if self.runtime.cancel(self.thread_id):
            console.print("\n[yellow]Cancelling...[/yellow]")

    def end_stream(self) -> None:
        if self.streaming:
            console.print()
            self.streaming = False

    def render_event(self, event: Event) -> None:
        """Render one event to the console."""
        data = event.data
        kind = event.kind

        if kind == EventKind.STREAMING_DELTA:
            console.print(data["text"], end="", markup=False, highlight=False)
            self.streaming = True
        elif kind == EventKind.RESPONSE_READY:
            self.end_stream()
        elif kind == EventKind.TOOL_INVOKED:
            self.end_stream()
            console.print(f"[bold magenta]⏺ {data['name']}[/bold magenta]([dim]{self.format_args(data['args'])}[/dim])")
        elif kind == EventKind.TOOL_PROGRESS:
            console.print(f"  [dim]{data['message']}[/dim]", markup=True, highlight=False)
        elif kind == EventKind.TOOL_RESULT:
            lines = str(data["content"]).splitlines() or [""]
            preview = "\n".join(lines[:RESULT_PREVIEW_LINES])
            if len(lines) > RESULT_PREVIEW_LINES:
                preview += f"\n... ({len(lines) - RESULT_PREVIEW_LINES} more lines)"
            style = "red" if data.get("is_error") else "dim"
            console.print(Panel(preview, border_style=style, expand=False))
        elif kind == EventKind.COMPACTION_STARTED:
            self.end_stream()
            console.print("[yellow]Context is almost full, compacting conversation...[/yellow]")
        elif kind == EventKind.COMPACTION_COMPLETED:
            if data.get("compacted"):
                console.print(
                    f"[green]Compacted {data['messages_before']} messages into {data['messages_after']}[/green]"
                )
            else:
                console.print(f"[yellow]Compaction skipped: {data.get('reason')}[/yellow]")
        elif kind == EventKind.TOKEN_USAGE:
            self.last_usage = dict(data)
        elif kind == EventKind.ERROR:
            self.end_stream()
            console.print(f"[red]{data['type']}: {data['error']}[/red]")

    def ask_confirmation(self, pending: Optional[PendingConfirmation]) -> ConfirmationDecision:
        """Ask the user to approve the gated tool calls."""
        if pending is None:
            return ConfirmationDecision(approved=False)

        prefix = None
        for call in pending.calls:
            if call.name == SHELL_TOOL:
                body = f"$ {call.args.get('command', '')}"
                prefix = prefix or call.command_prefix
            else:
                body = json.dumps(call.args, indent=2, ensure_ascii=False)
                if len(body) > 1500:
                    body = body[:1500] + "\n..."
            console.print(Panel(body, title=f"{call.name} wants to run", border_style="yellow"))

        options = "[y] yes  [a] always allow"
        if prefix:
            options += f"  [p] always allow '{prefix}' commands"
        options += "  [n] no"

        while True:
            try:
                answer = console.input(f"[yellow]{options}:[/yellow] ").strip().lower()
            except (KeyboardInterrupt, EOFError):
                console.print()
                return ConfirmationDecision(approved=False)
            if answer in ("y", "yes"):
                return ConfirmationDecision(approved=True)
            if answer in ("a", "always"):
                return ConfirmationDecision(approved=True, remember="exact")
            if answer == "p" and prefix:
                return ConfirmationDecision(approved=True, remember="prefix")
            if answer in ("n", "no", ""):
                return ConfirmationDecision(approved=False)

    def show_history(self) -> None:
        """Show the current thread's messages."""
        messages = self.run_async(self.runtime.get_messages(self.thread_id))
        if not messages:
            console.print("[dim]No messages yet[/dim]")
            return
        for message in messages:
            text = message.content.replace("\n", " ")
            if len(text) > 120:
                text = text[:117] + "..."
            calls = getattr(message, "tool_calls", None)
            if calls:
                text += " " + ", ".join(c.name for c in calls)
            console.print(f"[bold]{message_role(message):>9}[/bold] {text}", markup=True, highlight=False)

    def show_context(self) -> None:
        """Show the last measured context usage."""
        if not self.last_usage:
            console.print("[dim]No usage measured yet in this session[/dim]")
            return
        usage = self.last_usage
        console.print(
            f"[dim]Context: {usage['tokens']:,} / {usage['limit']:,} tokens "
            f"({usage['percent']}%, {usage['method']})[/dim]"
        )

    @staticmethod
    def format_args(args: dict) -> str:
        if "command" in args:
            return str(args["command"])
        if "file_path" in args:
            return str(args["file_path"])
        if "pattern" in args:
            return str(args["pattern"])
        text = json.dumps(args, ensure_ascii=False)
        return text if len(text) <= 80 else text[:77] + "..."

    def show_help(self) -> None:
        """Show help message."""
        help_text = """
**Available Commands:**

- `/clear` - Start a new conversation
- `/threads` - List saved conversations
- `/resume [id|number|latest]` - Switch to a saved conversation
- `/delete <id>` - Delete a saved conversation
- `/compact` - Summarize the conversation to free context
- `/context` - Show context window usage
- `/mode [name]` - Cycle or set permission mode (default, accept-edits, plan, bypass)
- `/model [name]` - Show or switch LLM model
- `/history` - Show messages in this conversation
- `/config` - Show current configuration
- `/log` - Show run log path
- `/help` - Show this help message
- `/quit` - Exit Pitwall

Anything else is sent to the agent. Press Ctrl-C to stop a running turn.
        """
        console.print(Markdown(help_text))


@app.command()
def main(
    path: Optional[str] = typer.Argument(
        None,
        help="Project path (default: current directory)"
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model", "-m",
        help="Model to use (e.g., anthropic:claude-sonnet-4-5)"
    ),
    mode: Optional[str] = typer.Option(
        None,
        "--mode",
        help="Permission mode (default, accept-edits, plan, bypass)"
    ),
    thread: Optional[str] = typer.Option(
        None,
        "--thread", "-t",
        help="Continue an existing thread"
    ),
    continue_latest: bool = typer.Option(
        False,
        "--continue", "-c",
        help="Continue the most recent conversation"
    ),
) -> None:
    """Start Pitwall interactive session."""
    project_root = Path(path).resolve() if path else Path.cwd()

    if not project_root.exists():
        console.print(f"[red]Error: Path does not exist: {project_root}[/red]")
        sys.exit(1)

    if not project_root.is_dir():
        console.print(f"[red]Error: Path is not a directory: {project_root}[/red]")
        sys.exit(1)

    try:
        config = Config.load(project_root)
    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    if model:
        config.default_model = model
    if mode:
        config.permission_mode = mode

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        sys.exit(1)

    try:
        repl = REPL(project_root, config, thread_id=thread, continue_latest=continue_latest)
        repl.start()
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    app()
