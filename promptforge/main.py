"""Main CLI entry point for PromptForge."""

import asyncio
import os
import signal
import sys

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt

from .auth import StaticAuthProvider
from .config import ForgeConfig
from .flow import CONSENT_OPTIONS, ConversationController, ForgeSession
from .interaction import preference_options, preference_question
from .logging_config import get_logger
from .models.conversation import BACK_SLOT, OWN_ANSWER_SLOT, ActivityStatus

logger = get_logger(__name__)

console = Console()

app = typer.Typer(
    name="promptforge",
    help="Turn a task description into a polished, model-ready prompt.",
    add_completion=False,
)

# Global controller for signal handling
_controller: ConversationController | None = None

EXIT_COMMANDS = {"/quit", "/exit"}
# How long a submit may run before the prompt comes back for /stop
SUBMIT_ECHO_SECONDS = 0.2

_STATUS_STYLES = {
    ActivityStatus.RUNNING: "cyan",
    ActivityStatus.SUCCESS: "green",
    ActivityStatus.ERROR: "red",
    ActivityStatus.STOPPED: "yellow",
    ActivityStatus.IDLE: "dim",
}


def _handle_interrupt(signum, frame):
    """Stop the request in flight instead of killing the terminal."""
    if _controller and _controller.state.is_generating:
        console.print("\n[yellow]Interrupt received - stopping the current request...[/yellow]")
        _controller.stop()
    else:
        console.print("\n[dim]Type /quit (or press Ctrl+D) to exit.[/dim]")


def _render_options(labels: list[str], selected: int | None, extra: list[tuple[int, str]]) -> None:
    for index, label in enumerate(labels):
        marker = ">" if selected == index else " "
        console.print(f"  {marker} [bold]{index + 1}[/bold]. {label}")
    for slot, label in extra:
        marker = ">" if selected == slot else " "
        console.print(f"  {marker} [dim]{label}[/dim]")


class TerminalView:
    """Prints what changed in the controller's state since the last turn."""

    def __init__(self, controller: ConversationController):
        self.controller = controller
        self._seen_lines = 0
        self._state_id = id(controller.state)

    def render(self) -> None:
        controller = self.controller
        state = controller.state
        if id(state) != self._state_id:
            # Cleared, restored or discarded
            self._state_id = id(state)
            self._seen_lines = 0

        for line in state.transcript[self._seen_lines:]:
            if line.role == "user":
                continue
            if state.editable_prompt and line.text == state.editable_prompt:
                console.print(Panel(line.text, title="Prompt", border_style="green"))
            else:
                console.print(f"[bold blue]>[/bold blue] {line.text}")
        self._seen_lines = len(state.transcript)

        for notice in controller.drain_notices():
            console.print(f"[yellow]{notice}[/yellow]")

        activity = state.activity
        if activity and activity.status != ActivityStatus.RUNNING:
            style = _STATUS_STYLES.get(activity.status, "dim")
            detail = f" - {activity.detail}" if activity.detail else ""
            console.print(f"[{style}]{activity.message}[/{style}][dim]{detail}[/dim]")

        self._render_choices()

    def _render_choices(self) -> None:
        controller = self.controller
        state = controller.state
        if state.unclear is not None:
            _render_options(["edit", "continue"], None, [])
        elif state.awaiting_consent:
            _render_options(list(CONSENT_OPTIONS), state.consent_selected_index, [])
        elif controller.clarifying.is_active:
            question = state.current_question()
            extra = [(OWN_ANSWER_SLOT, "My own answer (type it)")]
            if state.current_question_index > 0:
                extra.append((BACK_SLOT, "Back (/back)"))
            _render_options(
                [option.label for option in question.options],
                state.clarifying_selected_option_index,
                extra,
            )
        elif controller.preference_engine.is_active:
            key = state.current_preference_key
            console.print(f"[bold blue]>[/bold blue] {preference_question(key)}")
            _render_options(
                [option.label for option in preference_options(key)],
                state.preference_selected_option_index,
                [],
            )

    def prompt_label(self) -> str:
        state = self.controller.state
        if state.editable_prompt and not state.is_revising:
            return "[bold]edit[/bold]"
        if self.controller.clarifying.is_active or self.controller.preference_engine.is_active:
            return "[bold]answer[/bold]"
        return "[bold]task[/bold]"


async def _read_line(view: TerminalView) -> str:
    state = view.controller.state
    return await asyncio.to_thread(
        Prompt.ask,
        view.prompt_label(),
        console=console,
        default=state.input_value or "",
        show_default=bool(state.input_value),
    )


def _on_submit_done(view: TerminalView, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    if task.exception() is not None:
        logger.error("Submit failed", exc_info=task.exception())
        console.print(f"[red]Error:[/red] {task.exception()}")
    view.render()


async def _repl(controller: ConversationController) -> None:
    """Read lines while a request may still be running.

    A submit that starts a request runs in the background so ``/stop``
    (and the other commands the controller accepts mid-run) can still be
    typed. Ctrl+C stops the request as well.
    """
    view = TerminalView(controller)
    view.render()
    running: asyncio.Task | None = None
    try:
        while True:
            try:
                line = await _read_line(view)
            except EOFError:
                break
            if line.strip().lower() in EXIT_COMMANDS:
                break

            if running is not None and not running.done():
                await controller.submit(line)
                view.render()
                continue

            running = asyncio.create_task(controller.submit(line))
            await asyncio.wait({running}, timeout=SUBMIT_ECHO_SECONDS)
            if running.done():
                _on_submit_done(view, running)
                running = None
                continue
            console.print("[dim]Working... type /stop or press Ctrl+C to cancel.[/dim]")
            running.add_done_callback(lambda task: _on_submit_done(view, task))
    finally:
        if running is not None and not running.done():
            controller.stop()
            running.cancel()
            try:
                await running
            except asyncio.CancelledError:
                logger.info("Pending submit cancelled on exit")


@app.command()
def main(
    task: str | None = typer.Argument(None, help="Optional task to start with"),
    db_path: str | None = typer.Option(
        None,
        "--db", "-d",
        help="Path to SQLite database file",
    ),
    draft_path: str | None = typer.Option(
        None,
        "--draft",
        help="Path to the draft file used to resume the conversation",
    ),
    quick: bool = typer.Option(
        False,
        "--quick", "-q",
        help="Skip clarifying questions and generate right away",
    ),
    no_preferences: bool = typer.Option(
        False,
        "--no-preferences",
        help="Never ask preference questions",
    ),
    allow_fallback: bool | None = typer.Option(
        None,
        "--allow-fallback/--no-fallback",
        help="Use locally synthesized questions/prompts when the model call fails",
    ),
    user: str | None = typer.Option(
        None,
        "--user", "-u",
        help="Sign in as this user id (defaults to $PROMPTFORGE_USER)",
    ),
    session: str | None = typer.Option(
        None,
        "--session",
        help="Session id used to scope drafts and history",
    ),
):
    """Start an interactive prompt-building session.

    Describe a task, answer a few optional questions, and get a prompt you
    can edit by typing change requests. Type /help for commands.

    Examples:
        promptforge
        promptforge "Write a landing page headline" --quick
        promptforge --user alice --no-preferences
    """
    global _controller

    console.print()
    console.print(Panel(
        "[bold]PromptForge[/bold]\n"
        "Describe your task and what kind of AI answer you expect.",
        border_style="blue",
    ))

    signal.signal(signal.SIGINT, _handle_interrupt)

    config = ForgeConfig.from_cli_args(
        db_path=db_path,
        draft_path=draft_path,
        quick=quick,
        no_preferences=no_preferences,
        allow_fallback=allow_fallback,
    )
    auth = StaticAuthProvider()
    user_id = user or os.environ.get("PROMPTFORGE_USER")
    if user_id:
        auth.sign_in(user_id, os.environ.get("PROMPTFORGE_EMAIL"))
    else:
        console.print("[dim]Not signed in. Use /login <id> before generating.[/dim]")

    if config.generation_mode == "quick":
        console.print("[dim]Quick mode: prompts are generated without questions.[/dim]")

    async def run():
        global _controller

        async with ForgeSession(config, auth=auth, session_id=session) as forge:
            _controller = forge.controller
            if forge.controller.restore_draft():
                console.print("[dim]Resumed your previous conversation. /discard starts fresh.[/dim]")
            if task:
                await forge.controller.submit(task)
            await _repl(forge.controller)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Exiting...[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    app()
