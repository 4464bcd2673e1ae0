"""Slash commands typed into the conversation."""

from ..events import EventType
from ..logging_config import get_logger

logger = get_logger(__name__)

HELP_LINES = (
    "PromptForge commands:",
    "/help              Show this list.",
    "/preferences       Set your defaults (tone, audience, domain).",
    "/clear             Clear the conversation. Use /restore to undo once.",
    "/restore           Restore the last cleared conversation.",
    "/discard           Start fresh with a new task.",
    "/back              Go back one question.",
    "/revise            Edit the task; resubmitting it continues where you left off.",
    "/edit <request>    Change the ready prompt.",
    "/stop              Stop the request in flight (Ctrl+C works too).",
    "/history           List recent tasks and prompts.",
    "/use <n>           Load task #n from /history into the input.",
    "/mode quick|guided Skip or ask questions before generating.",
    "/login <id> [email], /logout",
    "Anything else: describe a task and we'll draft a prompt using your preferences.",
)


class CommandRouter:
    """Maps ``/command`` lines to controller actions. Unknown commands only get a notice."""

    def __init__(self, controller):
        self.controller = controller
        self._handlers = {
            "/help": self._help,
            "/preferences": self._preferences,
            "/clear": self._clear,
            "/restore": self._restore,
            "/discard": self._discard,
            "/back": self._back,
            "/revise": self._revise,
            "/edit": self._edit,
            "/stop": self._stop,
            "/history": self._history,
            "/use": self._use,
            "/mode": self._mode,
            "/login": self._login,
            "/logout": self._logout,
        }

    async def dispatch(self, line: str) -> bool:
        parts = line.strip().split(maxsplit=1)
        command = parts[0].lower()
        argument = parts[1].strip() if len(parts) > 1 else ""
        self.controller.record_event(EventType.COMMAND, {"command": line.strip()})

        handler = self._handlers.get(command)
        if handler is None:
            self.controller.notify(f"Unknown command {command}. Type /help to see commands.")
            return False
        logger.debug("Command %s", command)
        await handler(argument)
        return True

    async def _help(self, argument: str) -> None:
        for line in HELP_LINES:
            self.controller.notify(line)

    async def _preferences(self, argument: str) -> None:
        self.controller.wizard.start()

    async def _clear(self, argument: str) -> None:
        self.controller.clear()

    async def _restore(self, argument: str) -> None:
        self.controller.restore()

    async def _discard(self, argument: str) -> None:
        self.controller.discard()

    async def _back(self, argument: str) -> None:
        self.controller.back()

    async def _revise(self, argument: str) -> None:
        self.controller.revise()

    async def _edit(self, argument: str) -> None:
        if not argument:
            self.controller.notify("Usage: /edit <what to change>")
            return
        await self.controller.run_edit(argument)

    async def _stop(self, argument: str) -> None:
        self.controller.stop()

    async def _history(self, argument: str) -> None:
        items = await self.controller.history()
        if not items:
            self.controller.notify("No prompts in the last 30 days.")
            return
        for number, item in enumerate(items, start=1):
            stamp = item.created_at.strftime("%Y-%m-%d %H:%M")
            self.controller.notify(f"{number}. [{stamp}] {item.task[:80]}")

    async def _use(self, argument: str) -> None:
        if not argument.isdigit():
            self.controller.notify("Usage: /use <n>")
            return
        self.controller.use_history(int(argument))

    async def _mode(self, argument: str) -> None:
        self.controller.set_mode(argument.lower())

    async def _login(self, argument: str) -> None:
        auth = self.controller.auth
        if not hasattr(auth, "sign_in"):
            self.controller.notify("Sign-in is handled outside this terminal.")
            return
        parts = argument.split()
        if not parts:
            self.controller.notify("Usage: /login <user id> [email]")
            return
        user = auth.sign_in(parts[0], parts[1] if len(parts) > 1 else None)
        self.controller.notify(f"Signed in as {user.email or user.id}.")
        await self.controller.load_preferences()
        await self.controller.resume_after_sign_in()

    async def _logout(self, argument: str) -> None:
        auth = self.controller.auth
        if hasattr(auth, "sign_out"):
            auth.sign_out()
        self.controller.notify("Signed out.")
