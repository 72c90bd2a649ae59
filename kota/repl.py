"""Interactive command dispatcher.

Reads one line at a time: slash commands act on the session store,
anything else is sent to the agent as a conversational turn.
"""

import logging
from pathlib import Path

from . import fmt
from .agent import Agent
from .context import Message, SessionContext, check_session_id
from .hooks import CancelSignal, SessionHook, StreamingHook, VerboseHook
from .report import (
    AgentError,
    ExchangeCancelled,
    InvalidSessionIdError,
    InvocationError,
    SessionForbiddenError,
    StoreError,
    TurnLimitExceeded,
)

logger = logging.getLogger(__name__)

MAX_HISTORY_DISPLAY = 200

COMMANDS = [
    ("/quit, /exit", "Exit the application"),
    ("/config", "Show current model configuration"),
    ("/history", "Show conversation history"),
    ("/load [session_id]", "List all sessions or load a specific session"),
    ("/delete <session_id>", "Delete a specific session"),
    ("/help", "Show this help message"),
]


def _truncate(text: str, limit: int = MAX_HISTORY_DISPLAY) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _command_argument(line: str, command: str) -> str | None:
    """Return the argument of ``command`` in line, or None if it is another command."""
    if line == command:
        return ""
    if line.startswith(command + " "):
        return line[len(command) + 1 :].strip()
    return None


class Repl:
    """Owns the active session and the agent for the life of the process."""

    def __init__(
        self,
        agent: Agent,
        context: SessionContext,
        *,
        verbose: bool = False,
        debug: bool = False,
        history_path: str | Path | None = None,
    ):
        self.agent = agent
        self.context = context
        self.verbose = verbose
        self.debug = debug
        self.history_path = history_path

    # -- main loop -----------------------------------------------------------

    def run(self, read_line=None) -> None:
        """Run until /quit, /exit or end of input.

        ``read_line`` returns the next input line and raises EOFError at the
        end; by default a prompt_toolkit session is used.
        """
        if read_line is None:
            read_line = self._make_prompt()

        fmt.repl_banner(self.context.session_id)
        while True:
            try:
                line = read_line()
            except (EOFError, KeyboardInterrupt):
                break
            line = line.strip()
            if not line:
                continue
            if not self.handle_command(line):
                break

    def _make_prompt(self):
        from prompt_toolkit import PromptSession
        from prompt_toolkit.formatted_text import FormattedText
        from prompt_toolkit.history import FileHistory, InMemoryHistory

        history = InMemoryHistory()
        if self.history_path is not None:
            path = Path(self.history_path)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                history = FileHistory(str(path))
            except OSError as e:
                fmt.warning(f"input history disabled: {e}")

        session = PromptSession(history=history, enable_history_search=True)
        prompt_text = FormattedText([("bold fg:ansigreen", "kota> ")])
        return lambda: session.prompt(prompt_text)

    # -- dispatch ------------------------------------------------------------

    def handle_command(self, line: str) -> bool:
        """Process one input line. Returns False when the loop should stop."""
        try:
            return self._dispatch(line)
        except AgentError as e:
            fmt.error(str(e))
            return True

    def _dispatch(self, line: str) -> bool:
        if line in ("/quit", "/exit"):
            return False
        if line == "/config":
            self.show_config()
        elif line == "/help":
            fmt.help_table(COMMANDS)
        elif line == "/history":
            self.show_history()
        elif (arg := _command_argument(line, "/load")) is not None:
            if arg:
                self.load_session(arg)
            else:
                self.list_sessions()
        elif (arg := _command_argument(line, "/delete")) is not None:
            if arg:
                self.delete_session(arg)
            else:
                fmt.error("Usage: /delete <session_id>")
        elif line.startswith("/"):
            fmt.error(f"Unknown command: {line}")
            fmt.hint("Type /help for available commands")
        else:
            self.chat(line)
        return True

    # -- commands ------------------------------------------------------------

    def show_config(self) -> None:
        provider = self.agent.provider
        fmt.config(
            provider.provider.value,
            provider.model,
            provider.api_base,
            provider.masked_key(),
        )

    def show_history(self) -> None:
        entries = [(m.role, _truncate(m.text)) for m in self.context.messages]
        fmt.history(self.context.session_id, entries)

    def list_sessions(self) -> None:
        try:
            sessions = self.context.list_sessions()
        except StoreError as e:
            fmt.error(f"Failed to list sessions: {e}")
            return
        rows = [
            (
                s.session_id,
                s.message_count,
                s.last_updated.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            )
            for s in sessions
        ]
        fmt.sessions(rows, self.context.session_id)

    def load_session(self, session_id: str) -> None:
        try:
            session_id = check_session_id(session_id)
        except InvalidSessionIdError as e:
            fmt.error(str(e))
            return

        try:
            self.context.save()
        except StoreError as e:
            fmt.warning(f"Failed to save current session: {e}")

        previous = self.context.session
        self.context.switch(session_id)
        try:
            found = self.context.load()
        except StoreError as e:
            # an unreadable record must not become the active session, or the
            # next save would overwrite it
            self.context.session = previous
            fmt.error(f"Failed to load session '{session_id}': {e}")
            fmt.info(f"Still in session: {self.context.session_id}")
            return

        if found:
            fmt.success(f"Successfully loaded session: {session_id}")
            fmt.info(f"Messages loaded: {len(self.context.session)}")
        else:
            fmt.info(f"Session '{session_id}' not found, created new session")

    def delete_session(self, session_id: str) -> None:
        try:
            deleted = self.context.delete(session_id)
        except SessionForbiddenError:
            fmt.error("Cannot delete current active session")
            fmt.hint("Switch to another session first using '/load <session_id>'")
            return
        except StoreError as e:
            fmt.error(f"Failed to delete session '{session_id}': {e}")
            return

        if deleted:
            fmt.success(f"Successfully deleted session: {session_id}")
        else:
            fmt.error(f"Session '{session_id}' not found")

    # -- conversation --------------------------------------------------------

    def make_hook(self) -> StreamingHook:
        cls = VerboseHook if self.verbose else SessionHook
        return cls(self.context.session_id, audit=self.debug)

    def chat(self, line: str) -> None:
        """Run one exchange; only a successful one appends a reply and saves."""
        history = self.context.messages
        self.context.add_message(Message.user(line))

        fmt.assistant_header()
        hook = self.make_hook()
        cancel = CancelSignal()
        try:
            response = self.agent.stream_turn(line, history, hook, cancel)
        except KeyboardInterrupt:
            cancel.cancel()
            hook.finish_line()
            fmt.warning("interrupted, exchange cancelled.")
            return
        except ExchangeCancelled:
            hook.finish_line()
            fmt.warning("exchange cancelled.")
            return
        except TurnLimitExceeded as e:
            hook.finish_line()
            fmt.warning(f"{e}; the model did not produce a final answer.")
            return
        except InvocationError as e:
            logger.debug("exchange failed in session %s", self.context.session_id, exc_info=True)
            hook.finish_line()
            fmt.error(f"Failed to get AI response: {e}")
            fmt.hint("Please check your API key and network connection")
            return

        hook.finish_line()
        self.context.add_message(Message.assistant(response.text, response.tool_calls))
        try:
            self.context.save()
        except StoreError as e:
            fmt.warning(f"Failed to save context: {e}")
        fmt.tokens_used(response.usage.total_tokens)
