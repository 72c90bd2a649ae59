"""ANSI-formatted stderr output using Rich.

Streamed assistant text goes to stdout (see ``stream_text``); everything
else in this module is a complete line on the stderr console.
"""

import sys

from rich.console import Console
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


def _print(text: Text) -> None:
    _console.print(text, soft_wrap=True)


# -- Streamed text -----------------------------------------------------------


def stream_text(fragment: str) -> None:
    sys.stdout.write(fragment)
    sys.stdout.flush()


def end_stream_line() -> None:
    sys.stdout.write("\n")
    sys.stdout.flush()


def assistant_header() -> None:
    _print(Text("Thinking...", style="yellow"))
    _print(Text("kota:", style="green"))


def tokens_used(total: int) -> None:
    _print(Text(f"Total tokens used: {total}", style="bright_blue"))


# -- Tool calls --------------------------------------------------------------


def tool_line(name: str, display_arg: str) -> None:
    line = Text()
    line.append("● ", style="bright_green")
    line.append(f"{name}({display_arg})")
    _print(line)


def tool_result_line(summary: str) -> None:
    line = Text("  └─ ")
    line.append(summary, style="dim")
    _print(line)


def tool_call(name: str, args_json: str) -> None:
    header = Text()
    header.append("  ▶ ", style="bold magenta")
    header.append(name, style="bold magenta")
    _print(header)
    if args_json:
        for line in args_json.splitlines():
            _print(Text(f"    {line}", style="dim"))


def tool_result(name: str, preview: str) -> None:
    _print(Text(f"  ✓ {name}", style="green"))
    if preview:
        for line in preview.splitlines():
            _print(Text(f"    {line}", style="dim"))


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _print(header)


def tool_call_fragment(call_id: str, name: str | None, fragment: str) -> None:
    label = name or "?"
    _print(Text(f"    [{label} {call_id}] {fragment}", style="dim"))


def completion_call(prompt: str, history_len: int) -> None:
    preview = prompt if len(prompt) <= 60 else prompt[:60] + "..."
    _print(Text(f"  → submitting {preview!r} with {history_len} prior messages", style="dim"))


def stream_finish(finish_reason: str | None, total_tokens: int) -> None:
    style = "green" if finish_reason in ("stop", "tool_calls") else "yellow"
    _print(
        Text(
            f"  stream finished: finish_reason={finish_reason}, "
            f"~{total_tokens} tokens so far",
            style=style,
        )
    )


def session_log(session_id: str, msg: str) -> None:
    line = Text()
    line.append(f"[Session {session_id}] ", style="bright_cyan")
    line.append(msg)
    _print(line)


# -- REPL commands -----------------------------------------------------------


def config(provider: str, model: str, api_base: str | None, masked_key: str) -> None:
    _print(Text("Current Configuration:", style="bright_cyan"))
    _print(Text(f"  Provider: {provider}"))
    _print(Text(f"  API Base: {api_base or '(provider default)'}"))
    _print(Text(f"  Model:    {model}"))
    _print(Text(f"  API Key:  {masked_key}"))


def help_table(commands: list[tuple[str, str]]) -> None:
    _print(Text("Available Commands:", style="bright_cyan"))
    width = max(len(name) for name, _ in commands)
    for name, description in commands:
        line = Text("  ")
        line.append(name.ljust(width), style="bright_green")
        line.append(f"  {description}")
        _print(line)
    _print(Text("You can also type any message to chat with the AI.", style="dim"))


def history(session_id: str, entries: list[tuple[str, str]]) -> None:
    """Print numbered (role, content) entries; content is pre-truncated."""
    if not entries:
        _print(Text("No conversation history in current session", style="bright_blue"))
        _print(Text(f"  Current session: {session_id}"))
        return
    _print(Text(f"Conversation History (Session: {session_id})", style="bright_blue"))
    for i, (role, content) in enumerate(entries, start=1):
        label = {"user": "User", "assistant": "Assistant"}.get(role, "Unknown")
        style = "bright_cyan" if role == "user" else "bright_green"
        header = Text(f"{i}. ")
        header.append(label, style=style)
        _print(header)
        for line in content.splitlines() or [""]:
            _print(Text(f"   {line}"))
    _print(Text(f"Total messages: {len(entries)}", style="bright_blue"))


def sessions(entries: list[tuple[str, int, str]], current_id: str) -> None:
    """Print (session_id, message_count, last_updated) rows."""
    if not entries:
        _print(Text("No saved sessions found", style="bright_blue"))
        return
    _print(Text("Available Sessions:", style="bright_blue"))
    for i, (session_id, count, updated) in enumerate(entries, start=1):
        line = Text(f"{i}. ")
        line.append(session_id, style="bright_cyan")
        line.append(f" - {count} messages")
        if session_id == current_id:
            line.append(" (current)", style="bright_green")
        _print(line)
        _print(Text(f"   Last updated: {updated}", style="dim"))
    _print(Text("Use '/load <session_id>' to load a session", style="dim"))


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _print(Text(f"  {msg}", style="dim"))


def success(msg: str) -> None:
    line = Text()
    line.append("✓ ", style="bold green")
    line.append(msg, style="green")
    _print(line)


def hint(msg: str) -> None:
    _print(Text(f"  {msg}", style="bright_blue"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _print(line)


def repl_banner(session_id: str) -> None:
    _print(
        Text(
            f"Interactive mode (session {session_id}). "
            "Type /help for commands, /exit or Ctrl-D to quit.",
            style="dim",
        )
    )
