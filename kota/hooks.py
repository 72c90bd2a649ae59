"""Streaming observation hooks.

A hook is a passive listener attached to one exchange. The agent loop
calls it synchronously at fixed points while the response streams in;
return values are ignored and the loop's decisions never depend on it.
Hooks run inline with token delivery, so they must return quickly.

Every notification receives the exchange's ``CancelSignal``. A hook may
call ``cancel()`` on it; the loop checks the signal after each
notification and aborts the exchange.
"""

import json
import logging
import threading

from . import fmt
from .report import ExchangeCancelled

logger = logging.getLogger(__name__)

MAX_RESULT_PREVIEW = 100
MAX_VERBOSE_PREVIEW = 500
MAX_ARG_LOG = 1000

# Argument keys shown in the condensed tool-call line, in priority order.
SALIENT_ARGS = ("path", "root_path", "query", "pattern", "command")


class CancelSignal:
    """Thread-safe flag shared by the loop and its hook for one exchange."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExchangeCancelled("exchange cancelled")


class StreamingHook:
    """No-op listener. Subclasses override the points they care about."""

    def on_tool_call(self, tool_name, tool_call_id, args, cancel_sig):
        """Before a tool runs; ``args`` is the raw JSON argument string."""

    def on_tool_result(self, tool_name, tool_call_id, args, result, cancel_sig):
        """After a tool returns its (string) result."""

    def on_completion_call(self, prompt, history, cancel_sig):
        """Before a request is submitted to the provider.

        ``prompt`` is the newest message content: the user prompt on the
        first turn, the last tool result after that. ``history`` is every
        message submitted ahead of it.
        """

    def on_text_delta(self, text_delta, aggregated_text, cancel_sig):
        """For each streamed text fragment, with the text aggregated so far."""

    def on_tool_call_delta(self, tool_call_id, tool_name, tool_call_delta, cancel_sig):
        """For each streamed tool-call fragment; ``tool_name`` may be None."""

    def on_stream_finish(self, prompt, response, usage, cancel_sig):
        """After the last chunk of a provider stream, with aggregate usage."""

    def finish_line(self) -> None:
        """Terminate any partially written output line."""


def salient_argument(args: str) -> str:
    """Pick one representative argument for a condensed tool-call line."""
    try:
        parsed = json.loads(args)
    except (json.JSONDecodeError, TypeError):
        return args
    if isinstance(parsed, dict):
        for key in SALIENT_ARGS:
            value = parsed.get(key)
            if isinstance(value, str):
                return value
    return args


def summarize_result(tool_name: str, result: str) -> str:
    """Condense a tool result to a single display line."""
    if tool_name == "read_file":
        lines = result.splitlines()
        first = lines[0] if lines else ""
        if len(first) > 50:
            first = first[:50] + "..."
        return f"{first} ... +{len(lines)} lines"
    if tool_name == "grep_search":
        try:
            message = json.loads(result).get("message")
        except (json.JSONDecodeError, AttributeError):
            message = None
        if message:
            return message
    flat = " ".join(result.split())
    if len(flat) > MAX_RESULT_PREVIEW:
        flat = flat[:MAX_RESULT_PREVIEW] + "..."
    return flat


class SessionHook(StreamingHook):
    """Compact display: streamed text, one line per tool call and result.

    With ``audit`` enabled, every notification is also echoed as a
    ``[Session <id>]`` line.
    """

    def __init__(self, session_id: str, *, audit: bool = False):
        self.session_id = session_id
        self.audit = audit
        self._mid_line = False

    def log(self, message: str) -> None:
        logger.debug("[session %s] %s", self.session_id, message)
        if self.audit:
            self.finish_line()
            fmt.session_log(self.session_id, message)

    def finish_line(self) -> None:
        if self._mid_line:
            fmt.end_stream_line()
            self._mid_line = False

    def on_text_delta(self, text_delta, aggregated_text, cancel_sig):
        if text_delta:
            fmt.stream_text(text_delta)
            self._mid_line = not text_delta.endswith("\n")

    def on_tool_call(self, tool_name, tool_call_id, args, cancel_sig):
        self.finish_line()
        fmt.tool_line(tool_name, salient_argument(args))
        self.log(f"tool call {tool_name} id={tool_call_id}")

    def on_tool_result(self, tool_name, tool_call_id, args, result, cancel_sig):
        fmt.tool_result_line(summarize_result(tool_name, result))
        self.log(f"tool result {tool_name} id={tool_call_id} ({len(result)} chars)")

    def on_completion_call(self, prompt, history, cancel_sig):
        self.log(f"completion call with {len(history)} prior messages")

    def on_tool_call_delta(self, tool_call_id, tool_name, tool_call_delta, cancel_sig):
        pass

    def on_stream_finish(self, prompt, response, usage, cancel_sig):
        self.log(
            f"stream finished ({response.finish_reason}), "
            f"{usage.total_tokens} tokens so far"
        )


class VerboseHook(SessionHook):
    """Detailed display: every notification point produces output."""

    def on_tool_call(self, tool_name, tool_call_id, args, cancel_sig):
        self.finish_line()
        try:
            pretty = json.dumps(json.loads(args), indent=2)
        except (json.JSONDecodeError, TypeError):
            pretty = args
        if len(pretty) > MAX_ARG_LOG:
            pretty = pretty[:MAX_ARG_LOG] + "\n... (truncated)"
        fmt.tool_call(tool_name, pretty)
        self.log(f"tool call {tool_name} id={tool_call_id}")

    def on_tool_result(self, tool_name, tool_call_id, args, result, cancel_sig):
        if result.startswith("error:"):
            fmt.tool_error(tool_name, result)
        else:
            preview = result
            if len(preview) > MAX_VERBOSE_PREVIEW:
                preview = preview[:MAX_VERBOSE_PREVIEW] + "..."
            fmt.tool_result(tool_name, preview)
        self.log(f"tool result {tool_name} id={tool_call_id} ({len(result)} chars)")

    def on_completion_call(self, prompt, history, cancel_sig):
        self.finish_line()
        fmt.completion_call(prompt, len(history))
        self.log(f"completion call with {len(history)} prior messages")

    def on_tool_call_delta(self, tool_call_id, tool_name, tool_call_delta, cancel_sig):
        if tool_call_delta:
            self.finish_line()
            fmt.tool_call_fragment(tool_call_id, tool_name, tool_call_delta)

    def on_stream_finish(self, prompt, response, usage, cancel_sig):
        self.finish_line()
        fmt.stream_finish(response.finish_reason, usage.total_tokens)
        self.log(f"stream finished ({response.finish_reason})")
