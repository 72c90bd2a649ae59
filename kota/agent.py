"""Streaming invocation loop: one exchange with a bounded tool-call cycle."""

import json
import logging
import time
from dataclasses import dataclass, field

from .context import Message
from .hooks import CancelSignal, StreamingHook
from .provider import (
    FinishReason,
    ProviderConfig,
    TextDelta,
    ToolCallDelta,
    UsageReport,
    count_tokens,
    estimate_tokens,
    iter_stream_events,
    open_stream,
)
from .report import TurnLimitExceeded, Usage
from .tools import Tool, ToolError, dispatch, tool_definitions

logger = logging.getLogger(__name__)

MAX_TURNS = 20

DEFAULT_SYSTEM_PROMPT = (
    "You are kota, a coding assistant working in the user's project directory. "
    "Use the available tools to search, read, edit and run code when that helps "
    "answer. Keep answers concise and explain what you changed."
)


@dataclass
class ToolCall:
    """One tool request from the model, scoped to a single turn."""

    name: str
    arguments: str
    id: str | None = None
    result: str | None = None


@dataclass
class StreamedResponse:
    """What a single provider stream produced."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    usage: Usage = field(default_factory=Usage)


@dataclass
class Response:
    """Final answer of an exchange."""

    text: str
    usage: Usage
    turns: int
    # every tool call made on the way, as {"id", "name", "arguments"}
    tool_calls: list[dict] = field(default_factory=list)


def to_provider_messages(history: list[Message]) -> list[dict]:
    """Convert session messages to chat-completion messages (text only)."""
    return [{"role": m.role, "content": m.text} for m in history]


class Agent:
    """Runs exchanges against one configured provider with a fixed tool set."""

    def __init__(
        self,
        provider: ProviderConfig,
        tools: dict[str, Tool],
        *,
        system_prompt: str | None = DEFAULT_SYSTEM_PROMPT,
        max_turns: int = MAX_TURNS,
    ):
        self.provider = provider
        self.tools = tools
        self.system_prompt = system_prompt
        self.max_turns = max_turns
        self._tool_specs = tool_definitions(tools)

    def stream_turn(
        self,
        prompt: str,
        history: list[Message] | None = None,
        hook: StreamingHook | None = None,
        cancel: CancelSignal | None = None,
    ) -> Response:
        """Answer ``prompt`` given prior ``history``, running tools as requested.

        Raises TurnLimitExceeded when the model is still requesting tools
        after ``max_turns`` provider calls, ExchangeCancelled when the
        cancel signal is set, and InvocationError for provider failures.
        Tool failures are fed back to the model as results instead.
        """
        hook = hook or StreamingHook()
        cancel = cancel or CancelSignal()

        messages: list[dict] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(to_provider_messages(history or []))
        messages.append({"role": "user", "content": prompt})

        usage = Usage()
        calls_made: list[dict] = []
        turns = 0
        while turns < self.max_turns:
            turns += 1
            cancel.raise_if_cancelled()
            logger.debug("turn %d/%d (%d messages)", turns, self.max_turns, len(messages))

            # newest message (the user prompt, later the last tool result) and
            # everything submitted before it
            hook.on_completion_call(
                messages[-1]["content"], list(messages[:-1]), cancel
            )
            cancel.raise_if_cancelled()

            streamed = self._stream_once(messages, hook, cancel)
            usage = usage + streamed.usage
            hook.on_stream_finish(prompt, streamed, usage, cancel)
            cancel.raise_if_cancelled()

            if not streamed.tool_calls:
                return Response(
                    text=streamed.text, usage=usage, turns=turns, tool_calls=calls_made
                )

            messages.append(self._assistant_tool_message(streamed, turns))
            for i, call in enumerate(streamed.tool_calls):
                hook.on_tool_call(call.name, call.id, call.arguments, cancel)
                cancel.raise_if_cancelled()

                call.result = self._run_tool(call)
                call_id = call.id or _fallback_call_id(turns, i)
                calls_made.append(
                    {
                        "id": call_id,
                        "name": call.name,
                        "arguments": call.arguments,
                    }
                )

                hook.on_tool_result(call.name, call.id, call.arguments, call.result, cancel)
                cancel.raise_if_cancelled()

                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call_id,
                        "content": call.result,
                    }
                )

        logger.debug("turn limit reached after %d turns", turns)
        raise TurnLimitExceeded(turns)

    def _stream_once(
        self, messages: list[dict], hook: StreamingHook, cancel: CancelSignal
    ) -> StreamedResponse:
        """Consume one provider stream, notifying the hook per fragment."""
        response = StreamedResponse()
        pending: dict[int, ToolCall] = {}
        reported_usage: Usage | None = None

        t0 = time.monotonic()
        chunks = open_stream(self.provider, messages, self._tool_specs)
        try:
            for event in iter_stream_events(chunks):
                cancel.raise_if_cancelled()
                if isinstance(event, TextDelta):
                    response.text += event.text
                    hook.on_text_delta(event.text, response.text, cancel)
                elif isinstance(event, ToolCallDelta):
                    call = pending.setdefault(event.index, ToolCall(name="", arguments=""))
                    if event.id:
                        call.id = event.id
                    if event.name:
                        call.name = event.name
                    call.arguments += event.arguments
                    hook.on_tool_call_delta(call.id or "", call.name or None, event.arguments, cancel)
                elif isinstance(event, FinishReason):
                    response.finish_reason = event.reason
                elif isinstance(event, UsageReport):
                    reported_usage = event.usage
        finally:
            close = getattr(chunks, "close", None)
            if callable(close):
                close()

        response.tool_calls = [pending[i] for i in sorted(pending)]
        if reported_usage is not None:
            response.usage = reported_usage
        else:
            generated = response.text + "".join(c.arguments for c in response.tool_calls)
            response.usage = Usage(
                prompt_tokens=estimate_tokens(messages, self._tool_specs),
                completion_tokens=count_tokens(generated),
            )
        logger.debug(
            "stream finished in %.1fs: finish_reason=%s tool_calls=%d",
            time.monotonic() - t0,
            response.finish_reason,
            len(response.tool_calls),
        )
        return response

    @staticmethod
    def _assistant_tool_message(streamed: StreamedResponse, turn: int) -> dict:
        return {
            "role": "assistant",
            "content": streamed.text or None,
            "tool_calls": [
                {
                    "id": call.id or _fallback_call_id(turn, i),
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments or "{}"},
                }
                for i, call in enumerate(streamed.tool_calls)
            ],
        }

    def _run_tool(self, call: ToolCall) -> str:
        """Execute one tool call; every failure becomes an ``error:`` result."""
        try:
            args = json.loads(call.arguments) if call.arguments.strip() else {}
        except json.JSONDecodeError as e:
            return f"error: invalid JSON in tool arguments: {e}"

        try:
            return dispatch(call.name, args, self.tools)
        except ToolError as e:
            return f"error: {e}"
        except Exception as e:
            logger.debug("tool %s raised", call.name, exc_info=True)
            return f"error: {e}"


def _fallback_call_id(turn: int, index: int) -> str:
    return f"call_{turn}_{index}"
