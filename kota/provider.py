"""Provider selection and streaming completion calls through LiteLLM.

The set of backends is closed: ``Provider`` enumerates them and each
member carries its routing details. A ``ProviderConfig`` is resolved once
at startup; the agent loop only ever calls ``open_stream()`` with it.
"""

import functools
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum

import tiktoken

from .report import ConfigError, InvocationError, Usage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSpec:
    prefix: str
    default_model: str
    key_env: str | None
    default_base: str | None = None
    needs_key: bool = True


class Provider(Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    COHERE = "cohere"
    DEEPSEEK = "deepseek"
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"

    @property
    def spec(self) -> ProviderSpec:
        return _SPECS[self]


_SPECS = {
    Provider.OPENAI: ProviderSpec("openai", "gpt-4o", "OPENAI_API_KEY"),
    Provider.ANTHROPIC: ProviderSpec(
        "anthropic", "claude-3-5-sonnet-latest", "ANTHROPIC_API_KEY"
    ),
    Provider.COHERE: ProviderSpec("cohere_chat", "command-r-plus", "COHERE_API_KEY"),
    Provider.DEEPSEEK: ProviderSpec("deepseek", "deepseek-chat", "DEEPSEEK_API_KEY"),
    Provider.OLLAMA: ProviderSpec(
        "ollama_chat", "llama3.1", None, "http://localhost:11434", needs_key=False
    ),
    Provider.LMSTUDIO: ProviderSpec(
        "openai", "local-model", None, "http://127.0.0.1:1234", needs_key=False
    ),
}

PROVIDER_NAMES = [p.value for p in Provider]


@dataclass(frozen=True)
class ProviderConfig:
    provider: Provider
    model: str
    api_key: str | None = None
    api_base: str | None = None

    @property
    def model_string(self) -> str:
        prefix = self.provider.spec.prefix
        bare = self.model.removeprefix(f"{prefix}/")
        return f"{prefix}/{bare}"

    def masked_key(self) -> str:
        if not self.api_key:
            return "(not set)"
        return "*" * min(len(self.api_key), 8)

    def completion_kwargs(self) -> dict:
        kwargs: dict = {"model": self.model_string}
        if self.provider is Provider.LMSTUDIO:
            kwargs["api_base"] = f"{self.api_base.rstrip('/')}/v1"
            kwargs["api_key"] = "lm-studio"
            return kwargs
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs


def resolve_provider_config(
    provider: str,
    model: str | None = None,
    api_key: str | None = None,
    base_url: str | None = None,
) -> ProviderConfig:
    """Validate provider settings and fill provider defaults.

    Raises ConfigError for an unknown provider or a missing API key.
    """
    try:
        member = Provider(provider)
    except ValueError:
        raise ConfigError(
            f"unknown provider {provider!r} (choose from {', '.join(PROVIDER_NAMES)})"
        )
    spec = member.spec

    if not api_key and spec.key_env:
        api_key = os.environ.get(spec.key_env)
    if spec.needs_key and not api_key:
        env_hint = f" or {spec.key_env}" if spec.key_env else ""
        raise ConfigError(
            f"an API key is required for provider {member.value!r} "
            f"(--api-key, api_key in config, API_KEY{env_hint})"
        )

    return ProviderConfig(
        provider=member,
        model=model or spec.default_model,
        api_key=api_key,
        api_base=base_url or spec.default_base,
    )


# ---------------------------------------------------------------------------
# Stream normalization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    index: int
    id: str | None
    name: str | None
    arguments: str


@dataclass(frozen=True)
class FinishReason:
    reason: str


@dataclass(frozen=True)
class UsageReport:
    usage: Usage


def open_stream(config: ProviderConfig, messages: list, tools: list | None):
    """Start a streaming chat completion. Returns an iterable of chunks."""
    import litellm

    litellm.suppress_debug_info = True

    kwargs = dict(
        messages=messages,
        stream=True,
        stream_options={"include_usage": True},
        **config.completion_kwargs(),
    )
    if tools:
        kwargs["tools"] = tools
        kwargs["tool_choice"] = "auto"

    logger.debug("opening stream: model=%s messages=%d", kwargs["model"], len(messages))
    try:
        return litellm.completion(**kwargs)
    except Exception as e:
        raise InvocationError(f"LLM call failed: {e}") from e


def _chunk_events(chunk):
    choices = getattr(chunk, "choices", None) or []
    if choices:
        choice = choices[0]
        delta = getattr(choice, "delta", None)
        if delta is not None:
            content = getattr(delta, "content", None)
            if content:
                yield TextDelta(content)
            for tc in getattr(delta, "tool_calls", None) or []:
                fn = getattr(tc, "function", None)
                yield ToolCallDelta(
                    index=getattr(tc, "index", None) or 0,
                    id=getattr(tc, "id", None),
                    name=getattr(fn, "name", None) if fn is not None else None,
                    arguments=(getattr(fn, "arguments", None) or "")
                    if fn is not None
                    else "",
                )
        reason = getattr(choice, "finish_reason", None)
        if reason:
            yield FinishReason(reason)

    usage = getattr(chunk, "usage", None)
    if usage is not None:
        yield UsageReport(
            Usage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            )
        )


def iter_stream_events(chunks):
    """Normalize provider chunks into delta events.

    Failures raised while pulling chunks become InvocationError.
    """
    iterator = iter(chunks)
    while True:
        try:
            chunk = next(iterator)
        except StopIteration:
            return
        except Exception as e:
            raise InvocationError(f"stream failed: {e}") from e
        yield from _chunk_events(chunk)


# ---------------------------------------------------------------------------
# Token estimation (used when the provider reports no usage)
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=1)
def _encoder():
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    return len(_encoder().encode(text or ""))


def estimate_tokens(messages: list, tools: list | None = None) -> int:
    """Count tokens across provider messages using tiktoken."""
    total = 0
    for m in messages:
        content = m.get("content", "") or ""
        for tc in m.get("tool_calls", None) or []:
            fn = tc.get("function", {})
            content += fn.get("name", "") + (fn.get("arguments", "") or "")
        total += count_tokens(content)
    if tools:
        total += count_tokens(json.dumps(tools))
    # Per-message overhead (role, separators), about 4 tokens each
    total += 4 * len(messages)
    return total
