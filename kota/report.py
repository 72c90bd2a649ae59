"""Error types and token-usage accounting shared across kota."""

from dataclasses import dataclass


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (unknown provider, bad API key, etc.)."""


class StoreError(AgentError):
    """Raised when the session store cannot read or write durable state."""


class InvalidSessionIdError(StoreError):
    """Raised for a session identifier that cannot map to a storage record."""


class SessionForbiddenError(AgentError):
    """Raised when deleting the session that is currently active."""


class InvocationError(AgentError):
    """Raised when an exchange with the provider fails."""


class TurnLimitExceeded(InvocationError):
    """Raised when the tool cycle does not converge within the turn cap."""

    def __init__(self, turns: int):
        super().__init__(f"turn limit exceeded after {turns} turns")
        self.turns = turns


class ExchangeCancelled(InvocationError):
    """Raised when an in-flight exchange is cancelled."""


@dataclass
class Usage:
    """Token accounting for one provider stream or a whole exchange."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )

    def as_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }
