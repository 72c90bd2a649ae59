"""Session context store: persisted, resumable conversation histories.

Each session is one JSON record, ``<root>/<session_id>.json``, holding the
ordered message sequence. The record is the only source of truth for
listing, loading and deleting. Saves go through a temporary file in the
same directory followed by ``os.replace()``, so a reader sees either the
previous record or the new one, never a partial write.
"""

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .report import InvalidSessionIdError, SessionForbiddenError, StoreError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_DIR = os.path.join(".kota", "sessions")
DEFAULT_MAX_MESSAGES = 100
RECORD_SUFFIX = ".json"
ROLES = ("user", "assistant")

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


def generate_session_id() -> str:
    """Return a fresh identifier derived from the current local time."""
    return datetime.now().strftime("session_%Y%m%d_%H%M%S")


def check_session_id(session_id: str) -> str:
    """Validate a session identifier and return it stripped.

    Identifiers become file names, so path separators, leading dots and
    empty strings are rejected.
    """
    if not isinstance(session_id, str):
        raise InvalidSessionIdError(f"session id must be a string, got {session_id!r}")
    session_id = session_id.strip()
    if not _SESSION_ID_RE.match(session_id):
        raise InvalidSessionIdError(
            f"invalid session id {session_id!r}: use letters, digits, '_', '-' or '.'"
        )
    return session_id


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Message:
    """One turn of a conversation: a role and an ordered tuple of content blocks.

    Blocks are ``{"type": "text", "text": ...}`` or, on assistant messages,
    ``{"type": "tool_call", "id": ..., "name": ..., "arguments": ...}``.
    """

    role: str
    content: tuple[dict, ...] = ()

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"unknown message role {self.role!r}")
        object.__setattr__(self, "content", tuple(dict(b) for b in self.content))

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls("user", ({"type": "text", "text": text},))

    @classmethod
    def assistant(cls, text: str, tool_calls: list[dict] | None = None) -> "Message":
        blocks = [{"type": "text", "text": text}]
        for tc in tool_calls or []:
            blocks.append(
                {
                    "type": "tool_call",
                    "id": tc.get("id"),
                    "name": tc["name"],
                    "arguments": tc.get("arguments", ""),
                }
            )
        return cls("assistant", tuple(blocks))

    @property
    def text(self) -> str:
        return "".join(b.get("text", "") for b in self.content if b.get("type") == "text")

    @property
    def tool_calls(self) -> list[dict]:
        return [b for b in self.content if b.get("type") == "tool_call"]

    def to_dict(self) -> dict:
        return {"role": self.role, "content": [dict(b) for b in self.content]}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """Rebuild a message from its record form.

        A plain string ``content`` is accepted as a single text block.
        """
        if not isinstance(data, dict):
            raise ValueError(f"message must be an object, got {type(data).__name__}")
        content = data.get("content", [])
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]
        if not isinstance(content, list) or not all(
            isinstance(b, dict) and "type" in b for b in content
        ):
            raise ValueError("message content must be a list of typed blocks")
        return cls(data.get("role"), tuple(content))


@dataclass
class Session:
    """A named conversation holding at most ``max_messages`` messages."""

    session_id: str
    max_messages: int = DEFAULT_MAX_MESSAGES
    messages: list[Message] = field(default_factory=list)

    def __post_init__(self):
        if self.max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self._evict()

    def __len__(self) -> int:
        return len(self.messages)

    def append(self, message: Message) -> int:
        """Append a message, evicting the oldest ones past the bound.

        Returns the number of evicted messages.
        """
        self.messages.append(message)
        return self._evict()

    def _evict(self) -> int:
        overflow = len(self.messages) - self.max_messages
        if overflow <= 0:
            return 0
        del self.messages[:overflow]
        return overflow


@dataclass(frozen=True)
class SessionMetadata:
    session_id: str
    message_count: int
    last_updated: datetime


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SessionContext:
    """Owns the durable session records under ``root`` and the active Session.

    The active session is only written when ``save()`` is called;
    ``switch()`` never touches storage.
    """

    def __init__(
        self,
        root: str | Path,
        session_id: str,
        *,
        max_messages: int = DEFAULT_MAX_MESSAGES,
    ):
        self.root = Path(root)
        self.max_messages = max_messages
        self.session = Session(check_session_id(session_id), max_messages)

    @classmethod
    def create_or_load(
        cls,
        root: str | Path,
        session_id: str,
        *,
        max_messages: int = DEFAULT_MAX_MESSAGES,
    ) -> "SessionContext":
        """Open ``session_id`` under ``root``, empty when no record exists yet."""
        context = cls(root, session_id, max_messages=max_messages)
        context.load()
        return context

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def messages(self) -> list[Message]:
        return list(self.session.messages)

    def record_path(self, session_id: str) -> Path:
        return self.root / f"{check_session_id(session_id)}{RECORD_SUFFIX}"

    def add_message(self, message: Message) -> None:
        evicted = self.session.append(message)
        if evicted:
            logger.debug(
                "session %s: evicted %d oldest message(s), cap %d",
                self.session_id,
                evicted,
                self.max_messages,
            )

    def switch(self, session_id: str) -> None:
        """Make ``session_id`` active with an empty message sequence."""
        self.session = Session(check_session_id(session_id), self.max_messages)
        logger.debug("switched to session %s", self.session_id)

    def save(self) -> None:
        """Persist the active session, replacing any previous record."""
        session_id = self.session_id
        path = self.record_path(session_id)
        record = {
            "session_id": session_id,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "messages": [m.to_dict() for m in self.session.messages],
        }
        data = json.dumps(record, ensure_ascii=False, indent=2)

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{session_id}.", suffix=".tmp", dir=self.root
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreError(f"failed to save session {session_id!r}: {e}") from e

        logger.debug("saved session %s (%d messages)", session_id, len(self.session))

    def load(self) -> bool:
        """Load the active session's record.

        Returns False (leaving the session empty) when no record exists.
        On StoreError the in-memory session is left as it was.
        """
        session_id = self.session_id
        record = self._read_record(self.record_path(session_id))
        if record is None:
            self.session = Session(session_id, self.max_messages)
            return False
        try:
            messages = [Message.from_dict(m) for m in record.get("messages", [])]
        except (ValueError, TypeError) as e:
            raise StoreError(f"corrupt record for session {session_id!r}: {e}") from e
        self.session = Session(session_id, self.max_messages, messages)
        logger.debug("loaded session %s (%d messages)", session_id, len(messages))
        return True

    def list_sessions(self) -> list[SessionMetadata]:
        """Describe every persisted session, ordered by identifier."""
        if not self.root.is_dir():
            return []
        try:
            paths = sorted(self.root.glob(f"*{RECORD_SUFFIX}"))
        except OSError as e:
            raise StoreError(f"failed to list sessions in {self.root}: {e}") from e

        result: list[SessionMetadata] = []
        for path in paths:
            session_id = path.name[: -len(RECORD_SUFFIX)]
            try:
                record = self._read_record(path)
            except StoreError as e:
                logger.warning("skipping unreadable session record %s: %s", path, e)
                continue
            if record is None:
                continue
            messages = record.get("messages", [])
            result.append(
                SessionMetadata(
                    session_id=session_id,
                    message_count=len(messages) if isinstance(messages, list) else 0,
                    last_updated=_record_timestamp(record, path),
                )
            )
        return result

    def delete(self, session_id: str) -> bool:
        """Remove a persisted session.

        Returns False if no record existed. Deleting the active session
        raises SessionForbiddenError and leaves the record in place.
        """
        session_id = check_session_id(session_id)
        if session_id == self.session_id:
            raise SessionForbiddenError(
                f"cannot delete the active session {session_id!r}"
            )
        path = self.record_path(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreError(f"failed to delete session {session_id!r}: {e}") from e
        logger.debug("deleted session %s", session_id)
        return True

    @staticmethod
    def _read_record(path: Path) -> dict | None:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"failed to read {path}: {e}") from e
        try:
            record = json.loads(text)
        except json.JSONDecodeError as e:
            raise StoreError(f"invalid JSON in {path}: {e}") from e
        if not isinstance(record, dict):
            raise StoreError(f"invalid record in {path}: expected an object")
        return record


def _record_timestamp(record: dict, path: Path) -> datetime:
    """Last-updated time from the record, falling back to the file mtime."""
    stamp = record.get("updated_at")
    if isinstance(stamp, str):
        try:
            return datetime.fromisoformat(stamp)
        except ValueError:
            pass
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
