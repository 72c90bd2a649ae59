"""Tool interface, built-in tools and dispatch for the agent loop.

Every tool is a ``Tool`` subclass exposing a ``name``, a ``definition()`` in
OpenAI function-calling format (consumed by the model to decide when and
how to call it) and ``call(args)``. ``call`` raises ``ToolError`` for
failures the model should see; recoverable problems are also reported as
result strings starting with ``error:``.
"""

import json
import logging
import os
import signal
import subprocess
import sys
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_OUTPUT_BYTES = 50 * 1024  # 50 KB
MAX_LINE_LENGTH = 2000
BINARY_CHECK_BYTES = 8 * 1024  # 8 KB
MAX_INLINE_OUTPUT = 10 * 1024  # 10 KB
MAX_TIMEOUT = 120


class ToolError(Exception):
    """Raised by a tool when a call cannot be completed."""


class PathNotFoundError(ToolError):
    """Raised when a path argument does not exist."""


def safe_resolve(file_path: str, base_dir: str, unrestricted: bool = False) -> Path:
    """Resolve ``file_path`` against ``base_dir`` with symlinks followed.

    Raises ValueError when the result lies outside base_dir, unless
    ``unrestricted``; the filesystem root itself is always refused.
    """
    base = Path(base_dir).resolve()
    # joining an absolute path yields that path unchanged
    resolved = (base / file_path).resolve()

    if resolved == Path(resolved.anchor):
        raise ValueError(f"{file_path!r} is the filesystem root")
    if unrestricted or resolved.is_relative_to(base):
        return resolved
    raise ValueError(f"{file_path!r} resolves to {resolved}, outside base directory {base}")


class Tool:
    """Base class for a named, schema-described capability."""

    name = ""
    description = ""
    parameters: dict = {"type": "object", "properties": {}}

    def __init__(self, base_dir: str = ".", unrestricted: bool = False):
        self.base_dir = base_dir
        self.unrestricted = unrestricted

    def definition(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def call(self, args: dict):
        raise NotImplementedError

    def resolve(self, path: str) -> Path:
        try:
            return safe_resolve(path, self.base_dir, unrestricted=self.unrestricted)
        except ValueError as exc:
            raise ToolError(str(exc)) from exc


def _require(args: dict, key: str, kind: type = str):
    value = args.get(key)
    if value is None:
        raise ToolError(f"missing required argument {key!r}")
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ToolError(f"argument {key!r} must be a {kind.__name__}")
    return value


# ---------------------------------------------------------------------------
# File tools
# ---------------------------------------------------------------------------


class ReadFileTool(Tool):
    name = "read_file"
    description = (
        "Read the contents of a file or list a directory. "
        "For files, returns lines prefixed with line numbers. "
        "Use offset/limit to paginate; a continuation hint shows the next offset."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file or directory to read.",
            },
            "offset": {
                "type": "integer",
                "description": "1-based line number to start reading from. Defaults to 1.",
                "default": 1,
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of lines to return. Defaults to 2000.",
                "default": 2000,
            },
        },
        "required": ["path"],
    }

    def call(self, args: dict) -> str:
        path = _require(args, "path")
        offset = args.get("offset", 1)
        limit = args.get("limit", 2000)
        resolved = self.resolve(path)

        if not resolved.exists():
            raise PathNotFoundError(f"path does not exist: {path}")

        if resolved.is_dir():
            try:
                names = [
                    child.name + ("/" if child.is_dir() else "")
                    for child in sorted(resolved.iterdir())
                ]
            except PermissionError as exc:
                return f"error: {exc}"
            return "\n".join(names) if names else "(empty directory)"

        try:
            with open(resolved, "rb") as f:
                chunk = f.read(BINARY_CHECK_BYTES)
        except PermissionError as exc:
            return f"error: {exc}"
        if b"\x00" in chunk:
            return f"error: binary file detected: {path}"

        try:
            text = resolved.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            return f"error: failed to decode {path} as UTF-8: {exc}"
        except PermissionError as exc:
            return f"error: {exc}"

        lines = text.splitlines()
        start = max(offset - 1, 0)
        shown: list[str] = []
        size = 0
        for number, line in enumerate(lines[start : start + max(limit, 1)], start + 1):
            entry = f"{number}: {line[:MAX_LINE_LENGTH]}"
            size += len(entry.encode("utf-8")) + 1
            if size > MAX_OUTPUT_BYTES:
                break
            shown.append(entry)

        end = start + len(shown)
        result = "\n".join(shown)
        if end < len(lines):
            result += f"\n[{len(lines) - end} more lines, use offset={end + 1} to continue]"
        return result


class WriteFileTool(Tool):
    name = "write_file"
    description = (
        "Create or overwrite a file with the given content, "
        "creating parent directories as needed."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to write."},
            "content": {
                "type": "string",
                "description": "The content to write to the file.",
            },
        },
        "required": ["path", "content"],
    }

    def call(self, args: dict) -> str:
        path = _require(args, "path")
        content = _require(args, "content")
        resolved = self.resolve(path)
        if resolved.is_dir():
            raise ToolError(f"path is a directory: {path}")
        resolved.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8")
        resolved.write_bytes(data)
        return f"Wrote {len(data)} bytes to {path}"


class EditFileTool(Tool):
    name = "edit_file"
    description = (
        "Make a targeted edit to an existing file by replacing old_string with "
        "new_string. For creating new files, use write_file instead."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to edit."},
            "old_string": {
                "type": "string",
                "description": "The exact text to find and replace.",
            },
            "new_string": {"type": "string", "description": "The replacement text."},
            "replace_all": {
                "type": "boolean",
                "description": "Replace all occurrences.",
                "default": False,
            },
        },
        "required": ["path", "old_string", "new_string"],
    }

    def call(self, args: dict) -> str:
        from .edit import replace

        path = _require(args, "path")
        old_string = _require(args, "old_string")
        new_string = _require(args, "new_string")
        resolved = self.resolve(path)

        if not resolved.is_file():
            raise PathNotFoundError(f"file does not exist: {path}")

        try:
            content = resolved.read_text(encoding="utf-8")
        except (UnicodeDecodeError, PermissionError, OSError) as exc:
            return f"error: {exc}"

        try:
            new_content = replace(
                content,
                old_string,
                new_string,
                replace_all=bool(args.get("replace_all", False)),
            )
        except ValueError as exc:
            return f"error: {exc}"

        resolved.write_text(new_content, encoding="utf-8")
        return f"Edited {path}"


class DeleteFileTool(Tool):
    name = "delete_file"
    description = "Delete a single file. Directories are not removed."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to delete."},
        },
        "required": ["path"],
    }

    def call(self, args: dict) -> str:
        path = _require(args, "path")
        resolved = self.resolve(path)
        if not resolved.exists():
            raise PathNotFoundError(f"path does not exist: {path}")
        if resolved.is_dir():
            return f"error: path is a directory, not a file: {path}"
        resolved.unlink()
        return f"Deleted {path}"


class CreateDirectoryTool(Tool):
    name = "create_directory"
    description = "Create a directory, including any missing parent directories."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path of the directory to create.",
            },
        },
        "required": ["path"],
    }

    def call(self, args: dict) -> str:
        path = _require(args, "path")
        resolved = self.resolve(path)
        if resolved.is_file():
            return f"error: a file already exists at {path}"
        resolved.mkdir(parents=True, exist_ok=True)
        return f"Created directory {path}"


# ---------------------------------------------------------------------------
# Shell execution
# ---------------------------------------------------------------------------


def _shell_argv(command: str) -> list[str]:
    if sys.platform == "win32":
        return ["cmd.exe", "/c", command]
    return ["/bin/sh", "-c", command]


def _kill(proc: subprocess.Popen) -> None:
    """Kill the command along with everything it spawned, then reap it."""
    try:
        if sys.platform == "win32":
            proc.kill()
        else:
            os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    proc.wait()


def run_shell(command: str, cwd: str, timeout: int) -> str:
    """Run ``command`` with stdout and stderr merged and summarize the outcome.

    Output is spooled to a temporary file; only the first MAX_INLINE_OUTPUT
    bytes are returned.
    """
    with tempfile.TemporaryFile() as sink:
        try:
            proc = subprocess.Popen(
                _shell_argv(command),
                stdout=sink,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=cwd,
                start_new_session=sys.platform != "win32",
            )
        except OSError as e:
            return f"error: failed to start shell command: {e}"

        timed_out = False
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill(proc)
            logger.debug("killed %r after %ds", command, timeout)

        sink.seek(0)
        output = sink.read(MAX_INLINE_OUTPUT + 1)

    parts: list[str] = []
    if timed_out:
        parts.append(f"error: command timed out after {timeout}s")
    elif proc.returncode != 0:
        parts.append(f"Exit code: {proc.returncode}")
    if output:
        parts.append(output[:MAX_INLINE_OUTPUT].decode("utf-8", errors="replace"))
    if len(output) > MAX_INLINE_OUTPUT:
        parts.append(f"[output truncated at {MAX_INLINE_OUTPUT // 1024}KB]")
    return "\n".join(parts) or "(no output)"


class ExecuteBashTool(Tool):
    name = "execute_bash"
    description = (
        "Execute a shell command in the project directory and return its combined "
        "stdout/stderr. Non-zero exit codes are reported in the output."
    )
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to run, e.g. 'ls -la' or 'pytest -q'.",
            },
            "timeout": {
                "type": "integer",
                "description": f"Timeout in seconds (1-{MAX_TIMEOUT}). Defaults to 30.",
                "default": 30,
            },
        },
        "required": ["command"],
    }

    def call(self, args: dict) -> str:
        command = _require(args, "command")
        if not command.strip():
            raise ToolError("command is empty")
        timeout = args.get("timeout", 30)
        if not isinstance(timeout, int) or isinstance(timeout, bool):
            timeout = 30
        timeout = max(1, min(timeout, MAX_TIMEOUT))

        base_path = Path(self.base_dir)
        if not base_path.is_dir():
            raise PathNotFoundError(f"base directory does not exist: {self.base_dir}")

        return run_shell(command, self.base_dir, timeout)


# ---------------------------------------------------------------------------
# Registry and dispatch
# ---------------------------------------------------------------------------


def build_tools(base_dir: str = ".", *, unrestricted: bool = False) -> dict[str, Tool]:
    """Instantiate the built-in tools, keyed by name."""
    from .search import GrepSearchTool

    classes = [
        GrepSearchTool,
        ReadFileTool,
        WriteFileTool,
        EditFileTool,
        DeleteFileTool,
        CreateDirectoryTool,
        ExecuteBashTool,
    ]
    tools = [cls(base_dir, unrestricted=unrestricted) for cls in classes]
    return {tool.name: tool for tool in tools}


def tool_definitions(tools: dict[str, Tool]) -> list[dict]:
    return [tool.definition() for tool in tools.values()]


def render_output(output) -> str:
    """Turn a tool's return value into the string fed back to the model."""
    if isinstance(output, str):
        return output
    to_json = getattr(output, "to_json", None)
    if callable(to_json):
        return to_json()
    return json.dumps(output, ensure_ascii=False, default=str)


def dispatch(name: str, args: dict, tools: dict[str, Tool]) -> str:
    """Route a tool call to the named tool and render its result.

    Raises:
        ToolError: If the tool name is not recognized or the tool fails.
    """
    tool = tools.get(name)
    if tool is None:
        available = ", ".join(sorted(tools)) or "(none)"
        raise ToolError(f"unknown tool {name!r}. Available tools: {available}")
    if not isinstance(args, dict):
        raise ToolError(f"arguments for {name!r} must be a JSON object")
    logger.debug("dispatching tool %s", name)
    return render_output(tool.call(args))
