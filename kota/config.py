"""Configuration file loading and merging for kota.

Reads TOML config from ~/.config/kota/config.toml (global) and
<base_dir>/kota.toml (project). Precedence: CLI > project > global >
environment > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .report import ConfigError  # noqa: F401 (re-exported)

_UNSET = object()  # Sentinel for "not set by CLI"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "provider": str,
    "model": str,
    "api_key": str,
    "base_url": str,
    "session_dir": str,
    "session": str,
    "max_messages": int,
    "system_prompt": str,
    "verbose": bool,
    "debug": bool,
    "yolo": bool,
    "color": bool,
}

# Config key -> environment variable consulted when neither CLI nor a
# config file set it.
ENV_KEYS: dict[str, str] = {
    "provider": "KOTA_PROVIDER",
    "model": "MODEL_NAME",
    "api_key": "API_KEY",
    "base_url": "API_BASE",
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "provider": "openai",
    "model": None,
    "api_key": None,
    "base_url": None,
    "session_dir": None,
    "session": None,
    "max_messages": 100,
    "system_prompt": None,
    "verbose": False,
    "debug": False,
    "yolo": False,
    "color": False,
    "no_color": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "kota"
    return Path.home() / ".config" / "kota"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate value types in a parsed config dict.

    Raises ConfigError for type mismatches or out-of-range values.
    Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int; reject bools for non-bool fields.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

    if "max_messages" in config and config["max_messages"] < 1:
        raise ConfigError(f"{source}: 'max_messages' must be at least 1")


def _resolve_paths(config: dict, config_dir: Path) -> None:
    """Resolve a relative session_dir against the config file's directory.

    Applies expanduser() first so that ~/... stays in the home directory.
    """
    if "session_dir" in config:
        expanded = Path(config["session_dir"]).expanduser()
        if expanded.is_absolute():
            config["session_dir"] = str(expanded)
        else:
            config["session_dir"] = str(config_dir / expanded)


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if api_key is set in a project config inside a git repo."""
    if "api_key" not in config:
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using API_KEY in .env instead.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict holding only keys actually set in config files
    (no defaults injected), with relative paths resolved against each
    file's parent directory.
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))
    _resolve_paths(global_config, global_path.parent)

    project_path = Path(base_dir).resolve() / "kota.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)
        _resolve_paths(project_config, project_path.parent)

    return {**global_config, **project_config}


def apply_config_to_args(
    args: argparse.Namespace, config: dict, environ: dict | None = None
) -> None:
    """Fill argparse values the CLI left unset.

    Config values are applied first, then the environment variables in
    ENV_KEYS, and finally any remaining _UNSET sentinel is replaced with
    the hardcoded default from _ARGPARSE_DEFAULTS.
    """
    if environ is None:
        environ = os.environ

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive color pair
    if "color" in config and _is_unset("color") and _is_unset("no_color"):
        args.color = config["color"]
        args.no_color = not config["color"]

    for key, value in config.items():
        if key != "color" and _is_unset(key):
            setattr(args, key, value)

    for key, var in ENV_KEYS.items():
        value = environ.get(var)
        if value and _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# kota configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/kota.toml' if project else '~/.config/kota/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Provider / model ---",
        '# provider = "openai"    # "openai" | "anthropic" | "cohere" | "deepseek" | "ollama" | "lmstudio"',
        '# model = "gpt-4o"',
        '# api_key = "sk-..."      # prefer API_KEY in the environment or .env',
        '# base_url = "https://..."',
        "",
        "# --- Sessions ---",
        '# session_dir = ".kota/sessions"',
        '# session = "work"',
        "# max_messages = 100",
        "",
        "# --- Agent behaviour ---",
        '# system_prompt = "You are a helpful assistant."',
        "# yolo = false",
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# verbose = false",
        "# debug = false",
        "",
    ]
    return "\n".join(lines)
