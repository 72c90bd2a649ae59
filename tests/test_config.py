"""Tests for kota.config: TOML config file loading, merging, and CLI integration."""

import argparse
import tomllib

import pytest

from kota.config import (
    _UNSET,
    ConfigError,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_args(**overrides):
    """Build a namespace mimicking build_parser() with _UNSET sentinels."""
    defaults = {
        "provider": _UNSET,
        "model": _UNSET,
        "api_key": _UNSET,
        "base_url": _UNSET,
        "session_dir": _UNSET,
        "session": _UNSET,
        "max_messages": _UNSET,
        "system_prompt": _UNSET,
        "verbose": _UNSET,
        "debug": _UNSET,
        "yolo": _UNSET,
        "color": _UNSET,
        "no_color": _UNSET,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture
def xdg(tmp_path, monkeypatch):
    """Point the global config directory at a temp location."""
    home = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home))
    return home / "kota"


@pytest.fixture
def project(tmp_path):
    p = tmp_path / "project"
    p.mkdir()
    return p


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_global_dir_respects_xdg(self, xdg):
        assert global_config_dir() == xdg

    def test_no_files(self, xdg, project):
        assert load_config(project) == {}

    def test_global_only(self, xdg, project):
        _write_toml(xdg / "config.toml", 'provider = "anthropic"\nmax_messages = 50\n')
        assert load_config(project) == {"provider": "anthropic", "max_messages": 50}

    def test_project_overrides_global(self, xdg, project):
        _write_toml(xdg / "config.toml", 'provider = "anthropic"\nmodel = "claude"\n')
        _write_toml(project / "kota.toml", 'model = "gpt-4o-mini"\nverbose = true\n')
        assert load_config(project) == {
            "provider": "anthropic",
            "model": "gpt-4o-mini",
            "verbose": True,
        }

    def test_invalid_toml(self, xdg, project):
        _write_toml(project / "kota.toml", "provider = ")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(project)

    def test_type_mismatch(self, xdg, project):
        _write_toml(project / "kota.toml", 'max_messages = "many"\n')
        with pytest.raises(ConfigError, match="'max_messages' expected int, got str"):
            load_config(project)

    def test_bool_rejected_for_int(self, xdg, project):
        _write_toml(project / "kota.toml", "max_messages = true\n")
        with pytest.raises(ConfigError, match="got bool"):
            load_config(project)

    def test_max_messages_must_be_positive(self, xdg, project):
        _write_toml(project / "kota.toml", "max_messages = 0\n")
        with pytest.raises(ConfigError, match="at least 1"):
            load_config(project)

    def test_unknown_key_warns_and_is_dropped(self, xdg, project, capsys):
        _write_toml(project / "kota.toml", 'colour = true\nmodel = "m"\n')
        assert load_config(project) == {"model": "m"}
        assert "unknown config key 'colour'" in capsys.readouterr().err

    def test_session_dir_relative_to_config_file(self, xdg, project):
        _write_toml(project / "kota.toml", 'session_dir = "state/sessions"\n')
        config = load_config(project)
        assert config["session_dir"] == str(project.resolve() / "state" / "sessions")

    def test_session_dir_absolute_kept(self, xdg, project, tmp_path):
        target = tmp_path / "elsewhere"
        _write_toml(xdg / "config.toml", f'session_dir = "{target}"\n')
        assert load_config(project)["session_dir"] == str(target)

    def test_api_key_in_git_project_warns(self, xdg, project, capsys):
        (project / ".git").mkdir()
        _write_toml(project / "kota.toml", 'api_key = "sk-x"\n')
        load_config(project)
        assert "may be committed accidentally" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Applying to argparse
# ---------------------------------------------------------------------------


class TestApplyConfig:
    def test_defaults_when_nothing_set(self):
        args = _make_args()
        apply_config_to_args(args, {}, environ={})
        assert args.provider == "openai"
        assert args.model is None
        assert args.max_messages == 100
        assert args.session is None
        assert (args.verbose, args.debug, args.yolo) == (False, False, False)
        assert (args.color, args.no_color) == (False, False)

    def test_config_fills_unset(self):
        args = _make_args()
        apply_config_to_args(args, {"model": "m", "max_messages": 7}, environ={})
        assert (args.model, args.max_messages) == ("m", 7)

    def test_cli_beats_config(self):
        args = _make_args(model="cli-model")
        apply_config_to_args(args, {"model": "cfg-model"}, environ={})
        assert args.model == "cli-model"

    def test_environment_fallback(self):
        env = {
            "KOTA_PROVIDER": "deepseek",
            "MODEL_NAME": "deepseek-coder",
            "API_KEY": "env-key",
            "API_BASE": "https://api.example.com",
        }
        args = _make_args()
        apply_config_to_args(args, {}, environ=env)
        assert args.provider == "deepseek"
        assert args.model == "deepseek-coder"
        assert args.api_key == "env-key"
        assert args.base_url == "https://api.example.com"

    def test_config_beats_environment(self):
        args = _make_args()
        apply_config_to_args(args, {"api_key": "cfg-key"}, environ={"API_KEY": "env-key"})
        assert args.api_key == "cfg-key"

    def test_empty_env_value_ignored(self):
        args = _make_args()
        apply_config_to_args(args, {}, environ={"MODEL_NAME": ""})
        assert args.model is None

    def test_color_true(self):
        args = _make_args()
        apply_config_to_args(args, {"color": True}, environ={})
        assert (args.color, args.no_color) == (True, False)

    def test_color_false(self):
        args = _make_args()
        apply_config_to_args(args, {"color": False}, environ={})
        assert (args.color, args.no_color) == (False, True)

    def test_cli_color_flag_wins(self):
        args = _make_args(no_color=True)
        apply_config_to_args(args, {"color": True}, environ={})
        assert args.no_color is True
        assert args.color is False


class TestGenerateConfig:
    @pytest.mark.parametrize("project", [False, True])
    def test_template_is_valid_toml(self, project):
        text = generate_config(project=project)
        assert tomllib.loads(text) == {}
        assert "max_messages" in text

    def test_uncommented_template_validates(self, xdg, tmp_path):
        lines = [
            line[2:]
            for line in generate_config().splitlines()
            if line.startswith("# ") and "=" in line
        ]
        _write_toml(tmp_path / "kota.toml", "\n".join(lines) + "\n")
        config = load_config(tmp_path)
        assert config["provider"] == "openai"
        assert config["max_messages"] == 100
