"""Tests for the built-in file and shell tools and for dispatch."""

import json
import sys

import pytest

from kota.tools import (
    PathNotFoundError,
    ToolError,
    build_tools,
    dispatch,
    render_output,
    safe_resolve,
    tool_definitions,
)


@pytest.fixture
def tools(tmp_path):
    return build_tools(str(tmp_path))


# =========================================================================
# safe_resolve
# =========================================================================


class TestSafeResolve:
    def test_relative_path_inside_base(self, tmp_path):
        assert safe_resolve("a/b.txt", str(tmp_path)) == (tmp_path / "a" / "b.txt").resolve()

    def test_escape_is_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="outside base directory"):
            safe_resolve("../outside.txt", str(tmp_path))

    def test_absolute_outside_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            safe_resolve("/etc/passwd", str(tmp_path))

    def test_unrestricted_allows_outside(self, tmp_path):
        result = safe_resolve("../x.txt", str(tmp_path), unrestricted=True)
        assert result == (tmp_path.parent / "x.txt").resolve()

    def test_unrestricted_refuses_root(self, tmp_path):
        with pytest.raises(ValueError, match="filesystem root"):
            safe_resolve("/", str(tmp_path), unrestricted=True)

    def test_symlink_escape_rejected(self, tmp_path):
        outside = tmp_path.parent / f"{tmp_path.name}_outside"
        outside.mkdir()
        (tmp_path / "link").symlink_to(outside)
        with pytest.raises(ValueError):
            safe_resolve("link/file.txt", str(tmp_path))


# =========================================================================
# Registry
# =========================================================================


class TestRegistry:
    def test_all_tools_registered(self, tools):
        assert set(tools) == {
            "grep_search",
            "read_file",
            "write_file",
            "edit_file",
            "delete_file",
            "create_directory",
            "execute_bash",
        }

    def test_definitions_are_function_schemas(self, tools):
        defs = tool_definitions(tools)
        assert len(defs) == len(tools)
        for d in defs:
            assert d["type"] == "function"
            assert d["function"]["name"] in tools
            assert d["function"]["parameters"]["type"] == "object"

    def test_unknown_tool(self, tools):
        with pytest.raises(ToolError, match="unknown tool 'nope'"):
            dispatch("nope", {}, tools)

    def test_non_dict_arguments(self, tools):
        with pytest.raises(ToolError, match="must be a JSON object"):
            dispatch("read_file", ["a.txt"], tools)

    def test_missing_required_argument(self, tools):
        with pytest.raises(ToolError, match="missing required argument 'path'"):
            dispatch("read_file", {}, tools)

    def test_wrong_argument_type(self, tools):
        with pytest.raises(ToolError, match="must be a str"):
            dispatch("read_file", {"path": 3}, tools)

    def test_render_output(self):
        class Payload:
            def to_json(self):
                return '{"ok": true}'

        assert render_output("plain") == "plain"
        assert render_output(Payload()) == '{"ok": true}'
        assert json.loads(render_output({"a": 1})) == {"a": 1}


# =========================================================================
# read_file
# =========================================================================


class TestReadFile:
    def test_numbered_lines(self, tmp_path, tools):
        (tmp_path / "f.txt").write_text("one\ntwo\nthree\n")
        assert dispatch("read_file", {"path": "f.txt"}, tools) == "1: one\n2: two\n3: three"

    def test_offset_and_limit_with_hint(self, tmp_path, tools):
        (tmp_path / "f.txt").write_text("\n".join(f"line{i}" for i in range(1, 11)))
        result = dispatch("read_file", {"path": "f.txt", "offset": 3, "limit": 2}, tools)
        assert result.startswith("3: line3\n4: line4")
        assert "[6 more lines, use offset=5 to continue]" in result

    def test_directory_listing(self, tmp_path, tools):
        (tmp_path / "sub").mkdir()
        (tmp_path / "a.txt").write_text("x")
        assert dispatch("read_file", {"path": "."}, tools) == "a.txt\nsub/"

    def test_empty_directory(self, tmp_path, tools):
        (tmp_path / "empty").mkdir()
        assert dispatch("read_file", {"path": "empty"}, tools) == "(empty directory)"

    def test_missing_file(self, tools):
        with pytest.raises(PathNotFoundError):
            dispatch("read_file", {"path": "missing.txt"}, tools)

    def test_binary_file(self, tmp_path, tools):
        (tmp_path / "bin.dat").write_bytes(b"abc\x00def")
        result = dispatch("read_file", {"path": "bin.dat"}, tools)
        assert result.startswith("error: binary file detected")

    def test_outside_base_dir(self, tools):
        with pytest.raises(ToolError, match="outside base directory"):
            dispatch("read_file", {"path": "../../etc/passwd"}, tools)


# =========================================================================
# write_file / edit_file / delete_file / create_directory
# =========================================================================


class TestFileMutations:
    def test_write_creates_parents(self, tmp_path, tools):
        result = dispatch("write_file", {"path": "a/b/c.txt", "content": "hi"}, tools)
        assert result == "Wrote 2 bytes to a/b/c.txt"
        assert (tmp_path / "a" / "b" / "c.txt").read_text() == "hi"

    def test_write_overwrites(self, tmp_path, tools):
        (tmp_path / "f.txt").write_text("old")
        dispatch("write_file", {"path": "f.txt", "content": "new"}, tools)
        assert (tmp_path / "f.txt").read_text() == "new"

    def test_write_to_directory_fails(self, tmp_path, tools):
        (tmp_path / "d").mkdir()
        with pytest.raises(ToolError, match="is a directory"):
            dispatch("write_file", {"path": "d", "content": "x"}, tools)

    def test_edit(self, tmp_path, tools):
        (tmp_path / "f.py").write_text("x = 1\ny = 2\n")
        args = {"path": "f.py", "old_string": "x = 1", "new_string": "x = 10"}
        assert dispatch("edit_file", args, tools) == "Edited f.py"
        assert (tmp_path / "f.py").read_text() == "x = 10\ny = 2\n"

    def test_edit_not_found_is_error_result(self, tmp_path, tools):
        (tmp_path / "f.py").write_text("x = 1\n")
        args = {"path": "f.py", "old_string": "zzz", "new_string": "y"}
        assert dispatch("edit_file", args, tools) == "error: not found"
        assert (tmp_path / "f.py").read_text() == "x = 1\n"

    def test_edit_missing_file(self, tools):
        args = {"path": "nope.py", "old_string": "a", "new_string": "b"}
        with pytest.raises(PathNotFoundError):
            dispatch("edit_file", args, tools)

    def test_delete_file(self, tmp_path, tools):
        (tmp_path / "f.txt").write_text("x")
        assert dispatch("delete_file", {"path": "f.txt"}, tools) == "Deleted f.txt"
        assert not (tmp_path / "f.txt").exists()

    def test_delete_directory_refused(self, tmp_path, tools):
        (tmp_path / "d").mkdir()
        result = dispatch("delete_file", {"path": "d"}, tools)
        assert result.startswith("error: path is a directory")
        assert (tmp_path / "d").is_dir()

    def test_create_directory(self, tmp_path, tools):
        result = dispatch("create_directory", {"path": "x/y"}, tools)
        assert result == "Created directory x/y"
        assert (tmp_path / "x" / "y").is_dir()

    def test_create_directory_over_file(self, tmp_path, tools):
        (tmp_path / "f").write_text("x")
        result = dispatch("create_directory", {"path": "f"}, tools)
        assert result.startswith("error: a file already exists")

    def test_unrestricted_write_outside(self, tmp_path):
        base = tmp_path / "base"
        base.mkdir()
        tools = build_tools(str(base), unrestricted=True)
        dispatch("write_file", {"path": "../out.txt", "content": "x"}, tools)
        assert (tmp_path / "out.txt").read_text() == "x"


# =========================================================================
# execute_bash
# =========================================================================


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
class TestExecuteBash:
    def test_runs_in_base_dir(self, tmp_path, tools):
        (tmp_path / "marker.txt").write_text("x")
        result = dispatch("execute_bash", {"command": "ls"}, tools)
        assert "marker.txt" in result

    def test_combined_output(self, tools):
        result = dispatch("execute_bash", {"command": "echo out; echo err >&2"}, tools)
        assert "out" in result
        assert "err" in result

    def test_exit_code_reported(self, tools):
        result = dispatch("execute_bash", {"command": "exit 3"}, tools)
        assert result == "Exit code: 3"

    def test_no_output(self, tools):
        assert dispatch("execute_bash", {"command": "true"}, tools) == "(no output)"

    def test_timeout(self, tools):
        result = dispatch("execute_bash", {"command": "sleep 10", "timeout": 1}, tools)
        assert result.startswith("error: command timed out after 1s")

    def test_timeout_keeps_partial_output(self, tools):
        result = dispatch(
            "execute_bash", {"command": "echo started; sleep 10", "timeout": 1}, tools
        )
        assert result.splitlines()[:2] == ["error: command timed out after 1s", "started"]

    def test_large_output_truncated(self, tools):
        result = dispatch(
            "execute_bash", {"command": "head -c 20000 /dev/zero | tr '\\0' a"}, tools
        )
        assert "[output truncated at 10KB]" in result

    def test_empty_command(self, tools):
        with pytest.raises(ToolError, match="command is empty"):
            dispatch("execute_bash", {"command": "   "}, tools)
