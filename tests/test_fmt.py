"""Tests for the fmt module (Rich-formatted output helpers)."""

from io import StringIO

from rich.console import Console

from kota import fmt


def _capture(func, *args, **kwargs):
    """Call a fmt function with a captured console and return plain-text output."""
    buf = StringIO()
    old = fmt._console
    fmt._console = Console(file=buf, no_color=True, width=80)
    try:
        func(*args, **kwargs)
    finally:
        fmt._console = old
    return buf.getvalue()


class TestChat:
    def test_assistant_header(self):
        out = _capture(fmt.assistant_header)
        assert "Thinking..." in out
        assert "kota:" in out

    def test_tokens_used(self):
        assert _capture(fmt.tokens_used, 1234) == "Total tokens used: 1234\n"

    def test_stream_text_goes_to_stdout(self, capsys):
        fmt.stream_text("partial")
        fmt.end_stream_line()
        captured = capsys.readouterr()
        assert captured.out == "partial\n"
        assert captured.err == ""


class TestToolLines:
    def test_tool_line(self):
        assert _capture(fmt.tool_line, "grep_search", "TODO") == "● grep_search(TODO)\n"

    def test_tool_result_line(self):
        assert _capture(fmt.tool_result_line, "Found 1 matches") == "  └─ Found 1 matches\n"

    def test_long_lines_not_wrapped(self):
        out = _capture(fmt.tool_result_line, "z" * 200)
        assert out.count("\n") == 1

    def test_tool_error(self):
        out = _capture(fmt.tool_error, "read_file", "error: missing")
        assert "read_file" in out
        assert "error: missing" in out


class TestConfig:
    def test_lists_settings(self):
        out = _capture(fmt.config, "openai", "gpt-4o", None, "********")
        assert "Current Configuration:" in out
        assert "Provider: openai" in out
        assert "Model:    gpt-4o" in out
        assert "API Key:  ********" in out
        assert "(provider default)" in out


class TestHistory:
    def test_empty(self):
        out = _capture(fmt.history, "s1", [])
        assert "No conversation history in current session" in out
        assert "s1" in out

    def test_entries(self):
        out = _capture(fmt.history, "s1", [("user", "hi"), ("assistant", "one\ntwo")])
        assert "Conversation History (Session: s1)" in out
        assert "1. User" in out
        assert "2. Assistant" in out
        assert "   one\n   two\n" in out
        assert "Total messages: 2" in out


class TestSessions:
    def test_empty(self):
        assert "No saved sessions found" in _capture(fmt.sessions, [], "main")

    def test_marks_current(self):
        rows = [("alpha", 2, "2024-01-01 10:00:00"), ("main", 5, "2024-01-02 11:00:00")]
        out = _capture(fmt.sessions, rows, "main")
        assert "1. alpha - 2 messages\n" in out
        assert "2. main - 5 messages (current)" in out
        assert "Last updated: 2024-01-02 11:00:00" in out


class TestDiagnostics:
    def test_error(self):
        assert _capture(fmt.error, "boom") == "Error: boom\n"

    def test_warning(self):
        assert "Warning: careful" in _capture(fmt.warning, "careful")

    def test_success(self):
        assert _capture(fmt.success, "done") == "✓ done\n"

    def test_help_table(self):
        out = _capture(fmt.help_table, [("/help", "Show help"), ("/quit", "Exit")])
        assert "Available Commands:" in out
        assert "/help  Show help" in out

    def test_session_log(self):
        assert _capture(fmt.session_log, "x", "hello") == "[Session x] hello\n"

    def test_init_no_color(self):
        old = fmt._console
        try:
            fmt.init(no_color=True)
            assert fmt._console.no_color
        finally:
            fmt._console = old
