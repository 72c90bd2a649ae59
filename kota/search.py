"""Recursive regex code search, exposed to the model as ``grep_search``."""

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path

from .tools import PathNotFoundError, Tool, ToolError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 100

# Directories pruned before descending. Names starting with "." are pruned too.
SKIP_DIRS = frozenset(
    {
        "target",
        "node_modules",
        "__pycache__",
        ".git",
        ".svn",
        ".hg",
        ".bzr",
        "dist",
        "build",
        "out",
        "bin",
        "obj",
        ".vscode",
        ".idea",
        ".vs",
        "coverage",
        ".nyc_output",
        ".pytest_cache",
        ".tox",
        "venv",
        "env",
        ".env",
        "vendor",
        "deps",
        "_build",
        ".elixir_ls",
        ".mix",
        "tmp",
        "temp",
        "cache",
        ".cache",
        "logs",
        "log",
        ".DS_Store",
        "Thumbs.db",
    }
)

TEXT_EXTENSIONS = frozenset(
    """
    rs py js ts jsx tsx html css scss sass json xml yaml yml toml md txt csv sql
    sh bash zsh fish ps1 bat cmd c cpp cc cxx h hpp hxx java kt scala go php rb
    swift dart r m mm pl pm lua vim el clj cljs hs ml fs fsx ex exs erl hrl nim
    cr d zig v jl rkt scm ss lisp lsp cl asd pro prolog dockerfile makefile mk
    cmake gradle sbt pom gemfile rakefile podfile cartfile brewfile vagrantfile
    gitignore gitattributes editorconfig eslintrc prettierrc babelrc tsconfig
    jsconfig webpack rollup vite package lock sum mod ini cfg conf config
    properties env example sample template stub proto graphql gql schema prisma
    ddl dml hql cql psql mysql sqlite db log out err trace debug info warn error
    fatal
    """.split()
)

# Extensionless file names treated as text (compared lowercased).
TEXT_FILENAMES = frozenset(
    """
    readme license changelog authors contributors makefile dockerfile
    vagrantfile gemfile rakefile podfile cartfile brewfile procfile justfile
    taskfile buildfile gradlew mvnw
    """.split()
)


@dataclass
class SearchMatch:
    file_path: str
    line_number: int  # 1-indexed
    line_content: str
    match_start: int  # byte offsets within the line
    match_end: int


@dataclass
class SearchOutput:
    root_path: str
    query: str
    matches: list[SearchMatch] = field(default_factory=list)
    total_matches: int = 0
    files_searched: int = 0
    success: bool = True
    message: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def is_text_file(path: Path) -> bool:
    """Classify by extension first, then by exact extensionless file name."""
    suffix = path.suffix
    if suffix:
        return suffix[1:].lower() in TEXT_EXTENSIONS
    return path.name.lower() in TEXT_FILENAMES


def should_skip_directory(name: str) -> bool:
    return name in SKIP_DIRS or name.startswith(".")


def _lines(text: str):
    """Split like a line reader: "\\n" separators, trailing "\\r" dropped."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    for line in lines:
        yield line[:-1] if line.endswith("\r") else line


def _byte_span(line: str, match: re.Match) -> tuple[int, int]:
    start = len(line[: match.start()].encode("utf-8"))
    end = start + len(match.group(0).encode("utf-8"))
    return start, end


def _search_file(
    path: Path, regex: re.Pattern, limit: int, out: list[SearchMatch]
) -> None:
    """Record at most one match per line until ``out`` holds ``limit`` entries."""
    try:
        text = path.read_bytes().decode("utf-8")
    except (UnicodeDecodeError, OSError):
        return

    file_path = str(path)
    for line_number, line in enumerate(_lines(text), start=1):
        if len(out) >= limit:
            return
        m = regex.search(line)
        if m is None:
            continue
        start, end = _byte_span(line, m)
        out.append(SearchMatch(file_path, line_number, line, start, end))


def _iter_candidate_files(root: Path):
    """Yield text files under root, pruning skipped directories before descent."""
    if root.is_file():
        if not root.is_symlink() and is_text_file(root):
            yield root
        return

    for dirpath, dirs, files in os.walk(root, followlinks=False):
        dirs[:] = sorted(d for d in dirs if not should_skip_directory(d))
        for filename in sorted(files):
            filepath = Path(dirpath) / filename
            if filepath.is_symlink() or not is_text_file(filepath):
                continue
            yield filepath


def search(
    root_path: str | Path, pattern: str, max_results: int = DEFAULT_MAX_RESULTS
) -> SearchOutput:
    """Search text files under ``root_path`` for the regex ``pattern``.

    Raises PathNotFoundError when ``root_path`` does not exist. An invalid
    pattern is reported through ``success=False`` rather than raised.
    """
    root = Path(root_path)
    if not root.exists():
        raise PathNotFoundError(f"path does not exist: {root_path}")
    if max_results < 1:
        raise ValueError("max_results must be at least 1")

    output = SearchOutput(root_path=str(root_path), query=pattern)

    try:
        regex = re.compile(pattern)
    except re.error as e:
        output.success = False
        output.message = f"Invalid regex pattern: {e}"
        return output

    matches: list[SearchMatch] = []
    files_searched = 0
    for filepath in _iter_candidate_files(root):
        if len(matches) >= max_results:
            break
        files_searched += 1
        _search_file(filepath, regex, max_results, matches)

    total = len(matches)
    if total == 0:
        message = f"No matches found for '{pattern}' in {files_searched} files"
    elif total >= max_results:
        message = (
            f"Found {total} matches (limit reached) for '{pattern}' "
            f"in {files_searched} files"
        )
    else:
        message = f"Found {total} matches for '{pattern}' in {files_searched} files"

    logger.debug("grep_search %r under %s: %s", pattern, root, message)

    output.matches = matches
    output.total_matches = total
    output.files_searched = files_searched
    output.message = message
    return output


class GrepSearchTool(Tool):
    name = "grep_search"
    description = (
        "Search for text patterns in files within a directory tree using regular "
        "expressions. Recursively searches through text files and returns matching "
        "lines (first match per line) with their line numbers."
    )
    parameters = {
        "type": "object",
        "properties": {
            "root_path": {
                "type": "string",
                "description": (
                    "The root directory path to search in. "
                    "Examples: '.', 'src', '/path/to/project'"
                ),
            },
            "query": {
                "type": "string",
                "description": (
                    "The search pattern (regular expression). Examples: 'function', "
                    "'TODO|FIXME', 'def \\w+', 'import.*from'"
                ),
            },
            "max_results": {
                "type": "integer",
                "description": (
                    "Maximum number of matches to return (default: 100). "
                    "Use smaller values for broad searches."
                ),
                "default": DEFAULT_MAX_RESULTS,
            },
        },
        "required": ["root_path", "query"],
    }

    def call(self, args: dict) -> SearchOutput:
        root_path = args.get("root_path", ".")
        query = args.get("query")
        if not isinstance(root_path, str) or not isinstance(query, str):
            raise ToolError("'root_path' and 'query' must be strings")
        max_results = args.get("max_results", DEFAULT_MAX_RESULTS)
        if not isinstance(max_results, int) or isinstance(max_results, bool):
            raise ToolError("'max_results' must be an integer")
        if max_results < 1:
            raise ToolError("'max_results' must be at least 1")

        root = self.resolve(root_path)
        output = search(root, query, max_results)
        output.root_path = root_path
        return output
