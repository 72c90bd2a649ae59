"""String replacement engine for the edit_file tool.

``replace()`` tries three matching passes in order: exact substring, then
line-by-line with surrounding whitespace ignored, then the same with
typographic punctuation folded to ASCII.
"""

from __future__ import annotations

import re
from typing import Callable

_SINGLE_QUOTES = re.compile(r"[\u2018\u2019\u201a\u201b]")
_DOUBLE_QUOTES = re.compile(r"[\u201c\u201d\u201e\u201f]")
_DASHES = re.compile(r"[\u2010\u2011\u2012\u2013\u2014\u2015]")


def _fold_punctuation(s: str) -> str:
    s = _SINGLE_QUOTES.sub("'", s)
    s = _DOUBLE_QUOTES.sub('"', s)
    s = _DASHES.sub("-", s)
    return s.replace("\u2026", "...").replace("\u00a0", " ")


def _trimmed(line: str) -> str:
    return line.strip()


def _trimmed_folded(line: str) -> str:
    return _fold_punctuation(line.strip())


def _line_spans(
    content: str, old_string: str, key: Callable[[str], str]
) -> list[tuple[int, int]]:
    """Character spans of every window of lines matching old_string under key."""
    content_lines = content.split("\n")
    old_keys = [key(line) for line in old_string.split("\n")]
    width = len(old_keys)

    offsets = [0]
    for line in content_lines:
        offsets.append(offsets[-1] + len(line) + 1)

    spans = []
    for i in range(len(content_lines) - width + 1):
        if all(key(content_lines[i + j]) == old_keys[j] for j in range(width)):
            end = offsets[i + width]
            if not old_string.endswith("\n"):
                end -= 1  # leave the window's trailing newline in place
            spans.append((offsets[i], min(end, len(content))))
    return spans


def _splice(content: str, spans: list[tuple[int, int]], new_string: str) -> str:
    result = []
    pos = 0
    for start, end in spans:
        if start < pos:
            continue  # overlapping window
        result.append(content[pos:start])
        result.append(new_string)
        pos = end
    result.append(content[pos:])
    return "".join(result)


def replace(
    content: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
) -> str:
    """Replace old_string with new_string in content.

    Raises ValueError with "no changes", "not found" or "multiple matches".
    With a fuzzy pass, the matched span of the original content is replaced
    and new_string is inserted verbatim.
    """
    if old_string == new_string:
        raise ValueError("no changes")
    if not old_string:
        raise ValueError("old_string must not be empty")

    exact = content.count(old_string)
    if exact:
        if exact > 1 and not replace_all:
            raise ValueError("multiple matches")
        return content.replace(old_string, new_string, -1 if replace_all else 1)

    for key in (_trimmed, _trimmed_folded):
        spans = _line_spans(content, old_string, key)
        if not spans:
            continue
        if len(spans) > 1 and not replace_all:
            raise ValueError("multiple matches")
        return _splice(content, spans if replace_all else spans[:1], new_string)

    raise ValueError("not found")
