"""Extract line-numbered new-file context around one line of a unified diff."""

from __future__ import annotations

import re
from enum import Enum

HUNK_HEADER_PREFIX = "@@"
FILE_HEADER_PREFIX = "diff --git "
NEW_START_PATTERN = re.compile(r"\+(?P<head_start>\d+)(?:,\d+)?")
DEFAULT_CONTEXT_LINES = 2
TARGET_MARKER = ">"
CONTEXT_MARKER = " "


class _ScanState(Enum):
    BEFORE_HUNK = "before_hunk"
    IN_HUNK = "in_hunk"


def parse_hunk_new_start(header: str) -> int | None:
    """Return the new-file start line from a hunk header, or None if absent."""
    match = NEW_START_PATTERN.search(header, len(HUNK_HEADER_PREFIX))
    if match is None:
        return None
    return int(match.group("head_start"))


def format_snippet_line(line_number: int, text: str, *, is_target: bool) -> str:
    """Render one snippet line with its marker and padded line number."""
    marker = TARGET_MARKER if is_target else CONTEXT_MARKER
    return f"{marker} {line_number:>4}: {text}"


def extract_diff_snippet(
    diff_text: str,
    target_line: int,
    context_lines: int = DEFAULT_CONTEXT_LINES,
) -> tuple[str, tuple[str, ...]]:
    """Extract the new-file lines around ``target_line`` from unified diff text.

    Only added (``+``) and context (`` ``) lines exist in the new file, so only
    they advance the line counter and appear in the output. Removed (``-``)
    lines are skipped. Returns the joined snippet and any warnings; an empty
    snippet means the line was not found in any hunk.
    """
    warnings: list[str] = []
    if context_lines < 0:
        warnings.append(f"Negative context_lines {context_lines} clamped to 0.")
        context_lines = 0

    window_start = target_line - context_lines
    window_end = target_line + context_lines
    state = _ScanState.BEFORE_HUNK
    new_line_number = 0
    snippet_lines: list[str] = []

    # Only "\n" delimits diff lines; form feeds and other separators are line content.
    for raw_line in diff_text.split("\n"):
        line = raw_line.removesuffix("\r")
        if line.startswith(FILE_HEADER_PREFIX):
            state = _ScanState.BEFORE_HUNK
            continue

        if line.startswith(HUNK_HEADER_PREFIX):
            head_start = parse_hunk_new_start(line)
            if head_start is None:
                warnings.append(f"Could not parse hunk header: {line!r}")
                continue
            state = _ScanState.IN_HUNK
            new_line_number = head_start - 1
            continue

        if state is _ScanState.BEFORE_HUNK:
            continue

        if not line.startswith(("+", " ")):
            continue

        new_line_number += 1
        if new_line_number > window_end:
            break
        if new_line_number >= window_start:
            snippet_lines.append(
                format_snippet_line(
                    new_line_number,
                    line[1:],
                    is_target=new_line_number == target_line,
                )
            )

    if not snippet_lines:
        warnings.append(f"Could not find or extract snippet for line {target_line}.")
        return "", tuple(warnings)
    return "\n".join(snippet_lines), tuple(warnings)
