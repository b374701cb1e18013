"""
unsafe_paths.beautify
=====================

Best-effort re-formatting of Rust fragments for the report.

:func:`beautify_source` first asks ``rustfmt`` (when it is on ``PATH``) to
format the fragment as a file, then wrapped in ``mod dummy { }``, then
wrapped in ``impl Dummy { }``.  When all attempts fail it falls back to
:func:`indent_source`, a bracket-counting re-indenter.

The re-indenter only rewrites leading whitespace, so its output always has
the same token sequence as its input.  Bracket characters inside string,
raw-string and character literals and inside comments are ignored.  Lines
that continue a multi-line string literal are emitted verbatim.  A line
opening several brackets indents the following lines by a single step.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import textwrap
from dataclasses import dataclass
from typing import List, Optional, Tuple

_log = logging.getLogger(__name__)

INDENT = "    "
RUSTFMT_TIMEOUT_SECONDS = 10

_OPENERS = "{[("
_CLOSERS = "}])"
_RAW_STRING_START = re.compile(r'b?r(#*)"')
_CHAR_LITERAL = re.compile(
    r"'(?:\\(?:x[0-9a-fA-F]{2}|u\{[0-9a-fA-F]{1,6}\}|.)|[^\\'])'"
)

# (wrapper header, closing line) tried in order after the bare fragment
_WRAPPERS: Tuple[Tuple[str, str], ...] = (
    ("mod dummy {", "}"),
    ("impl Dummy {", "}"),
)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def beautify_source(source: str, use_rustfmt: bool = True) -> str:
    """Format *source*, preferring ``rustfmt`` over the heuristic."""
    if use_rustfmt:
        formatted = format_with_rustfmt(source)
        if formatted is not None:
            return formatted
    return indent_source(source)


# ---------------------------------------------------------------------------
# rustfmt
# ---------------------------------------------------------------------------

def rustfmt_executable() -> Optional[str]:
    return shutil.which("rustfmt")


def format_with_rustfmt(source: str) -> Optional[str]:
    """Format through ``rustfmt``; ``None`` if unavailable or rejected."""
    exe = rustfmt_executable()
    if exe is None:
        return None
    formatted = _run_rustfmt(exe, source)
    if formatted is not None:
        return formatted.rstrip("\n")
    for header, footer in _WRAPPERS:
        wrapped = f"{header}\n{source}\n{footer}\n"
        formatted = _run_rustfmt(exe, wrapped)
        if formatted is not None:
            return _unwrap(formatted, header)
    return None


def _run_rustfmt(exe: str, source: str) -> Optional[str]:
    try:
        proc = subprocess.run(
            [exe, "--edition", "2021"],
            input=source,
            capture_output=True,
            text=True,
            timeout=RUSTFMT_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        _log.debug("rustfmt failed to run: %s", exc)
        return None
    if proc.returncode != 0:
        _log.debug("rustfmt rejected fragment: %s", proc.stderr.strip()[:200])
        return None
    return proc.stdout


def _unwrap(formatted: str, header: str) -> str:
    """Body of the first ``header ... }`` block, dedented one level."""
    body: List[str] = []
    state = _LexState()
    level = 0
    inside = False
    for line in formatted.splitlines():
        if not inside:
            if line.strip().startswith(header):
                inside = True
                level = 1
            continue
        for bracket in _scan_line(line, state):
            if bracket == "{":
                level += 1
            elif bracket == "}":
                level -= 1
        if level <= 0:
            break
        body.append(line)
    return textwrap.dedent("\n".join(body)).strip("\n")


# ---------------------------------------------------------------------------
# Heuristic indenter
# ---------------------------------------------------------------------------

@dataclass
class _LexState:
    """Lexical context carried from one line to the next."""

    comment_depth: int = 0
    string_end: Optional[str] = None   # '"' or '"#...' while inside a literal

    @property
    def in_string(self) -> bool:
        return self.string_end is not None


def _scan_line(line: str, state: _LexState) -> List[str]:
    """Bracket characters of *line* that belong to code; updates *state*."""
    brackets: List[str] = []
    i, n = 0, len(line)
    while i < n:
        if state.comment_depth:
            if line.startswith("*/", i):
                state.comment_depth -= 1
                i += 2
            elif line.startswith("/*", i):
                state.comment_depth += 1
                i += 2
            else:
                i += 1
            continue
        if state.string_end == '"':
            if line[i] == "\\":
                i += 2
            elif line[i] == '"':
                state.string_end = None
                i += 1
            else:
                i += 1
            continue
        if state.string_end is not None:
            if line.startswith(state.string_end, i):
                i += len(state.string_end)
                state.string_end = None
            else:
                i += 1
            continue
        ch = line[i]
        if line.startswith("//", i):
            break
        if line.startswith("/*", i):
            state.comment_depth = 1
            i += 2
            continue
        if ch == '"':
            state.string_end = '"'
            i += 1
            continue
        if ch in "br" and (i == 0 or not _is_ident_char(line[i - 1])):
            raw = _RAW_STRING_START.match(line, i)
            if raw:
                state.string_end = '"' + raw.group(1)
                i = raw.end()
                continue
        if ch == "'":
            literal = _CHAR_LITERAL.match(line, i)
            i = literal.end() if literal else i + 1
            continue
        if ch in _OPENERS or ch in _CLOSERS:
            brackets.append(ch)
        i += 1
    return brackets


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def ensure_complete_function(source: str) -> str:
    """Append a ``}`` line for every unmatched ``{`` in code."""
    state = _LexState()
    depth = 0
    for line in source.splitlines():
        for bracket in _scan_line(line, state):
            if bracket == "{":
                depth += 1
            elif bracket == "}":
                depth = max(depth - 1, 0)
    if depth <= 0:
        return source
    return source + "\n}" * depth


def indent_source(source: str) -> str:
    """Re-indent *source* by bracket nesting, four spaces per level."""
    source = ensure_complete_function(source)
    out: List[str] = []
    stack: List[int] = []          # line number of each unmatched opener
    state = _LexState()
    for lineno, line in enumerate(source.splitlines()):
        if state.in_string:
            out.append(line)
            _apply(_scan_line(line, state), stack, lineno)
            continue
        trimmed = line.strip()
        if not trimmed:
            if out:
                out.append("")
            continue
        brackets = _scan_line(line, state)
        leading = 0
        if trimmed[0] in _CLOSERS:
            while leading < len(brackets) and brackets[leading] in _CLOSERS:
                leading += 1
        remaining = stack[:max(len(stack) - leading, 0)]
        level = len(set(remaining))
        out.append(f"{INDENT * level}{trimmed}")
        _apply(brackets, stack, lineno)
    while out and not out[-1]:
        out.pop()
    return "\n".join(out)


def _apply(brackets: List[str], stack: List[int], lineno: int) -> None:
    for bracket in brackets:
        if bracket in _OPENERS:
            stack.append(lineno)
        elif stack:
            stack.pop()
