"""
unsafe_paths.report
===================

Output of a run: the text report, the JSON report and the console summary.

The text report is Rust-flavoured so editors highlight it.  One
``pub mod`` per analysed file holds one ``pub mod group_N`` per unsafe
sink, with:

* the numbered list of paths into that sink,
* the custom types taken by the origins' parameters, each followed by an
  ``impl`` block with its safe constructors, the usage notes and the path
  methods that belong to it,
* every remaining function of the group exactly once, labelled
  ``public entry point``, ``unsafe implementation`` or
  ``intermediate function``.

The file is for reading only; it is not meant to compile.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO, Tuple

from termcolor import colored

from .analyzer import RunStatistics
from .beautify import INDENT, beautify_source, indent_source
from .errors import ReportWriteError
from .models import (
    FileAnalysisResult,
    PathNodeInfo,
    TypeDefinition,
    UnsafePath,
    format_path_with_visibility,
    simple_name,
)

_log = logging.getLogger(__name__)

ROLE_ENTRY = "public entry point"
ROLE_SINK = "unsafe implementation"
ROLE_INTERMEDIATE = "intermediate function"

REPORT_FORMATS = ("text", "json")

_RULE = "// " + "=" * 60
_DOC_PREFIXES = ("///", "/**", "*/", "* ")
_ANNOTATION_MARKER = "// Call chain #"
_ITEM_KEYWORD = re.compile(r"\b(struct|enum|union|type)\b")
_LEADING_VISIBILITY = re.compile(r"^(pub(\s*\([^)]*\))?|crate)\s+")
_RUST_KEYWORDS = frozenset({
    "as", "async", "await", "break", "const", "continue", "crate", "dyn",
    "else", "enum", "extern", "false", "fn", "for", "if", "impl", "in",
    "let", "loop", "match", "mod", "move", "mut", "pub", "ref", "return",
    "self", "Self", "static", "struct", "super", "trait", "true", "type",
    "unsafe", "use", "where", "while", "abstract", "become", "box", "do",
    "final", "macro", "override", "priv", "typeof", "unsized", "virtual",
    "yield", "try",
})


# ═════════════════════════════════════════════════════════════════════════
#  SOURCE FRAGMENT HELPERS
# ═════════════════════════════════════════════════════════════════════════

def filter_doc_comments(source: str) -> str:
    """Drop ``///`` and ``/** */`` documentation lines."""
    return "\n".join(
        line for line in source.splitlines()
        if not line.strip().startswith(_DOC_PREFIXES)
    )


def extract_method_from_impl(source: str) -> str:
    """The ``fn`` items of an ``impl ... { }`` fragment, without the wrapper.

    Fragments that contain no ``impl`` only lose their doc comments.
    """
    if "impl" not in source:
        return filter_doc_comments(source)
    kept: List[str] = []
    in_method = False
    depth = 0
    for line in source.splitlines():
        trimmed = line.strip()
        if trimmed.startswith(_DOC_PREFIXES):
            continue
        if not in_method and trimmed.startswith("impl") and "{" in trimmed:
            continue
        if not in_method and re.search(r"\bfn\s", trimmed):
            in_method = True
            depth = trimmed.count("{") - trimmed.count("}")
            kept.append(trimmed)
            if depth <= 0 and "{" in trimmed:
                in_method = False
            continue
        if in_method:
            kept.append(trimmed)
            depth += trimmed.count("{") - trimmed.count("}")
            if depth <= 0:
                in_method = False
    return indent_source("\n".join(kept))


def module_identifier(file_path: str) -> str:
    """A Rust identifier derived from the file stem."""
    stem = Path(file_path).stem or "unknown_module"
    ident = re.sub(r"\W", "_", stem)
    if ident[0].isdigit():
        ident = f"_{ident}"
    if ident in _RUST_KEYWORDS:
        ident = f"{ident}_rs"
    return ident


def _indent_block(text: str, prefix: str) -> List[str]:
    return [f"{prefix}{line}" if line.strip() else "" for line in text.splitlines()]


def _normalize_type_visibility(source: str, prefix: str) -> str:
    lines = source.splitlines()
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("#") or not _ITEM_KEYWORD.search(stripped):
            continue
        lines[i] = prefix + _LEADING_VISIBILITY.sub("", stripped)
        break
    return "\n".join(lines)


# ═════════════════════════════════════════════════════════════════════════
#  PATH GROUPS
# ═════════════════════════════════════════════════════════════════════════

class PathGroup:
    """All paths of one file that end in the same sink."""

    def __init__(self, sink: str, paths: List[UnsafePath]) -> None:
        self.sink = sink
        self.paths = paths

    @property
    def sink_name(self) -> str:
        return simple_name(self.sink)

    def functions(self) -> List[Tuple[PathNodeInfo, str]]:
        """Every distinct function of the group with its role.

        Entry points come first, then sinks, then intermediates.  A function
        that is both origin and sink is labelled as the sink.
        """
        sinks = {path[-1].full_path for path in self.paths}
        entries = {path[0].full_path for path in self.paths}
        ordered: Dict[str, PathNodeInfo] = {}
        for path in self.paths:
            ordered.setdefault(path[0].full_path, path[0])
        for path in self.paths:
            ordered.setdefault(path[-1].full_path, path[-1])
        for path in self.paths:
            for node in path[1:-1]:
                ordered.setdefault(node.full_path, node)
        result = []
        for name, node in ordered.items():
            if name in sinks:
                role = ROLE_SINK
            elif name in entries:
                role = ROLE_ENTRY
            else:
                role = ROLE_INTERMEDIATE
            result.append((node, role))
        return result

    def relevant_types(self, result: FileAnalysisResult) -> List[str]:
        """Keys of the type definitions used by the origins' parameters."""
        wanted = set()
        for path in self.paths:
            wanted.update(path[0].param_custom_types)
        return [
            key for key in sorted(result.type_definitions)
            if simple_name(key) in wanted
        ]


def group_paths(result: FileAnalysisResult) -> List[PathGroup]:
    return [PathGroup(sink, paths) for sink, paths in result.paths_by_sink().items()]


# ═════════════════════════════════════════════════════════════════════════
#  REPORT WRITER
# ═════════════════════════════════════════════════════════════════════════

class ReportWriter:
    """Renders analysis results to text or JSON.

    Parameters
    ----------
    use_rustfmt : bool
        Passed to :func:`~unsafe_paths.beautify.beautify_source`.
    clock : callable
        Returns the generation timestamp (injectable for tests).
    """

    def __init__(
        self,
        use_rustfmt: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.use_rustfmt = use_rustfmt
        self.clock = clock

    # ── public API ───────────────────────────────────────────────────

    def write(
        self,
        results: Sequence[FileAnalysisResult],
        output_path: str,
        fmt: str = "text",
        stats: Optional[RunStatistics] = None,
    ) -> None:
        if fmt not in REPORT_FORMATS:
            raise ReportWriteError(f"unknown report format {fmt!r}", output_path)
        content = self.render_json(results, stats) if fmt == "json" else self.render_text(results)
        try:
            Path(output_path).write_text(content, encoding="utf-8")
        except OSError as exc:
            raise ReportWriteError(f"cannot write report: {exc}", output_path) from exc
        _log.info("Wrote %s report for %d file(s) to %s", fmt, len(results), output_path)

    def render_json(
        self,
        results: Sequence[FileAnalysisResult],
        stats: Optional[RunStatistics] = None,
    ) -> str:
        from . import __version__

        files = []
        for result in results:
            if not result.paths:
                continue
            entry = result.to_dict()
            entry["groups"] = [
                {
                    "sink": group.sink,
                    "paths": [format_path_with_visibility(p) for p in group.paths],
                }
                for group in group_paths(result)
            ]
            files.append(entry)
        document: Dict[str, Any] = {
            "tool": "unsafe-paths",
            "version": __version__,
            "generated": self.clock().strftime("%Y-%m-%d %H:%M:%S"),
            "statistics": stats.to_dict() if stats is not None else {},
            "files": files,
        }
        return json.dumps(document, indent=2) + "\n"

    def render_text(self, results: Sequence[FileAnalysisResult]) -> str:
        lines = self._header()
        seen_files = set()
        used_modules: Dict[str, int] = {}
        for result in results:
            if not result.paths or result.file_path in seen_files:
                continue
            seen_files.add(result.file_path)
            module = module_identifier(result.file_path)
            used_modules[module] = used_modules.get(module, 0) + 1
            if used_modules[module] > 1:
                module = f"{module}_{used_modules[module]}"
            lines.extend(self._render_file(result, module))
        return "\n".join(lines) + "\n"

    # ── layout ───────────────────────────────────────────────────────

    def _header(self) -> List[str]:
        return [
            "// Auto-generated Rust source: call paths from public functions to unsafe code",
            "// Syntax-highlightable, for reading only; do not compile or run",
            f"// Generated: {self.clock().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            "#![allow(dead_code)]",
            "#![allow(unused_variables)]",
            "#![allow(unused_imports)]",
            "#![allow(non_snake_case)]",
            "",
            "// Analysis results",
            "",
        ]

    def _render_file(self, result: FileAnalysisResult, module: str) -> List[str]:
        groups = group_paths(result)
        lines = [
            _RULE,
            f"// File: {result.file_path}",
            _RULE,
            "",
            f"pub mod {module} {{",
            f"{INDENT}// Found {len(groups)} group(s) of paths to unsafe functions",
        ]
        for index, group in enumerate(groups, start=1):
            lines.extend(self._render_group(result, group, index))
        lines.append(f"}} // end of module {module}")
        lines.append("")
        return lines

    def _render_group(
        self,
        result: FileAnalysisResult,
        group: PathGroup,
        index: int,
    ) -> List[str]:
        pad = INDENT * 2
        name = f"group_{index}"
        lines = [
            "",
            f"{INDENT}// Group {index}: paths to unsafe function: {group.sink_name}",
            f"{INDENT}pub mod {name} {{",
            f"{pad}// Paths:",
        ]
        for path_index, path in enumerate(group.paths, start=1):
            lines.append(f"{pad}// {index}.{path_index} {format_path_with_visibility(path)}")

        functions = group.functions()
        rendered: set = set()
        type_keys = group.relevant_types(result)
        if type_keys:
            lines.append("")
            lines.append(f"{pad}// Relevant custom types:")
            for key in type_keys:
                lines.extend(
                    self._render_type(result.type_definitions[key], key, functions, rendered)
                )

        remaining = [(n, r) for n, r in functions if n.full_path not in rendered]
        if remaining:
            lines.append(f"{pad}// Functions:")
            for node, role in remaining:
                lines.append(f"{pad}// {role}: {node.full_path}")
                source = filter_doc_comments(self._beautify(node.source_code))
                lines.extend(_indent_block(source, pad))
                lines.append("")
        lines.append(f"{INDENT}}} // end of module {name}")
        return lines

    def _render_type(
        self,
        definition: TypeDefinition,
        key: str,
        functions: List[Tuple[PathNodeInfo, str]],
        rendered: set,
    ) -> List[str]:
        pad = INDENT * 2
        inner = INDENT * 3
        type_name = simple_name(key)
        source = filter_doc_comments(self._beautify(definition.source_code))
        source = _normalize_type_visibility(source, definition.visibility.prefix)
        lines = [f"{pad}// Type: {key}"]
        lines.extend(_indent_block(source, pad))

        methods = [
            (node, role) for node, role in functions
            if node.has_self_param and node.owner_type == type_name
            and node.full_path not in rendered
        ]
        if not methods and not definition.constructors:
            lines.append("")
            return lines

        lines.append("")
        lines.append(f"{pad}impl {type_name} {{")
        for fragment in definition.constructors:
            if _ANNOTATION_MARKER in fragment:
                note = next(
                    l.strip() for l in fragment.splitlines() if _ANNOTATION_MARKER in l
                )
                lines.append(f"{inner}{note}")
                continue
            method = extract_method_from_impl(self._beautify(fragment))
            lines.extend(_indent_block(method, inner))
        for node, role in methods:
            rendered.add(node.full_path)
            lines.append("")
            lines.append(f"{inner}// {role}: {node.full_path}")
            method = extract_method_from_impl(self._beautify(node.source_code))
            lines.extend(_indent_block(method, inner))
        lines.append(f"{pad}}}")
        lines.append("")
        return lines

    def _beautify(self, source: str) -> str:
        return beautify_source(source, use_rustfmt=self.use_rustfmt)


# ═════════════════════════════════════════════════════════════════════════
#  CONSOLE SUMMARY
# ═════════════════════════════════════════════════════════════════════════

def summary_lines(stats: RunStatistics) -> List[str]:
    errors = str(stats.errors)
    paths = str(stats.paths_found)
    return [
        colored("Analysis complete", "white", attrs=["bold"]),
        f"  Files found:         {stats.files_found}",
        f"  Files analysed:      {stats.files_processed}",
        f"  Files with results:  {stats.files_with_results}",
        f"  Errors:              {colored(errors, 'red', attrs=['bold']) if stats.errors else errors}",
        f"  Paths found:         {colored(paths, 'yellow', attrs=['bold']) if stats.paths_found else paths}",
        f"  Elapsed:             {stats.elapsed:.2f}s",
    ]


def print_summary(stats: RunStatistics, stream: Optional[TextIO] = None) -> None:
    """Write the run summary to *stream* (the current ``sys.stderr`` by default)."""
    if stream is None:
        stream = sys.stderr
    for line in summary_lines(stats):
        print(line, file=stream)
