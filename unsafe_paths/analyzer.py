"""
unsafe_paths.analyzer
=====================

Per-file orchestration and the directory scheduler.

:class:`FileAnalyzer` takes one file through the pipeline::

    pre-filter -> parse -> FunctionVisitor -> CallVisitor
               -> timeout check -> CallGraph -> path search
               -> relevant type definitions -> FileAnalysisResult

Each visitor pass runs behind its own crash barrier.  The timeout is only
measured, after both passes; a file that overruns is discarded entirely.

:class:`DirectoryScheduler` fans files out to a thread pool.  The only
state shared between workers is the result list and the run counters,
both guarded by one lock.  A failing file never stops the batch.

Failure policy
--------------
``analyze_file`` returns ``None`` when there is nothing to report:

* the pre-filter rejects the file (too large, or no ``unsafe`` / ``pub fn``),
* the file does not parse (logged, not counted as an error),
* no valid path exists.

It raises :class:`~unsafe_paths.errors.SourceReadError`,
:class:`~unsafe_paths.errors.VisitorCrashError` and
:class:`~unsafe_paths.errors.AnalysisTimeoutError`; the scheduler counts
those as errors.
"""

from __future__ import annotations

import logging
import os
import textwrap
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import (
    AbstractSet, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple,
    TypeVar, Union,
)

from .beautify import INDENT, indent_source
from .call_visitor import CallVisitor
from .callgraph import CallGraph, callgraph_summary
from .config import PUBLIC_FN_MARKER, UNSAFE_MARKER, AnalyzerConfig
from .errors import (
    AnalysisTimeoutError,
    FileAnalysisError,
    SourceParseError,
    SourceReadError,
    VisitorCrashError,
)
from .function_visitor import FunctionVisitor
from .models import (
    FileAnalysisResult,
    PathNodeInfo,
    TypeDefinition,
    UnsafePath,
    simple_name,
)
from .syntax import SyntaxTree, parse_source

_log = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]
T = TypeVar("T")

PROGRESS_INTERVAL = 100


# ---------------------------------------------------------------------------
# Type definitions relevant to a set of paths
# ---------------------------------------------------------------------------

def type_usage(node: PathNodeInfo, type_name: str) -> Optional[str]:
    """How *node* uses *type_name* in its signature, or ``None``."""
    in_params = type_name in node.param_custom_types
    in_return = type_name in node.return_custom_types
    if in_params and in_return:
        return "parameters and return value"
    if in_params:
        return "parameters"
    if in_return:
        return "return value"
    return None


def annotated_fragment(
    type_name: str,
    path_index: int,
    step: int,
    node: PathNodeInfo,
    usage: str,
) -> str:
    body = textwrap.indent(indent_source(node.source_code), INDENT)
    return (
        f"impl {type_name} {{\n"
        f"{INDENT}// Call chain #{path_index} - Step #{step} - "
        f"Function: {node.simple_name} - Uses type as: {usage}\n"
        f"{body}\n"
        f"}}"
    )


def relevant_type_definitions(
    paths: Sequence[UnsafePath],
    type_definitions: Dict[str, TypeDefinition],
) -> Dict[str, TypeDefinition]:
    """Types used by the parameters of each path's origin.

    Every selected type is a copy of its definition, extended with one
    annotated fragment per path function whose signature touches the type.
    A function is annotated once per type, on the first path that reaches
    it; functions already recorded as constructors are not annotated.
    """
    selected: Dict[str, TypeDefinition] = {}
    annotated: Set[Tuple[str, str]] = set()
    for path_index, path in enumerate(paths, start=1):
        if not path:
            continue
        for type_name in sorted(path[0].param_custom_types):
            for type_path, definition in type_definitions.items():
                if simple_name(type_path) != type_name:
                    continue
                entry = selected.get(type_path)
                if entry is None:
                    entry = selected[type_path] = definition.copy()
                for step, node in enumerate(path, start=1):
                    usage = type_usage(node, type_name)
                    if usage is None or (type_path, node.full_path) in annotated:
                        continue
                    annotated.add((type_path, node.full_path))
                    if any(node.source_code in existing for existing in entry.constructors):
                        continue
                    entry.constructors.append(
                        annotated_fragment(type_name, path_index, step, node, usage)
                    )
    return selected


# ---------------------------------------------------------------------------
# FileAnalyzer
# ---------------------------------------------------------------------------

class FileAnalyzer:
    """Runs the whole pipeline on single files.  Thread-safe."""

    def __init__(self, config: Optional[AnalyzerConfig] = None) -> None:
        self.config = (config or AnalyzerConfig()).validate()

    def read_candidate(self, file_path: PathLike) -> Optional[str]:
        """Source text if *file_path* passes the pre-filter, else ``None``."""
        path = Path(file_path)
        try:
            size = path.stat().st_size
            if size > self.config.file_size_limit_bytes:
                _log.info("Skipping %s: %d bytes exceeds the size limit", path, size)
                return None
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceReadError(f"cannot read file: {exc}", str(path)) from exc
        if UNSAFE_MARKER not in source or PUBLIC_FN_MARKER not in source:
            _log.debug("Skipping %s: no unsafe code or public function", path)
            return None
        return source

    def analyze_file(self, file_path: PathLike) -> Optional[FileAnalysisResult]:
        source = self.read_candidate(file_path)
        if source is None:
            return None
        return self.analyze_source(source, str(file_path))

    def analyze_source(
        self,
        source: str,
        file_path: str = "<memory>",
    ) -> Optional[FileAnalysisResult]:
        """Analyse already-loaded *source*; no pre-filter is applied."""
        started = time.monotonic()
        try:
            tree = self.parse(source, file_path)
        except SourceParseError as exc:
            _log.warning("Skipping %s", exc)
            return None

        functions, type_definitions, _ = self._run_pass(
            "function", file_path, lambda: FunctionVisitor(file_path).visit(tree)
        )
        calls = self._run_pass("call", file_path, lambda: CallVisitor().visit(tree))

        elapsed = time.monotonic() - started
        if elapsed >= self.config.timeout_seconds:
            raise AnalysisTimeoutError(
                f"analysis took {elapsed:.2f}s (limit {self.config.timeout_seconds:g}s)",
                file_path,
                elapsed=elapsed,
                limit=self.config.timeout_seconds,
            )

        graph = CallGraph.build(functions, calls, self.config.max_search_depth)
        if _log.isEnabledFor(logging.DEBUG):
            _log.debug("%s", callgraph_summary(graph, title=f"Call graph of {file_path}"))
        paths = graph.find_valid_paths()
        if not paths:
            return None
        _log.info("%s: %d path(s) to unsafe code", file_path, len(paths))
        return FileAnalysisResult(
            file_path=file_path,
            paths=paths,
            type_definitions=relevant_type_definitions(paths, type_definitions),
            graph_statistics=graph.statistics(),
        )

    def parse(self, source: str, file_path: str = "<memory>") -> SyntaxTree:
        """Parse *source*; raise :class:`SourceParseError` on syntax errors
        when the config is strict."""
        tree = parse_source(source)
        if tree.has_errors and self.config.strict_parse:
            raise SourceParseError(
                f"syntax error near line {tree.first_error_line()}", file_path
            )
        return tree

    @staticmethod
    def _run_pass(name: str, file_path: str, run: Callable[[], T]) -> T:
        try:
            return run()
        except Exception as exc:
            raise VisitorCrashError(
                f"{name} visitor crashed: {exc!r}", file_path, visitor=name
            ) from exc


# ---------------------------------------------------------------------------
# File discovery
# ---------------------------------------------------------------------------

def collect_rust_files(
    root: PathLike,
    exclude_dirs: AbstractSet[str] = frozenset(),
) -> List[Path]:
    """All ``*.rs`` files below *root*, sorted, without following symlinks."""
    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames[:] = sorted(d for d in dirnames if d not in exclude_dirs)
        for filename in filenames:
            if not filename.endswith(".rs"):
                continue
            candidate = Path(dirpath) / filename
            if candidate.is_file() and not candidate.is_symlink():
                found.append(candidate)
    return sorted(found)


# ---------------------------------------------------------------------------
# DirectoryScheduler
# ---------------------------------------------------------------------------

@dataclass
class RunStatistics:
    """Counters of one scheduler run."""

    files_found: int = 0
    files_processed: int = 0
    files_with_results: int = 0
    errors: int = 0
    paths_found: int = 0
    elapsed: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "files_found": self.files_found,
            "files_processed": self.files_processed,
            "files_with_results": self.files_with_results,
            "errors": self.errors,
            "paths_found": self.paths_found,
            "elapsed": round(self.elapsed, 3),
        }


class DirectoryScheduler:
    """Runs a :class:`FileAnalyzer` over many files on a thread pool.

    Parameters
    ----------
    analyzer : FileAnalyzer
    workers : int, optional
        Pool size; defaults to the analyzer config's worker count.
    """

    def __init__(
        self,
        analyzer: Optional[FileAnalyzer] = None,
        workers: Optional[int] = None,
    ) -> None:
        self.analyzer = analyzer or FileAnalyzer()
        self.workers = workers or self.analyzer.config.worker_count
        self.results: List[FileAnalysisResult] = []
        self.stats = RunStatistics()
        self._lock = threading.Lock()
        self._started = 0.0

    def run(self, target: PathLike) -> List[FileAnalysisResult]:
        """Analyse a directory tree or a single ``.rs`` file."""
        path = Path(target)
        if path.is_dir():
            files = collect_rust_files(path, self.analyzer.config.exclude_dirs)
            _log.info("Found %d Rust files under %s", len(files), path)
        elif path.is_file() and path.suffix == ".rs":
            files = [path]
        elif not path.exists():
            _log.error("Input path does not exist: %s", path)
            return []
        else:
            _log.error("Input is neither a directory nor a .rs file: %s", path)
            return []
        return self.run_files(files)

    def run_files(self, files: Iterable[PathLike]) -> List[FileAnalysisResult]:
        file_list = [Path(f) for f in files]
        self._started = time.monotonic()
        with self._lock:
            self.stats.files_found += len(file_list)
        if len(file_list) <= 1 or self.workers <= 1:
            for path in file_list:
                self._process(path, len(file_list))
        else:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                futures = [
                    pool.submit(self._process, path, len(file_list))
                    for path in file_list
                ]
                for future in futures:
                    future.result()
        with self._lock:
            self.stats.elapsed = time.monotonic() - self._started
            self.results.sort(key=lambda r: r.file_path)
            results = list(self.results)
        _log.info(
            "Analysis complete: %d files, %d with errors, %.2fs",
            self.stats.files_processed, self.stats.errors, self.stats.elapsed,
        )
        return results

    def _process(self, path: Path, total: int) -> None:
        result: Optional[FileAnalysisResult] = None
        failed = False
        try:
            result = self.analyzer.analyze_file(path)
        except FileAnalysisError as exc:
            _log.warning("%s", exc)
            failed = True
        except Exception as exc:
            _log.error("Unexpected error analysing %s: %r", path, exc)
            _log.debug("Traceback for %s", path, exc_info=True)
            failed = True
        with self._lock:
            self.stats.files_processed += 1
            if failed:
                self.stats.errors += 1
            if result is not None:
                self.results.append(result)
                self.stats.files_with_results += 1
                self.stats.paths_found += len(result.paths)
            done = self.stats.files_processed
        if done % PROGRESS_INTERVAL == 0 or done == total:
            _log.info(
                "Processed: %d/%d files (%.1f%%) Time: %.1fs",
                done, total, 100.0 * done / max(total, 1),
                time.monotonic() - self._started,
            )
