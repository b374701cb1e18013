"""
unsafe_paths: call chains from safe public Rust APIs into unsafe code
======================================================================

Static analysis of Rust source trees.  For every file the package builds a
call graph, classifies each function as public / unsafe-declared /
internally unsafe, and reports every minimal chain that starts at a public
function without an ``unsafe`` signature and ends at a non-public function
that contains unsafe code.

Core modules
------------
config
    ``AnalyzerConfig`` and the lookup tables used by the visitors.
errors
    Exception hierarchy.
models
    Function records, type definitions, paths and per-file results.
syntax
    tree-sitter Rust parser adapter and node helpers.
unsafe_ops
    Classification of unsafe operations inside unsafe code.
function_visitor
    First pass: functions, type definitions and constructors.
call_visitor
    Second pass: imports and call edges.
callgraph
    Call graph, node classes and the path search.
analyzer
    Per-file pipeline and the threaded directory scheduler.
beautify
    rustfmt / re-indentation of reported fragments.
report
    Text and JSON reports, console summary.

Quick start
-----------
>>> from unsafe_paths import FileAnalyzer
>>> result = FileAnalyzer().analyze_source(
...     "pub fn outer() { inner() }\\nfn inner() { unsafe {} }\\n")
>>> [[n.full_path for n in p] for p in result.paths]
[['outer', 'inner']]

Package layout
--------------
::

    unsafe_paths/
    ├── __init__.py            ← this file
    ├── __main__.py
    ├── cli.py
    ├── config.py
    ├── errors.py
    ├── models.py
    ├── syntax.py
    ├── unsafe_ops.py
    ├── function_visitor.py
    ├── call_visitor.py
    ├── callgraph.py
    ├── analyzer.py
    ├── beautify.py
    └── report.py
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import TYPE_CHECKING, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.2.0"
__author__ = "unsafe-paths contributors"
__license__ = "MIT"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "UnsafePathsError",
        "ConfigError",
        "FileAnalysisError",
        "SourceReadError",
        "SourceParseError",
        "VisitorCrashError",
        "AnalysisTimeoutError",
        "ReportWriteError",
    ],
    "config": [
        "AnalyzerConfig",
    ],
    "models": [
        "Visibility",
        "UnsafeOpKind",
        "UnsafeOperation",
        "FunctionInfo",
        "TypeDefinition",
        "FunctionCall",
        "PathNodeInfo",
        "FileAnalysisResult",
        "format_path_with_visibility",
    ],
    "syntax": [
        "SyntaxTree",
        "parse_source",
        "node_text",
    ],
    "unsafe_ops": [
        "UnsafeOpDetector",
    ],
    "function_visitor": [
        "FunctionVisitor",
        "FunctionVisitResult",
    ],
    "call_visitor": [
        "CallVisitor",
    ],
    "callgraph": [
        "CallGraph",
        "callgraph_summary",
    ],
    "analyzer": [
        "FileAnalyzer",
        "DirectoryScheduler",
        "RunStatistics",
        "collect_rust_files",
    ],
    "beautify": [
        "beautify_source",
        "indent_source",
    ],
    "report": [
        "ReportWriter",
        "print_summary",
        "filter_doc_comments",
        "extract_method_from_impl",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace.

    A missing submodule or symbol is fatal.
    """
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"unsafe_paths: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        obj = getattr(mod, name, None)
        if obj is None:
            raise AttributeError(
                f"unsafe_paths.{module_rel_name} does not export '{name}'"
            )
        setattr(current_module, name, obj)
        __all__.append(name)

    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


# ---------------------------------------------------------------------------
# Eagerly import everything at package load time
# ---------------------------------------------------------------------------

for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


# ---------------------------------------------------------------------------
# Package-level utilities
# ---------------------------------------------------------------------------

def list_submodules() -> List[str]:
    """Return the names of all registered submodules."""
    return sorted(_CORE_MODULES)


def package_info() -> dict:
    """Version, interpreter and loaded submodules, for diagnostics."""
    loaded = [m for m in list_submodules() if f"{__name__}.{m}" in sys.modules]
    return {
        "package": __name__,
        "version": __version__,
        "python": sys.version,
        "loaded_submodules": loaded,
        "all_exports": list(__all__),
    }


__all__ += ["list_submodules", "package_info", "__version__"]

# ---------------------------------------------------------------------------
# TYPE_CHECKING block: static names for IDEs and type checkers
# ---------------------------------------------------------------------------

if TYPE_CHECKING:
    from .errors import (
        UnsafePathsError as UnsafePathsError,
        ConfigError as ConfigError,
        FileAnalysisError as FileAnalysisError,
        SourceReadError as SourceReadError,
        SourceParseError as SourceParseError,
        VisitorCrashError as VisitorCrashError,
        AnalysisTimeoutError as AnalysisTimeoutError,
        ReportWriteError as ReportWriteError,
    )
    from .config import AnalyzerConfig as AnalyzerConfig
    from .models import (
        Visibility as Visibility,
        UnsafeOpKind as UnsafeOpKind,
        UnsafeOperation as UnsafeOperation,
        FunctionInfo as FunctionInfo,
        TypeDefinition as TypeDefinition,
        FunctionCall as FunctionCall,
        PathNodeInfo as PathNodeInfo,
        FileAnalysisResult as FileAnalysisResult,
        format_path_with_visibility as format_path_with_visibility,
    )
    from .syntax import (
        SyntaxTree as SyntaxTree,
        parse_source as parse_source,
        node_text as node_text,
    )
    from .unsafe_ops import UnsafeOpDetector as UnsafeOpDetector
    from .function_visitor import (
        FunctionVisitor as FunctionVisitor,
        FunctionVisitResult as FunctionVisitResult,
    )
    from .call_visitor import CallVisitor as CallVisitor
    from .callgraph import (
        CallGraph as CallGraph,
        callgraph_summary as callgraph_summary,
    )
    from .analyzer import (
        FileAnalyzer as FileAnalyzer,
        DirectoryScheduler as DirectoryScheduler,
        RunStatistics as RunStatistics,
        collect_rust_files as collect_rust_files,
    )
    from .beautify import (
        beautify_source as beautify_source,
        indent_source as indent_source,
    )
    from .report import (
        ReportWriter as ReportWriter,
        print_summary as print_summary,
        filter_doc_comments as filter_doc_comments,
        extract_method_from_impl as extract_method_from_impl,
    )
