# tests/conftest.py
"""
Shared builders and Rust snippets for the unsafe_paths test-suite.

Graph-level tests build :class:`FunctionInfo` records directly with
:func:`make_function`; end-to-end tests feed the snippets below through
:func:`analyze`.
"""

import textwrap
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from unsafe_paths.analyzer import FileAnalyzer
from unsafe_paths.call_visitor import CallVisitor
from unsafe_paths.callgraph import CallGraph
from unsafe_paths.config import AnalyzerConfig
from unsafe_paths.function_visitor import FunctionVisitor, FunctionVisitResult
from unsafe_paths.models import (
    FileAnalysisResult,
    FunctionCall,
    FunctionInfo,
    PathNodeInfo,
    Visibility,
)
from unsafe_paths.syntax import parse_source


# ── Rust snippets ────────────────────────────────────────────────

SIMPLE_CHAIN = """
pub fn outer() {
    inner();
}

fn inner() -> i32 {
    let x = 5;
    let ptr = &x as *const i32;
    unsafe { *ptr }
}
"""

THREE_STEP_CHAIN = """
pub fn a() {
    b();
}

fn b() {
    c();
}

fn c() {
    unsafe {
        std::ptr::write_volatile(0x1000 as *mut u8, 0);
    }
}
"""

PUBLIC_SINK = """
pub fn a() {
    b();
}

pub fn b() {
    unsafe {
        core::hint::unreachable_unchecked();
    }
}
"""

PUBLIC_UNSAFE_FN = """
pub unsafe fn f() {
    let ptr = 0 as *const u8;
    let _ = *ptr;
}
"""

CYCLE = """
pub fn a() {
    b();
}

fn b() {
    a();
}
"""

QUEUE_MODULE = """
use std::mem;

/// A fixed-size queue.
#[derive(Debug)]
pub struct Queue {
    buf: Vec<u8>,
    len: usize,
}

impl Queue {
    /// Makes an empty queue.
    pub fn new() -> Self {
        Queue { buf: Vec::new(), len: 0 }
    }

    pub fn push(&mut self, value: u8) {
        self.grow(value);
    }

    fn grow(&mut self, value: u8) {
        unsafe {
            self.buf.set_len(self.len);
        }
        let _ = value;
    }
}

impl Default for Queue {
    fn default() -> Self {
        Queue::new()
    }
}

pub fn drain(queue: &mut Queue) {
    flush(queue);
}

fn flush(queue: &mut Queue) {
    let raw = queue.buf.as_mut_ptr();
    unsafe {
        *raw = 0;
    }
}
"""


def rust(source: str) -> str:
    return textwrap.dedent(source).lstrip("\n")


# ── Builders ─────────────────────────────────────────────────────

def make_function(
    name: str,
    public: bool = False,
    unsafe_decl: bool = False,
    internal: bool = False,
    module: str = "",
    **extra,
) -> FunctionInfo:
    return FunctionInfo(
        name=name,
        module_path=module,
        visibility=Visibility.PUBLIC if public else Visibility.MODULE,
        is_unsafe_declared=unsafe_decl,
        has_internal_unsafe=internal,
        source_code=extra.pop("source_code", f"fn {name}() {{}}"),
        **extra,
    )


def make_graph(
    functions: Iterable[FunctionInfo],
    edges: Sequence[Tuple[str, str]] = (),
    max_depth: int = 20,
) -> CallGraph:
    return CallGraph.build(
        {info.full_path: info for info in functions},
        [FunctionCall(caller, callee) for caller, callee in edges],
        max_depth,
    )


def make_node(full_path: str, public: bool = False, **extra) -> PathNodeInfo:
    return PathNodeInfo(
        full_path=full_path,
        visibility=Visibility.PUBLIC if public else Visibility.MODULE,
        source_code=extra.pop("source_code", f"fn {full_path.rsplit('::', 1)[-1]}() {{}}"),
        **extra,
    )


def visit_functions(source: str, file_path: str = "lib.rs") -> FunctionVisitResult:
    return FunctionVisitor(file_path).visit(parse_source(rust(source)))


def visit_calls(source: str) -> CallVisitor:
    visitor = CallVisitor()
    visitor.visit(parse_source(rust(source)))
    return visitor


def edges(source: str) -> List[Tuple[str, str]]:
    return [(c.caller, c.callee) for c in visit_calls(source).calls]


def analyze(source: str, **config) -> Optional[FileAnalysisResult]:
    analyzer = FileAnalyzer(AnalyzerConfig(use_rustfmt=False, **config))
    return analyzer.analyze_source(rust(source), "lib.rs")


def path_names(result: Optional[FileAnalysisResult]) -> List[List[str]]:
    if result is None:
        return []
    return [[node.full_path for node in path] for path in result.paths]


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def crate(tmp_path: Path):
    """Write ``{relative_path: source}`` under a temporary crate root."""

    def _write(files: Dict[str, str]) -> Path:
        for rel, source in files.items():
            target = tmp_path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(rust(source), encoding="utf-8")
        return tmp_path

    return _write
