# tests/test_analyzer.py
"""End-to-end tests of FileAnalyzer and DirectoryScheduler."""

import logging
from unittest.mock import patch

import pytest

from unsafe_paths.analyzer import (
    DirectoryScheduler,
    FileAnalyzer,
    collect_rust_files,
    relevant_type_definitions,
)
from unsafe_paths.config import AnalyzerConfig
from unsafe_paths.errors import AnalysisTimeoutError, SourceReadError, VisitorCrashError
from unsafe_paths.models import UnsafeOpKind
from tests.conftest import (
    CYCLE,
    PUBLIC_SINK,
    PUBLIC_UNSAFE_FN,
    QUEUE_MODULE,
    SIMPLE_CHAIN,
    THREE_STEP_CHAIN,
    analyze,
    path_names,
)


def _analyzer(**config):
    return FileAnalyzer(AnalyzerConfig(use_rustfmt=False, **config))


class TestScenariosFromSource:

    def test_simple_chain(self):
        result = analyze(SIMPLE_CHAIN)
        assert path_names(result) == [["outer", "inner"]]
        sink = result.paths[0][-1]
        assert [op.kind for op in sink.unsafe_operations] == [UnsafeOpKind.RAW_POINTER_DEREF]

    def test_three_step_chain(self):
        assert path_names(analyze(THREE_STEP_CHAIN)) == [["a", "b", "c"]]

    def test_public_sink_is_degenerate(self):
        assert path_names(analyze(PUBLIC_SINK)) == [["b"]]

    def test_public_unsafe_fn_yields_nothing(self):
        assert analyze(PUBLIC_UNSAFE_FN) is None

    def test_cycle_yields_nothing(self):
        assert analyze(CYCLE) is None

    def test_methods_and_free_functions(self):
        assert path_names(analyze(QUEUE_MODULE)) == [["push", "grow"], ["drain", "flush"]]

    def test_paths_inside_modules(self):
        result = analyze("""
        pub mod io {
            pub fn write_all(buf: &[u8]) {
                raw_write(buf);
            }

            fn raw_write(buf: &[u8]) {
                unsafe {
                    libc_write(buf.as_ptr(), buf.len());
                }
            }
        }
        """)
        assert path_names(result) == [["io::write_all", "io::raw_write"]]

    def test_deeply_nested_expressions(self):
        chain = "x" + ".m()" * 400
        result = analyze(f"""
        pub fn a() {{
            b();
        }}

        fn b() {{
            let _y = {chain};
            unsafe {{
                let _z = {chain};
                core::hint::unreachable_unchecked();
            }}
        }}
        """)
        assert path_names(result) == [["a", "b"]]
        (sink,) = [path[-1] for path in result.paths]
        assert [op.description for op in sink.unsafe_operations] == [
            "call to unsafe function `core::hint::unreachable_unchecked`"
        ]

    def test_graph_statistics_are_attached(self):
        stats = analyze(SIMPLE_CHAIN).graph_statistics
        assert stats["functions"] == 2
        assert stats["unsafe_functions"] == 1


class TestRelevantTypes:

    def test_origin_parameter_types_are_selected(self):
        result = analyze(QUEUE_MODULE)
        assert list(result.type_definitions) == ["Queue"]
        constructors = result.type_definitions["Queue"].constructors
        assert "pub fn new() -> Self" in constructors[0]
        assert constructors[1].startswith("impl Default for Queue")
        notes = [c for c in constructors if "// Call chain #" in c]
        assert len(notes) == 4
        assert "// Call chain #1 - Step #1 - Function: push - Uses type as: parameters" in notes[0]
        assert "// Call chain #2 - Step #2 - Function: flush - Uses type as: parameters" in notes[3]

    def test_types_used_only_after_the_origin_are_ignored(self):
        result = analyze("""
        pub struct Hidden;

        pub fn entry() {
            helper(Hidden);
        }

        fn helper(h: Hidden) {
            unsafe {}
        }
        """)
        assert path_names(result) == [["entry", "helper"]]
        assert result.type_definitions == {}

    def test_definitions_are_copies(self):
        result = analyze(QUEUE_MODULE)
        copy = result.type_definitions["Queue"]
        again = relevant_type_definitions(result.paths, {"Queue": copy})
        assert again["Queue"] is not copy

    def test_no_duplicate_annotations(self):
        result = analyze(QUEUE_MODULE)
        constructors = result.type_definitions["Queue"].constructors
        assert len(constructors) == len(set(constructors))

    def test_shared_sink_is_annotated_once(self):
        result = analyze("""
        pub struct Buf {
            len: usize,
        }

        pub fn a(b: &mut Buf) {
            sink(b);
        }

        pub fn c(b: &mut Buf) {
            sink(b);
        }

        fn sink(b: &mut Buf) {
            let len = b.len;
            unsafe {
                core::hint::unreachable_unchecked();
            }
        }
        """)
        assert path_names(result) == [["a", "sink"], ["c", "sink"]]
        notes = result.type_definitions["Buf"].constructors
        assert sum("Function: sink -" in note for note in notes) == 1
        assert sum("Function: a -" in note for note in notes) == 1
        assert sum("Function: c -" in note for note in notes) == 1


class TestFailurePolicy:

    def test_parse_error_is_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="unsafe_paths"):
            assert analyze("pub fn broken( { unsafe {} }") is None
        assert "syntax error" in caplog.text

    def test_tolerant_parse_analyses_anyway(self):
        source = """
        pub fn a() { b(); }
        fn b() { unsafe {} }
        fn broken( {
        """
        assert analyze(source) is None
        assert path_names(analyze(source, strict_parse=False))[:1] == [["a", "b"]]

    def test_timeout_discards_results(self):
        with pytest.raises(AnalysisTimeoutError) as info:
            _analyzer(timeout_seconds=0).analyze_source(SIMPLE_CHAIN, "lib.rs")
        assert info.value.limit == 0
        assert info.value.file_path == "lib.rs"

    @pytest.mark.parametrize("target, visitor", [
        ("unsafe_paths.analyzer.FunctionVisitor.visit", "function"),
        ("unsafe_paths.analyzer.CallVisitor.visit", "call"),
    ])
    def test_visitor_crash_is_wrapped(self, target, visitor):
        with patch(target, side_effect=RuntimeError("unexpected node")):
            with pytest.raises(VisitorCrashError) as info:
                _analyzer().analyze_source(SIMPLE_CHAIN, "lib.rs")
        assert info.value.visitor == visitor
        assert isinstance(info.value.__cause__, RuntimeError)


class TestPreFilter:

    def test_missing_markers(self, tmp_path):
        path = tmp_path / "plain.rs"
        path.write_text("pub fn f() {}\n", encoding="utf-8")
        assert _analyzer().analyze_file(path) is None

    def test_size_limit(self, tmp_path):
        path = tmp_path / "big.rs"
        path.write_text(SIMPLE_CHAIN + "// " + "x" * (1024 * 1024) + "\n", encoding="utf-8")
        assert _analyzer(file_size_limit_mb=1).analyze_file(path) is None
        assert _analyzer(file_size_limit_mb=2).analyze_file(path) is not None

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "latin1.rs"
        path.write_bytes(b"pub fn f() { unsafe {} } // \xff\xfe\n")
        with pytest.raises(SourceReadError):
            _analyzer().analyze_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceReadError):
            _analyzer().analyze_file(tmp_path / "gone.rs")


class TestCollectRustFiles:

    def test_sorted_recursive_and_pruned(self, crate):
        root = crate({
            "src/lib.rs": "",
            "src/a/mod.rs": "",
            "target/debug/gen.rs": "",
            "README.md": "",
        })
        files = collect_rust_files(root, frozenset({"target"}))
        assert [f.relative_to(root).as_posix() for f in files] == ["src/a/mod.rs", "src/lib.rs"]

    def test_symlinks_are_not_followed(self, crate):
        root = crate({"src/lib.rs": ""})
        try:
            (root / "link.rs").symlink_to(root / "src" / "lib.rs")
        except OSError:
            pytest.skip("symlinks not supported")
        files = collect_rust_files(root)
        assert [f.name for f in files] == ["lib.rs"]


class TestDirectoryScheduler:

    FILES = {
        "src/lib.rs": SIMPLE_CHAIN,
        "src/chain.rs": THREE_STEP_CHAIN,
        "src/safe.rs": "pub fn nothing() {}\n",
        "src/queue.rs": QUEUE_MODULE,
    }

    def test_runs_directory_in_parallel(self, crate):
        root = crate(self.FILES)
        scheduler = DirectoryScheduler(_analyzer(workers=4))
        results = scheduler.run(root)
        assert [r.file_path.rsplit("/", 1)[-1] for r in results] == [
            "chain.rs", "lib.rs", "queue.rs",
        ]
        stats = scheduler.stats
        assert stats.files_found == 4
        assert stats.files_processed == 4
        assert stats.files_with_results == 3
        assert stats.errors == 0
        assert stats.paths_found == 4

    def test_failures_are_isolated(self, crate):
        root = crate(self.FILES)
        (root / "src" / "bad.rs").write_bytes(b"pub fn f() { unsafe {} } \xff\n")
        (root / "src" / "broken.rs").write_text("pub fn x( { unsafe {} }\n", encoding="utf-8")
        scheduler = DirectoryScheduler(_analyzer(workers=2))
        results = scheduler.run(root)
        assert len(results) == 3
        assert scheduler.stats.errors == 1
        assert scheduler.stats.files_processed == 6

    def test_unexpected_exceptions_are_counted(self, crate):
        root = crate({"src/lib.rs": SIMPLE_CHAIN})
        scheduler = DirectoryScheduler(_analyzer())
        with patch.object(FileAnalyzer, "analyze_file", side_effect=MemoryError("oom")):
            assert scheduler.run(root) == []
        assert scheduler.stats.errors == 1

    def test_idempotent_across_runs(self, crate):
        root = crate(self.FILES)

        def signatures(workers):
            results = DirectoryScheduler(_analyzer(workers=workers)).run(root)
            return {r.file_path: r.path_signatures() for r in results}

        assert signatures(1) == signatures(4) == signatures(3)

    def test_single_file(self, crate):
        root = crate({"src/lib.rs": SIMPLE_CHAIN})
        results = DirectoryScheduler(_analyzer()).run(root / "src" / "lib.rs")
        assert path_names(results[0]) == [["outer", "inner"]]

    def test_non_rust_and_missing_inputs(self, crate, caplog):
        root = crate({"notes.txt": "pub fn unsafe"})
        scheduler = DirectoryScheduler(_analyzer())
        with caplog.at_level(logging.ERROR, logger="unsafe_paths"):
            assert scheduler.run(root / "notes.txt") == []
            assert scheduler.run(root / "missing") == []
        assert "neither a directory nor a .rs file" in caplog.text
        assert "does not exist" in caplog.text
