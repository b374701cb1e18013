# tests/test_cli.py
"""Tests for the command line entry point."""

import json
import logging

import pytest

from unsafe_paths import __version__
from unsafe_paths.cli import EXIT_INTERRUPTED, EXIT_OK, _build_parser, config_from_args, main
from tests.conftest import QUEUE_MODULE, SIMPLE_CHAIN


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in (
        "UNSAFE_PATHS_MAX_DEPTH",
        "UNSAFE_PATHS_FILE_SIZE_LIMIT_MB",
        "UNSAFE_PATHS_TIMEOUT",
        "UNSAFE_PATHS_WORKERS",
        "UNSAFE_PATHS_NO_RUSTFMT",
    ):
        monkeypatch.delenv(key, raising=False)
    yield
    logger = logging.getLogger("unsafe_paths")
    for handler in list(logger.handlers):
        if handler.get_name() == "unsafe_paths.cli":
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


class TestMain:

    def test_text_report(self, crate, capsys):
        root = crate({"src/lib.rs": SIMPLE_CHAIN, "src/queue.rs": QUEUE_MODULE})
        out = root / "report.txt"
        assert main([str(root), str(out), "--no-rustfmt"]) == EXIT_OK
        text = out.read_text(encoding="utf-8")
        assert "pub mod lib {" in text
        assert "pub mod queue {" in text
        err = capsys.readouterr().err
        assert "Files found:         2" in err
        assert f"Report written to {out}" in err

    def test_json_report(self, crate):
        root = crate({"src/lib.rs": SIMPLE_CHAIN})
        out = root / "report.json"
        assert main([str(root), str(out), "--no-rustfmt", "-q", "--format", "json"]) == EXIT_OK
        document = json.loads(out.read_text(encoding="utf-8"))
        assert document["statistics"]["paths_found"] == 1
        assert document["files"][0]["groups"][0]["paths"] == ["pub fn outer -> fn inner"]

    def test_quiet_prints_nothing(self, crate, capsys):
        root = crate({"src/lib.rs": SIMPLE_CHAIN})
        assert main([str(root), str(root / "r.txt"), "--no-rustfmt", "-q"]) == EXIT_OK
        assert capsys.readouterr().err == ""

    def test_missing_input_still_exits_zero(self, tmp_path):
        out = tmp_path / "r.txt"
        assert main([str(tmp_path / "nowhere"), str(out), "-q"]) == EXIT_OK
        assert out.exists()

    def test_unwritable_output_is_logged(self, crate, caplog):
        root = crate({"src/lib.rs": SIMPLE_CHAIN})
        with caplog.at_level(logging.ERROR, logger="unsafe_paths"):
            code = main([str(root), str(root / "no" / "dir" / "r.txt"), "--no-rustfmt", "-q"])
        assert code == EXIT_OK
        assert "cannot write report" in caplog.text

    def test_invalid_config_is_logged(self, tmp_path, caplog):
        with caplog.at_level(logging.ERROR, logger="unsafe_paths"):
            code = main([str(tmp_path), str(tmp_path / "r.txt"), "--max-depth", "-1", "-q"])
        assert code == EXIT_OK
        assert "max_search_depth must be >= 0" in caplog.text

    def test_interrupt(self, tmp_path, monkeypatch):
        def interrupted(args):
            raise KeyboardInterrupt

        monkeypatch.setattr("unsafe_paths.cli.run", interrupted)
        assert main([str(tmp_path), "-q"]) == EXIT_INTERRUPTED

    def test_unexpected_exception_exits_zero(self, tmp_path, monkeypatch, caplog):
        def broken(args):
            raise RuntimeError("boom")

        monkeypatch.setattr("unsafe_paths.cli.run", broken)
        with caplog.at_level(logging.ERROR, logger="unsafe_paths"):
            assert main([str(tmp_path), "-q"]) == EXIT_OK
        assert "Unhandled exception: boom" in caplog.text


class TestParser:

    def test_defaults(self):
        args = _build_parser().parse_args(["src"])
        assert args.output == "unsafe_paths.txt"
        assert args.format == "text"
        assert args.verbose == 0

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as info:
            _build_parser().parse_args(["--version"])
        assert info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_bad_format_is_a_usage_error(self, capsys):
        assert main(["src", "--format", "xml"]) == EXIT_OK
        err = capsys.readouterr().err
        assert "usage:" in err
        assert "invalid choice" in err

    def test_missing_arguments_exit_zero(self, capsys):
        assert main([]) == EXIT_OK
        assert "usage:" in capsys.readouterr().err


class TestConfigFromArgs:

    def test_flags_override_environment(self):
        args = _build_parser().parse_args(["src", "--max-depth", "5", "--no-rustfmt"])
        config = config_from_args(args, {"UNSAFE_PATHS_MAX_DEPTH": "9", "UNSAFE_PATHS_WORKERS": "3"})
        assert config.max_search_depth == 5
        assert config.workers == 3
        assert config.use_rustfmt is False
        assert config.strict_parse is True

    def test_environment_over_defaults(self):
        args = _build_parser().parse_args(["src", "--tolerant-parse"])
        config = config_from_args(args, {"UNSAFE_PATHS_TIMEOUT": "2.5"})
        assert config.timeout_seconds == 2.5
        assert config.max_search_depth == 20
        assert config.strict_parse is False
