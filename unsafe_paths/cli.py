"""unsafe_paths/cli.py: command line entry point.

Usage examples
--------------
    # Analyse a crate and write the text report to unsafe_paths.txt
    unsafe-paths path/to/crate

    # Analyse one file, JSON report, verbose progress
    unsafe-paths src/lib.rs report.json --format json -v

    # Deeper search, no rustfmt, four workers
    unsafe-paths . --max-depth 40 --no-rustfmt --workers 4

Exit codes
----------
    0     Always, including an invalid command line (usage is printed to
          stderr).  Per-file failures are logged and counted in the
          summary, never turned into a failing exit.
    130   Interrupted by the user.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from typing import NoReturn, Optional, Sequence

from .analyzer import DirectoryScheduler, FileAnalyzer
from .config import DEFAULT_OUTPUT_FILE, AnalyzerConfig
from .errors import UnsafePathsError
from .report import REPORT_FORMATS, ReportWriter, print_summary

_log = logging.getLogger("unsafe_paths")

EXIT_OK: int = 0
EXIT_INTERRUPTED: int = 130

_HANDLER_NAME = "unsafe_paths.cli"


class _UsageError(Exception):
    """Raised by the parser in place of exiting with status 2."""


class _ArgumentParser(argparse.ArgumentParser):
    """Reports command line errors without a failing exit status."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        print(f"{self.prog}: error: {message}", file=sys.stderr)
        raise _UsageError(message)


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``unsafe_paths`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("unsafe_paths")
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.setLevel(level)
    root.addHandler(handler)


def _build_parser() -> argparse.ArgumentParser:
    from . import __version__

    parser = _ArgumentParser(
        prog="unsafe-paths",
        description=(
            "Find call chains from public, non-unsafe Rust functions "
            "to functions containing unsafe code."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            environment:
              UNSAFE_PATHS_MAX_DEPTH, UNSAFE_PATHS_FILE_SIZE_LIMIT_MB,
              UNSAFE_PATHS_TIMEOUT, UNSAFE_PATHS_WORKERS,
              UNSAFE_PATHS_NO_RUSTFMT (flags take precedence)
        """),
    )
    parser.add_argument(
        "input",
        help="Rust source file or directory to analyse",
    )
    parser.add_argument(
        "output",
        nargs="?",
        default=DEFAULT_OUTPUT_FILE,
        help=f"report path (default: {DEFAULT_OUTPUT_FILE})",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-f", "--format",
        choices=REPORT_FORMATS,
        default="text",
        help="report format (default: text)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="increase log verbosity (-v INFO, -vv DEBUG)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="do not print the run summary",
    )

    g = parser.add_argument_group("analysis tuning")
    g.add_argument(
        "--max-depth",
        type=int,
        default=None,
        metavar="N",
        help="maximum call-chain search depth (default: 20)",
    )
    g.add_argument(
        "--file-size-limit",
        type=int,
        default=None,
        metavar="MB",
        help="skip files larger than MB megabytes (default: 10)",
    )
    g.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="per-file analysis budget (default: 30)",
    )
    g.add_argument(
        "-j", "--workers",
        type=int,
        default=None,
        metavar="N",
        help="worker threads for directories (default: CPU count)",
    )
    g.add_argument(
        "--no-rustfmt",
        action="store_true",
        help="never call rustfmt; use the built-in re-indenter",
    )
    g.add_argument(
        "--tolerant-parse",
        action="store_true",
        help="analyse files with syntax errors best-effort instead of skipping them",
    )
    return parser


def config_from_args(
    args: argparse.Namespace,
    environ: Optional[dict] = None,
) -> AnalyzerConfig:
    """Flags over environment over defaults."""
    config = AnalyzerConfig.from_env(environ)
    return config.with_overrides(
        max_search_depth=args.max_depth,
        file_size_limit_mb=args.file_size_limit,
        timeout_seconds=args.timeout,
        workers=args.workers,
        use_rustfmt=False if args.no_rustfmt else None,
        strict_parse=False if args.tolerant_parse else None,
    ).validate()


def run(args: argparse.Namespace) -> int:
    config = config_from_args(args)
    scheduler = DirectoryScheduler(FileAnalyzer(config))
    results = scheduler.run(args.input)
    ReportWriter(use_rustfmt=config.use_rustfmt).write(
        results, args.output, fmt=args.format, stats=scheduler.stats
    )
    if not args.quiet:
        print_summary(scheduler.stats)
        print(f"Report written to {args.output}", file=sys.stderr)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except _UsageError:
        return EXIT_OK

    _configure_logging(args.verbose)

    try:
        return run(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return EXIT_INTERRUPTED
    except UnsafePathsError as exc:
        _log.error("%s", exc)
        return EXIT_OK
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_OK


# ---------------------------------------------------------------------------
# Module execution support
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    raise SystemExit(main())
