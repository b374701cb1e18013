"""
unsafe_paths.errors
===================

Exception hierarchy for the analyzer.

::

    UnsafePathsError (base)
    ├── ConfigError            - invalid configuration value
    ├── FileAnalysisError      - one input file could not be analysed
    │   ├── SourceReadError    - unreadable file / metadata
    │   ├── SourceParseError   - file is not valid Rust
    │   ├── VisitorCrashError  - a visitor pass hit an unexpected tree shape
    │   └── AnalysisTimeoutError - the per-file budget was exceeded
    └── ReportWriteError       - the report could not be written

A :class:`FileAnalysisError` never stops a batch: the scheduler logs it,
bumps its error counter and moves on to the next file.
"""

from __future__ import annotations

from typing import Optional


class UnsafePathsError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str, file_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.file_path = file_path

    def __str__(self) -> str:
        if self.file_path:
            return f"{self.file_path}: {self.message}"
        return self.message


class ConfigError(UnsafePathsError):
    """A configuration value is out of range."""


class FileAnalysisError(UnsafePathsError):
    """Base class for per-file failures."""


class SourceReadError(FileAnalysisError):
    """The file (or its metadata) could not be read."""


class SourceParseError(FileAnalysisError):
    """The parser rejected the file."""


class VisitorCrashError(FileAnalysisError):
    """A visitor pass raised while walking the tree."""

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        visitor: str = "",
    ) -> None:
        super().__init__(message, file_path)
        self.visitor = visitor


class AnalysisTimeoutError(FileAnalysisError):
    """Analysis took longer than the configured budget."""

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        elapsed: float = 0.0,
        limit: float = 0.0,
    ) -> None:
        super().__init__(message, file_path)
        self.elapsed = elapsed
        self.limit = limit


class ReportWriteError(UnsafePathsError):
    """The output artifact could not be written."""


__all__ = [
    "UnsafePathsError",
    "ConfigError",
    "FileAnalysisError",
    "SourceReadError",
    "SourceParseError",
    "VisitorCrashError",
    "AnalysisTimeoutError",
    "ReportWriteError",
]
