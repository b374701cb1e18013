"""
unsafe_paths.config
===================

Analyzer configuration and the fixed lookup tables used by the visitors.

Every table in this module is a ``frozenset`` built once at import time and
never mutated afterwards.  Worker threads read them concurrently without any
locking.

Configuration precedence
------------------------
1. Command line flags (see :mod:`unsafe_paths.cli`)
2. Environment variables (:meth:`AnalyzerConfig.from_env`)
3. Built-in defaults (:data:`DEFAULT_MAX_SEARCH_DEPTH` and friends)

Environment variables
---------------------
``UNSAFE_PATHS_MAX_DEPTH``
    Maximum call-chain search depth.
``UNSAFE_PATHS_FILE_SIZE_LIMIT_MB``
    Files larger than this are skipped by the pre-filter.
``UNSAFE_PATHS_TIMEOUT``
    Per-file analysis budget in seconds.
``UNSAFE_PATHS_WORKERS``
    Size of the worker pool used for directories.
``UNSAFE_PATHS_NO_RUSTFMT``
    Any non-empty value disables the ``rustfmt`` pretty-printer.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Mapping, Optional

from .errors import ConfigError

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_MAX_SEARCH_DEPTH: int = 20
DEFAULT_FILE_SIZE_LIMIT_MB: int = 10
DEFAULT_TIMEOUT_SECONDS: float = 30.0
DEFAULT_OUTPUT_FILE: str = "unsafe_paths.txt"
DEFAULT_EXCLUDE_DIRS: FrozenSet[str] = frozenset({".git", "target"})

# Cheap textual gate applied before parsing
UNSAFE_MARKER: str = "unsafe"
PUBLIC_FN_MARKER: str = "pub fn"

# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------

#: Type names never reported as custom types.
PRIMITIVE_TYPES: FrozenSet[str] = frozenset({
    # primitives
    "bool", "char", "str",
    "u8", "u16", "u32", "u64", "u128", "usize",
    "i8", "i16", "i32", "i64", "i128", "isize",
    "f32", "f64",
    # std containers and smart pointers
    "String", "Vec", "Option", "Result", "Box", "Rc", "Arc", "Cell", "RefCell",
    "HashMap", "HashSet", "BTreeMap", "BTreeSet", "VecDeque", "LinkedList",
    # synchronisation
    "Mutex", "RwLock", "Condvar", "Once", "Thread",
    # time and filesystem
    "Duration", "Instant", "SystemTime", "Path", "PathBuf",
})

#: Final path segments of standard-library functions that are ``unsafe fn``.
#: Matched as a suffix of the called path (``foo::transmute`` matches).
KNOWN_UNSAFE_FUNCTIONS: FrozenSet[str] = frozenset({
    "transmute", "transmute_copy",
    "copy_nonoverlapping", "swap_nonoverlapping",
    "read_volatile", "write_volatile", "read_unaligned", "write_unaligned",
    "drop_in_place",
    "from_raw_parts", "from_raw_parts_mut",
    "from_utf8_unchecked", "from_utf8_unchecked_mut",
    "zeroed", "uninitialized",
    "unreachable_unchecked",
    "alloc_zeroed", "dealloc", "realloc",
    "get_unchecked", "get_unchecked_mut",
    "from_raw",
})

#: Qualified paths whose final segments are too generic to match alone.
#: Matched segment-wise against the tail of the called path.
KNOWN_UNSAFE_PATHS: FrozenSet[str] = frozenset({
    "ptr::copy", "ptr::read", "ptr::write", "ptr::write_bytes", "ptr::swap",
    "ptr::replace", "ptr::drop_in_place",
    "mem::transmute", "mem::zeroed", "mem::uninitialized",
    "slice::from_raw_parts", "slice::from_raw_parts_mut",
    "str::from_utf8_unchecked",
    "alloc::alloc", "alloc::dealloc", "alloc::realloc", "alloc::alloc_zeroed",
    "String::from_raw_parts", "Vec::from_raw_parts", "Box::from_raw",
    "CStr::from_ptr",
    "hint::unreachable_unchecked",
    "intrinsics::copy", "intrinsics::transmute",
})

#: Substrings that mark a method call as an unsafe method call.
UNSAFE_METHOD_KEYWORDS: FrozenSet[str] = frozenset({
    "unsafe", "unchecked", "as_ptr", "as_mut_ptr", "assume_init",
    "set_len", "transmute", "from_raw_parts",
})

#: Methods whose result is taken to be a raw pointer.
RAW_POINTER_METHODS: FrozenSet[str] = frozenset({
    "add", "offset", "as_ptr", "as_mut_ptr",
})

#: Name fragments that suggest a variable holds a raw pointer.
RAW_POINTER_NAME_HINTS: FrozenSet[str] = frozenset({"ptr", "raw", "pointer"})

#: Macros that embed inline assembly.
INLINE_ASM_MACROS: FrozenSet[str] = frozenset({"asm", "global_asm", "llvm_asm"})


# ---------------------------------------------------------------------------
# AnalyzerConfig
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalyzerConfig:
    """Tunable knobs of a run.

    Attributes
    ----------
    max_search_depth : int
        Depth bound of the path search (number of call edges).
    file_size_limit_mb : int
        Files larger than this many megabytes are skipped unparsed.
    timeout_seconds : float
        Per-file budget.  Measured after the visitor passes; an overrun
        discards the file's results.
    workers : int or None
        Worker pool size for directory runs (``None`` = CPU count).
    use_rustfmt : bool
        Try ``rustfmt`` before the indentation heuristic when beautifying.
    strict_parse : bool
        Treat a tree containing syntax errors as a parse failure.
    exclude_dirs : frozenset[str]
        Directory names pruned during traversal.
    """

    max_search_depth: int = DEFAULT_MAX_SEARCH_DEPTH
    file_size_limit_mb: int = DEFAULT_FILE_SIZE_LIMIT_MB
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    workers: Optional[int] = None
    use_rustfmt: bool = True
    strict_parse: bool = True
    exclude_dirs: FrozenSet[str] = field(default=DEFAULT_EXCLUDE_DIRS)

    @property
    def file_size_limit_bytes(self) -> int:
        return self.file_size_limit_mb * 1024 * 1024

    @property
    def worker_count(self) -> int:
        return self.workers or os.cpu_count() or 1

    def validate(self) -> "AnalyzerConfig":
        """Return ``self`` or raise :class:`ConfigError` on a bad value."""
        if self.max_search_depth < 0:
            raise ConfigError(
                f"max_search_depth must be >= 0, got {self.max_search_depth}"
            )
        if self.file_size_limit_mb <= 0:
            raise ConfigError(
                f"file_size_limit_mb must be > 0, got {self.file_size_limit_mb}"
            )
        if self.timeout_seconds < 0:
            raise ConfigError(
                f"timeout_seconds must be >= 0, got {self.timeout_seconds}"
            )
        if self.workers is not None and self.workers <= 0:
            raise ConfigError(f"workers must be > 0, got {self.workers}")
        return self

    def with_overrides(self, **overrides: object) -> "AnalyzerConfig":
        """Copy with every non-``None`` override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AnalyzerConfig":
        """Build a config from defaults overlaid with ``UNSAFE_PATHS_*``."""
        env = os.environ if environ is None else environ
        overrides = {
            "max_search_depth": _env_number(env, "UNSAFE_PATHS_MAX_DEPTH", int),
            "file_size_limit_mb": _env_number(
                env, "UNSAFE_PATHS_FILE_SIZE_LIMIT_MB", int
            ),
            "timeout_seconds": _env_number(env, "UNSAFE_PATHS_TIMEOUT", float),
            "workers": _env_number(env, "UNSAFE_PATHS_WORKERS", int),
        }
        if env.get("UNSAFE_PATHS_NO_RUSTFMT"):
            overrides["use_rustfmt"] = False
        return cls().with_overrides(**overrides)


def _env_number(env: Mapping[str, str], key: str, kind: type):
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return None
    try:
        return kind(raw)
    except ValueError:
        _log.warning("Ignoring malformed %s=%r", key, raw)
        return None
