"""
unsafe_paths.models
===================

Value types shared by the visitors, the call graph and the report writer.

Function records are frozen: a :class:`FunctionInfo` is built only once the
visitor has left the function body, so no reader ever sees a record whose
``has_internal_unsafe`` flag is still being accumulated.  Type definitions
stay mutable because constructors are appended as impl blocks are visited.

Public API
----------
    Visibility          - declared visibility of an item
    UnsafeOpKind        - classification of a detected unsafe operation
    UnsafeOperation     - one detected unsafe operation
    FunctionInfo        - everything known about one function
    TypeDefinition      - a struct / enum / union / type alias and its constructors
    FunctionCall        - one (caller, callee) edge
    PathNodeInfo        - snapshot of a function inside a discovered path
    FileAnalysisResult  - paths and relevant types found in one file
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------

class Visibility(enum.Enum):
    """Declared visibility of a Rust item.

    ``MODULE`` is plain private visibility (no ``pub`` at all).
    """

    PUBLIC     = "Public"
    CRATE      = "Crate"
    MODULE     = "Module"
    RESTRICTED = "Restricted"

    @property
    def prefix(self) -> str:
        """Source prefix used when rendering an item, e.g. ``"pub "``."""
        return _VISIBILITY_PREFIX[self]

    @property
    def is_public(self) -> bool:
        return self is Visibility.PUBLIC

    @classmethod
    def from_modifier(cls, text: Optional[str]) -> "Visibility":
        """Map a ``visibility_modifier`` source text to a :class:`Visibility`.

        ``pub`` is public, ``pub(crate)`` / ``pub(in crate)`` / ``crate`` are
        crate-visible, any other ``pub(...)`` form is restricted and a missing
        modifier is module-private.
        """
        if not text:
            return cls.MODULE
        compact = "".join(text.split())
        if compact == "pub":
            return cls.PUBLIC
        if compact in ("pub(crate)", "pub(incrate)", "crate"):
            return cls.CRATE
        if compact.startswith("pub("):
            return cls.RESTRICTED
        return cls.MODULE


_VISIBILITY_PREFIX = {
    Visibility.PUBLIC: "pub ",
    Visibility.CRATE: "pub(crate) ",
    Visibility.MODULE: "",
    Visibility.RESTRICTED: "pub(restricted) ",
}


# ---------------------------------------------------------------------------
# Unsafe operations
# ---------------------------------------------------------------------------

class UnsafeOpKind(enum.Enum):
    """What kind of unsafe operation was seen."""

    RAW_POINTER_DEREF     = "raw-pointer-dereference"
    UNSAFE_FUNCTION_CALL  = "unsafe-function-call"
    UNSAFE_METHOD_CALL    = "unsafe-method-call"
    INLINE_ASM            = "inline-assembly"
    UNION_FIELD_ACCESS    = "union-field-access"
    MUTABLE_STATIC_ACCESS = "mutable-static-access"
    OTHER                 = "other"


@dataclass(frozen=True)
class UnsafeOperation:
    """A single unsafe operation found inside a function body.

    Attributes
    ----------
    kind : UnsafeOpKind
    snippet : str
        Source text of the offending expression.  Two operations with the
        same snippet inside one function are treated as duplicates.
    line : int
        1-based line of the expression in its file.
    description : str
        Short human-readable explanation.
    """

    kind: UnsafeOpKind
    snippet: str
    line: int = 0
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "snippet": self.snippet,
            "line": self.line,
            "description": self.description,
        }


# ---------------------------------------------------------------------------
# Functions
# ---------------------------------------------------------------------------

def join_path(module_path: str, name: str) -> str:
    """``join_path("a::b", "f") == "a::b::f"``; an empty module gives ``"f"``."""
    return f"{module_path}::{name}" if module_path else name


def simple_name(full_path: str) -> str:
    """Last ``::`` segment of a qualified path."""
    return full_path.rsplit("::", 1)[-1]


@dataclass(frozen=True)
class FunctionInfo:
    """Everything the function visitor learned about one function.

    The identity is :attr:`full_path` (``module_path::name``).  Methods are
    keyed by module and method name only; the owning type is recorded in
    :attr:`owner_type` but is not part of the key.
    """

    name: str
    module_path: str
    visibility: Visibility
    is_unsafe_declared: bool
    has_internal_unsafe: bool
    file_path: str = ""
    source_code: str = ""
    param_custom_types: FrozenSet[str] = frozenset()
    return_custom_types: FrozenSet[str] = frozenset()
    has_self_param: bool = False
    owner_type: Optional[str] = None
    unsafe_operations: Tuple[UnsafeOperation, ...] = ()
    line: int = 0

    @property
    def full_path(self) -> str:
        return join_path(self.module_path, self.name)

    @property
    def is_unsafe(self) -> bool:
        """Declared unsafe or containing unsafe code."""
        return self.is_unsafe_declared or self.has_internal_unsafe


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass
class TypeDefinition:
    """A struct, enum, union or type alias together with its safe constructors.

    ``constructors`` holds source fragments: wrapped ``impl T { fn ... }``
    blocks for constructor methods, whole ``impl Default for T`` blocks, and
    annotated copies of path functions added by the file analyzer.
    """

    name: str
    module_path: str
    visibility: Visibility
    source_code: str
    file_path: str = ""
    constructors: List[str] = field(default_factory=list)

    @property
    def full_path(self) -> str:
        return join_path(self.module_path, self.name)

    def contains_impl(self, others: Sequence[str]) -> bool:
        """True when every fragment in *others* is already recorded."""
        return all(other in self.constructors for other in others)

    def add_constructor(self, fragment: str) -> bool:
        """Append *fragment* unless an identical one is present."""
        if fragment in self.constructors:
            return False
        self.constructors.append(fragment)
        return True

    def copy(self) -> "TypeDefinition":
        return TypeDefinition(
            name=self.name,
            module_path=self.module_path,
            visibility=self.visibility,
            source_code=self.source_code,
            file_path=self.file_path,
            constructors=list(self.constructors),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "full_path": self.full_path,
            "visibility": self.visibility.value,
            "source_code": self.source_code,
            "constructors": list(self.constructors),
        }


# ---------------------------------------------------------------------------
# Edges and paths
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FunctionCall:
    """One call site, as ``(caller, callee)`` qualified paths."""

    caller: str
    callee: str


@dataclass(frozen=True)
class PathNodeInfo:
    """Snapshot of one function inside a discovered path."""

    full_path: str
    visibility: Visibility = Visibility.MODULE
    source_code: str = ""
    param_custom_types: FrozenSet[str] = frozenset()
    return_custom_types: FrozenSet[str] = frozenset()
    has_self_param: bool = False
    owner_type: Optional[str] = None
    unsafe_operations: Tuple[UnsafeOperation, ...] = ()

    @classmethod
    def from_function(cls, info: FunctionInfo) -> "PathNodeInfo":
        return cls(
            full_path=info.full_path,
            visibility=info.visibility,
            source_code=info.source_code,
            param_custom_types=info.param_custom_types,
            return_custom_types=info.return_custom_types,
            has_self_param=info.has_self_param,
            owner_type=info.owner_type,
            unsafe_operations=info.unsafe_operations,
        )

    @property
    def simple_name(self) -> str:
        return simple_name(self.full_path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "full_path": self.full_path,
            "visibility": self.visibility.value,
            "has_self_param": self.has_self_param,
            "owner_type": self.owner_type,
            "param_custom_types": sorted(self.param_custom_types),
            "return_custom_types": sorted(self.return_custom_types),
            "unsafe_operations": [op.to_dict() for op in self.unsafe_operations],
            "source_code": self.source_code,
        }


UnsafePath = List[PathNodeInfo]


def format_path_with_visibility(path: Iterable[PathNodeInfo]) -> str:
    """Render a path as ``pub fn outer -> fn inner``."""
    return " -> ".join(
        f"{node.visibility.prefix}fn {node.simple_name}" for node in path
    )


def path_signature(path: Sequence[PathNodeInfo]) -> Tuple[str, str, FrozenSet[str]]:
    """``(origin, sink, intermediates)`` identity of a path, order-free."""
    names = [node.full_path for node in path]
    return names[0], names[-1], frozenset(names[1:-1])


# ---------------------------------------------------------------------------
# Per-file result
# ---------------------------------------------------------------------------

@dataclass
class FileAnalysisResult:
    """Everything reported for one analysed file."""

    file_path: str
    paths: List[UnsafePath] = field(default_factory=list)
    type_definitions: Dict[str, TypeDefinition] = field(default_factory=dict)
    graph_statistics: Dict[str, int] = field(default_factory=dict)

    def paths_by_sink(self) -> Dict[str, List[UnsafePath]]:
        """Group paths by their last node, in first-seen order."""
        groups: Dict[str, List[UnsafePath]] = {}
        for path in self.paths:
            if path:
                groups.setdefault(path[-1].full_path, []).append(path)
        return groups

    def path_signatures(self) -> FrozenSet[Tuple[str, str, FrozenSet[str]]]:
        return frozenset(path_signature(p) for p in self.paths if p)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "paths": [[node.to_dict() for node in path] for path in self.paths],
            "type_definitions": {
                key: tdef.to_dict()
                for key, tdef in sorted(self.type_definitions.items())
            },
            "graph_statistics": dict(self.graph_statistics),
        }
