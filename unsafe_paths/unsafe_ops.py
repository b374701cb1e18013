"""
unsafe_paths.unsafe_ops
=======================

Syntactic heuristics that classify expressions inside unsafe code.

The classification is advisory: it is attached to function records and
shown in reports, but path validity only looks at the ``unsafe`` flags.
Nothing here is sound; a pointer stored in a variable called ``buf`` is not
recognised as a pointer.

Detected kinds
--------------
``RAW_POINTER_DEREF``
    ``*expr`` where *expr* looks like a raw pointer: a cast to ``*const`` /
    ``*mut``, a name containing ``ptr`` / ``raw`` / ``pointer``, or the result
    of ``.add()`` / ``.offset()`` / ``.as_ptr()`` / ``.as_mut_ptr()``.
    The reborrow ``&*expr`` is not reported.
``UNSAFE_FUNCTION_CALL``
    Calls to known unsafe standard-library functions, and to ``unsafe fn``
    items declared in the same file.
``UNSAFE_METHOD_CALL``
    Method names containing one of the unsafe keywords, or naming an
    ``unsafe fn`` method declared in the same file.
``INLINE_ASM``
    ``asm!`` / ``global_asm!`` / ``llvm_asm!``.
``MUTABLE_STATIC_ACCESS``
    Any use of a ``static mut`` declared in the same file.
``UNION_FIELD_ACCESS``
    Field reads through a binding whose declared type is a local union.
``OTHER``
    Calls to functions declared in an ``extern`` block.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AbstractSet, FrozenSet, List, Optional

from tree_sitter import Node

from .config import (
    INLINE_ASM_MACROS,
    KNOWN_UNSAFE_FUNCTIONS,
    KNOWN_UNSAFE_PATHS,
    RAW_POINTER_METHODS,
    RAW_POINTER_NAME_HINTS,
    UNSAFE_METHOD_KEYWORDS,
)
from .models import UnsafeOperation, UnsafeOpKind
from .syntax import (
    code_children,
    compact_text,
    field,
    has_token,
    is_unsafe_function,
    last_segment,
    line_of,
    node_text,
    walk,
)

_log = logging.getLogger(__name__)

_KNOWN_PATH_SEGMENTS = tuple(
    tuple(path.split("::")) for path in sorted(KNOWN_UNSAFE_PATHS)
)


# ---------------------------------------------------------------------------
# Name matching
# ---------------------------------------------------------------------------

def strip_generics(path: str) -> str:
    """Drop ``<...>`` argument lists: ``Vec::<u8>::from_raw_parts`` -> ``Vec::from_raw_parts``."""
    out: List[str] = []
    depth = 0
    for ch in path:
        if ch == "<":
            depth += 1
        elif ch == ">" and depth:
            depth -= 1
        elif depth == 0:
            out.append(ch)
    return "".join(out).replace("::::", "::").rstrip(":")


def is_known_unsafe_function(path: str) -> bool:
    """Suffix match on the final segment, or tail match on a known module path."""
    segments = tuple(s for s in strip_generics(path).split("::") if s)
    if not segments:
        return False
    if segments[-1] in KNOWN_UNSAFE_FUNCTIONS:
        return True
    for known in _KNOWN_PATH_SEGMENTS:
        if len(segments) >= len(known) and segments[-len(known):] == known:
            return True
    return False


def is_unsafe_method_name(name: str) -> bool:
    return any(keyword in name for keyword in UNSAFE_METHOD_KEYWORDS)


def _looks_like_pointer_name(name: str) -> bool:
    lowered = name.lower()
    return any(hint in lowered for hint in RAW_POINTER_NAME_HINTS)


def is_raw_pointer_expr(node: Optional[Node]) -> bool:
    """Heuristic: could *node* evaluate to a raw pointer?"""
    if node is None:
        return False
    kind = node.type
    if kind == "parenthesized_expression":
        inner = code_children(node)
        return bool(inner) and is_raw_pointer_expr(inner[0])
    if kind == "type_cast_expression":
        target = field(node, "type")
        return target is not None and target.type == "pointer_type"
    if kind == "identifier":
        return _looks_like_pointer_name(node_text(node))
    if kind == "scoped_identifier":
        return _looks_like_pointer_name(last_segment(node))
    if kind == "field_expression":
        return _looks_like_pointer_name(node_text(field(node, "field")))
    if kind == "call_expression":
        callee = field(node, "function")
        if callee is not None and callee.type == "field_expression":
            return node_text(field(callee, "field")) in RAW_POINTER_METHODS
    return False


# ---------------------------------------------------------------------------
# Per-file detector
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UnsafeOpDetector:
    """Classifies single nodes, using facts pre-scanned from the whole file.

    Attributes
    ----------
    mutable_statics : frozenset[str]
        Names of ``static mut`` items.
    union_types : frozenset[str]
        Names of ``union`` items.
    foreign_functions : frozenset[str]
        Functions declared inside ``extern { ... }`` blocks.
    local_unsafe_functions : frozenset[str]
        Names of ``unsafe fn`` items (free functions and methods).
    """

    mutable_statics: FrozenSet[str] = frozenset()
    union_types: FrozenSet[str] = frozenset()
    foreign_functions: FrozenSet[str] = frozenset()
    local_unsafe_functions: FrozenSet[str] = frozenset()

    @classmethod
    def for_tree(cls, root: Node) -> "UnsafeOpDetector":
        statics, unions, foreign, unsafe_fns = set(), set(), set(), set()
        for node in walk(root):
            kind = node.type
            if kind == "static_item" and has_token(node, "mutable_specifier"):
                statics.add(node_text(field(node, "name")))
            elif kind == "union_item":
                unions.add(node_text(field(node, "name")))
            elif kind == "function_signature_item" and _inside_extern_block(node):
                foreign.add(node_text(field(node, "name")))
            elif kind == "function_item" and is_unsafe_function(node):
                unsafe_fns.add(node_text(field(node, "name")))
        detector = cls(
            mutable_statics=frozenset(statics),
            union_types=frozenset(unions),
            foreign_functions=frozenset(foreign),
            local_unsafe_functions=frozenset(unsafe_fns),
        )
        _log.debug("Pre-scan: %s", detector)
        return detector

    def classify(
        self,
        node: Node,
        union_bindings: AbstractSet[str] = frozenset(),
    ) -> Optional[UnsafeOperation]:
        """Return the operation *node* performs, or ``None``.

        *union_bindings* are the local names (parameters and ``let``s) whose
        declared type is one of :attr:`union_types`.
        """
        kind = node.type
        if kind == "unary_expression":
            return self._deref(node)
        if kind == "call_expression":
            return self._call(node)
        if kind == "macro_invocation":
            return self._macro(node)
        if kind in ("identifier", "scoped_identifier"):
            return self._static_access(node)
        if kind == "field_expression":
            return self._union_field(node, union_bindings)
        return None

    # ----- individual checks ------------------------------------------------

    def _deref(self, node: Node) -> Optional[UnsafeOperation]:
        if not node.children or node.children[0].type != "*":
            return None
        parent = node.parent
        if parent is not None and parent.type == "reference_expression":
            return None
        operands = code_children(node)
        if not operands or not is_raw_pointer_expr(operands[0]):
            return None
        return _op(
            UnsafeOpKind.RAW_POINTER_DEREF, node,
            f"dereference of raw pointer `{node_text(operands[0])}`",
        )

    def _call(self, node: Node) -> Optional[UnsafeOperation]:
        callee = field(node, "function")
        if callee is None:
            return None
        if callee.type == "generic_function":
            callee = field(callee, "function") or callee
        if callee.type == "field_expression":
            method = node_text(field(callee, "field"))
            if is_unsafe_method_name(method):
                return _op(
                    UnsafeOpKind.UNSAFE_METHOD_CALL, node,
                    f"call to unsafe method `{method}`",
                )
            if method in self.local_unsafe_functions:
                return _op(
                    UnsafeOpKind.UNSAFE_METHOD_CALL, node,
                    f"call to `unsafe fn {method}`",
                )
            return None
        if callee.type not in ("identifier", "scoped_identifier"):
            return None
        path = compact_text(callee)
        name = last_segment(callee)
        if is_known_unsafe_function(path):
            return _op(
                UnsafeOpKind.UNSAFE_FUNCTION_CALL, node,
                f"call to unsafe function `{strip_generics(path)}`",
            )
        if name in self.foreign_functions:
            return _op(
                UnsafeOpKind.OTHER, node,
                f"call to foreign function `{name}`",
            )
        if name in self.local_unsafe_functions:
            return _op(
                UnsafeOpKind.UNSAFE_FUNCTION_CALL, node,
                f"call to `unsafe fn {name}`",
            )
        return None

    def _macro(self, node: Node) -> Optional[UnsafeOperation]:
        name = last_segment(field(node, "macro"))
        if name not in INLINE_ASM_MACROS:
            return None
        return _op(UnsafeOpKind.INLINE_ASM, node, f"inline assembly `{name}!`")

    def _static_access(self, node: Node) -> Optional[UnsafeOperation]:
        if not self.mutable_statics:
            return None
        parent = node.parent
        if parent is not None:
            if parent.type in ("scoped_identifier", "macro_invocation"):
                return None
            declared = (field(parent, "name"), field(parent, "pattern"))
            if any(d is not None and d == node for d in declared):
                return None
        name = last_segment(node) if node.type == "scoped_identifier" else node_text(node)
        if name not in self.mutable_statics:
            return None
        return _op(
            UnsafeOpKind.MUTABLE_STATIC_ACCESS, node,
            f"access to mutable static `{name}`",
        )

    def _union_field(
        self,
        node: Node,
        union_bindings: AbstractSet[str],
    ) -> Optional[UnsafeOperation]:
        if not union_bindings:
            return None
        parent = node.parent
        if (
            parent is not None
            and parent.type == "call_expression"
            and field(parent, "function") == node
        ):
            return None
        value = field(node, "value")
        if value is None or value.type != "identifier":
            return None
        if node_text(value) not in union_bindings:
            return None
        return _op(
            UnsafeOpKind.UNION_FIELD_ACCESS, node,
            f"read of union field `{node_text(node)}`",
        )


def _inside_extern_block(node: Node) -> bool:
    parent = node.parent
    while parent is not None:
        if parent.type == "foreign_mod_item":
            return True
        if parent.type in ("function_item", "impl_item", "trait_item"):
            return False
        parent = parent.parent
    return False


def _op(kind: UnsafeOpKind, node: Node, description: str) -> UnsafeOperation:
    return UnsafeOperation(
        kind=kind,
        snippet=node_text(node),
        line=line_of(node),
        description=description,
    )
