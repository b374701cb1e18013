"""
unsafe_paths.call_visitor
=========================

Second visitor pass: ``(caller, callee)`` edges for one file.

Name resolution is deliberately approximate; there is no type inference.

Free-function calls
    The first path segment is looked up in the import table built from
    ``use`` declarations and replaced by the imported path.  Otherwise the
    current module path is prefixed unless the path is absolute (``crate::``
    or ``::``).  ``self::`` and ``super::`` are resolved against the current
    module, and ``Self::f`` is treated like a method call.
Method calls
    ``recv.m()`` always resolves to ``<current module>::m``: the method is
    assumed to live in the caller's module.  Calls to methods of types
    defined elsewhere therefore produce edges to unknown functions.
Imports
    ``use`` paths, names, renames and groups are expanded.  Glob imports
    (``use foo::*``) are ignored.  The table is per file, not per module.

Calls made inside closures are attributed to the enclosing function.
Nested ``fn`` items get their own caller identity while their body is
walked.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from tree_sitter import Node

from .models import FunctionCall, join_path
from .syntax import (
    SyntaxTree,
    code_children,
    compact_text,
    field,
    node_text,
)
from .unsafe_ops import strip_generics

_log = logging.getLogger(__name__)

_PATH_CALLEES = frozenset({"identifier", "scoped_identifier"})
_SKIPPED_ITEMS = frozenset({"trait_item", "foreign_mod_item", "macro_definition"})


class CallVisitor:
    """Collects call edges from one parsed file.  Single-use."""

    def __init__(self) -> None:
        self.calls: List[FunctionCall] = []
        self.imports: Dict[str, str] = {}
        self._module_path: List[str] = []
        self._functions: List[str] = []

    @property
    def module_path(self) -> str:
        return "::".join(self._module_path)

    @property
    def current_function(self) -> Optional[str]:
        return self._functions[-1] if self._functions else None

    def visit(self, tree: SyntaxTree) -> List[FunctionCall]:
        self._visit(tree.root)
        _log.debug(
            "Collected %d call edges, %d imports", len(self.calls), len(self.imports)
        )
        return self.calls

    # ----- dispatch ---------------------------------------------------------

    def _visit(self, root: Node) -> None:
        """Walk *root* with an explicit stack; exit actions restore the
        module and caller scopes once a subtree is done."""
        stack: List[Union[Node, Callable[[], object]]] = [root]
        while stack:
            item = stack.pop()
            if not isinstance(item, Node):
                item()
                continue
            on_exit, children = self._enter(item)
            if on_exit is not None:
                stack.append(on_exit)
            stack.extend(reversed(children))

    def _enter(self, node: Node) -> Tuple[Optional[Callable[[], object]], Sequence[Node]]:
        kind = node.type
        if kind == "mod_item":
            body = field(node, "body")
            if body is None:
                return None, ()
            self._module_path.append(node_text(field(node, "name")))
            return self._module_path.pop, body.children
        if kind == "function_item":
            name = node_text(field(node, "name"))
            self._functions.append(join_path(self.module_path, name))
            body = field(node, "body")
            return self._functions.pop, (body.children if body is not None else ())
        if kind == "use_declaration":
            self.process_use(field(node, "argument"), "")
            return None, ()
        if kind == "call_expression":
            self._record_call(node)
        elif kind in _SKIPPED_ITEMS:
            return None, ()
        return None, node.children

    def _record_call(self, node: Node) -> None:
        callee = field(node, "function")
        if callee is not None and self.current_function is not None:
            target = self._callee_path(callee)
            if target is not None:
                self.calls.append(FunctionCall(self.current_function, target))

    def _callee_path(self, callee: Node) -> Optional[str]:
        if callee.type == "generic_function":
            callee = field(callee, "function") or callee
        if callee.type == "field_expression":
            method = node_text(field(callee, "field"))
            return join_path(self.module_path, method) if method else None
        if callee.type in _PATH_CALLEES:
            return self.resolve_path(compact_text(callee))
        return None

    # ----- resolution -------------------------------------------------------

    def resolve_path(self, path: str) -> str:
        """Best-effort qualified name of the called path *path*."""
        path = strip_generics("".join(path.split()))
        first, _, rest = path.partition("::")
        if first in self.imports:
            return f"{self.imports[first]}::{rest}" if rest else self.imports[first]
        if first == "Self" and rest:
            return join_path(self.module_path, rest.rsplit("::", 1)[-1])
        if first in ("self", "super"):
            return self._relative(path, self._module_path)
        if path.startswith("crate::") or path.startswith("::"):
            return path
        return join_path(self.module_path, path)

    @staticmethod
    def _relative(path: str, module: List[str]) -> str:
        segments = path.split("::")
        base = list(module)
        while segments and segments[0] in ("self", "super"):
            if segments.pop(0) == "super" and base:
                base.pop()
        return "::".join(base + segments)

    def process_use(self, node: Optional[Node], prefix: str) -> None:
        """Expand one ``use`` tree into :attr:`imports`."""
        if node is None:
            return
        kind = node.type
        if kind == "use_as_clause":
            target = self._use_target(prefix, compact_text(field(node, "path")))
            self.imports[node_text(field(node, "alias"))] = target
        elif kind == "scoped_use_list":
            path = field(node, "path")
            next_prefix = self._join_use(prefix, compact_text(path)) if path else prefix
            self.process_use(field(node, "list"), next_prefix)
        elif kind == "use_list":
            for item in code_children(node):
                self.process_use(item, prefix)
        elif kind == "use_wildcard":
            return
        elif kind in ("identifier", "scoped_identifier", "crate", "super", "self"):
            target = self._use_target(prefix, compact_text(node))
            name = target.rsplit("::", 1)[-1]
            if name == "self":
                # use foo::{self} imports the module foo itself
                target = target.rsplit("::", 1)[0]
                name = target.rsplit("::", 1)[-1]
            if name and name not in ("crate", "super"):
                self.imports[name] = target

    @staticmethod
    def _join_use(prefix: str, path: str) -> str:
        return f"{prefix}::{path}" if prefix and path else prefix or path

    def _use_target(self, prefix: str, path: str) -> str:
        full = self._join_use(prefix, path)
        if full.split("::", 1)[0] in ("self", "super"):
            return self._relative(full, self._module_path)
        return full
