"""
unsafe_paths.function_visitor
=============================

First visitor pass: functions, type definitions and unsafe evidence.

For every free function and impl method the visitor records visibility, the
``unsafe`` qualifier, the custom types used in the signature and whether the
body contains an ``unsafe { ... }`` block.  Each function gets a scratch
:class:`_FunctionFrame` while its body is walked; the frozen
:class:`~unsafe_paths.models.FunctionInfo` is produced from the frame only
when the walk leaves the function, so the unsafe flag is never observable
half-computed.

Type definitions (``struct``, ``enum``, ``union``, ``type``) are collected
together with their safe constructors.  Constructors found in impl blocks
are queued and attached after the whole file has been walked, which makes
the result independent of whether an ``impl`` precedes its ``struct``.

Unsupported node shapes are skipped silently.

Example::

    from unsafe_paths.syntax import parse_source
    from unsafe_paths.function_visitor import FunctionVisitor

    functions, types, unsafe = FunctionVisitor("lib.rs").visit(parse_source(src))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple, Union

from tree_sitter import Node

from .config import PRIMITIVE_TYPES
from .models import (
    FunctionInfo,
    TypeDefinition,
    UnsafeOperation,
    Visibility,
    simple_name,
)
from .syntax import (
    SyntaxTree,
    code_children,
    field as field_of,
    is_unsafe_function,
    item_text,
    last_segment,
    line_of,
    node_text,
    visibility_text,
)
from .unsafe_ops import UnsafeOpDetector

_log = logging.getLogger(__name__)

# Self types an impl block can be attached to
_PATH_TYPES = frozenset({
    "type_identifier", "scoped_type_identifier", "generic_type", "primitive_type",
})

# Items whose bodies are never walked
_SKIPPED_ITEMS = frozenset({"trait_item", "foreign_mod_item", "macro_definition"})

# What a handler returns: an action to run after the children, and the children
_Step = Tuple[Optional[Callable[[], object]], Sequence[Node]]
_LEAF: _Step = (None, ())


# ---------------------------------------------------------------------------
# Custom type extraction
# ---------------------------------------------------------------------------

def extract_custom_types(
    node: Optional[Node],
    out: Set[str],
    self_type: Optional[str] = None,
) -> Set[str]:
    """Collect non-primitive type names used in the type expression *node*.

    Descends through references, arrays, slices, tuples and generic
    arguments.  ``Self`` is replaced by *self_type* when given and dropped
    otherwise.
    """
    if node is None:
        return out
    kind = node.type
    if kind == "reference_type":
        extract_custom_types(field_of(node, "type"), out, self_type)
    elif kind == "array_type":
        extract_custom_types(field_of(node, "element"), out, self_type)
    elif kind == "tuple_type":
        for element in code_children(node):
            extract_custom_types(element, out, self_type)
    elif kind == "generic_type":
        _add_type_name(last_segment(node), out, self_type)
        arguments = field_of(node, "type_arguments")
        if arguments is not None:
            for argument in code_children(arguments):
                extract_custom_types(argument, out, self_type)
    elif kind in ("type_identifier", "scoped_type_identifier"):
        _add_type_name(last_segment(node), out, self_type)
    return out


def _add_type_name(name: str, out: Set[str], self_type: Optional[str]) -> None:
    if name == "Self":
        if self_type is None:
            return
        name = self_type
    if name and name not in PRIMITIVE_TYPES:
        out.add(name)


def returns_own_type(fn_node: Node, type_name: str) -> bool:
    """Does the return type end in ``Self`` or *type_name* (also behind ``&``)?"""
    ret = field_of(fn_node, "return_type")
    if ret is not None and ret.type == "reference_type":
        ret = field_of(ret, "type")
    if ret is None or ret.type not in ("type_identifier", "scoped_type_identifier", "generic_type"):
        return False
    return last_segment(ret) in ("Self", type_name)


def impl_type_name(impl_node: Node) -> Optional[str]:
    """Name of the type an ``impl`` block targets, if it is a plain path."""
    self_type = field_of(impl_node, "type")
    if self_type is None or self_type.type not in _PATH_TYPES:
        return None
    return last_segment(self_type) or None


# ---------------------------------------------------------------------------
# Visitor
# ---------------------------------------------------------------------------

class FunctionVisitResult(NamedTuple):
    functions: Dict[str, FunctionInfo]
    type_definitions: Dict[str, TypeDefinition]
    unsafe_functions: Set[str]


@dataclass
class _FunctionFrame:
    """Mutable scratch state of a function whose body is being walked."""

    name: str
    module_path: str
    visibility: Visibility
    is_unsafe_declared: bool
    source_code: str
    param_types: Set[str]
    return_types: Set[str]
    has_self_param: bool
    owner_type: Optional[str]
    line: int
    has_unsafe: bool = False
    operations: Dict[str, UnsafeOperation] = field(default_factory=dict)
    union_bindings: Set[str] = field(default_factory=set)

    def record(self, op: UnsafeOperation) -> None:
        self.operations.setdefault(op.snippet, op)

    def commit(self, file_path: str) -> FunctionInfo:
        return FunctionInfo(
            name=self.name,
            module_path=self.module_path,
            visibility=self.visibility,
            is_unsafe_declared=self.is_unsafe_declared,
            has_internal_unsafe=self.has_unsafe,
            file_path=file_path,
            source_code=self.source_code,
            param_custom_types=frozenset(self.param_types),
            return_custom_types=frozenset(self.return_types),
            has_self_param=self.has_self_param,
            owner_type=self.owner_type,
            unsafe_operations=tuple(self.operations.values()),
            line=self.line,
        )


class FunctionVisitor:
    """Collects functions, type definitions and unsafe evidence from one file.

    A visitor instance is single-use: create one per file.
    """

    def __init__(self, file_path: str = "") -> None:
        self.file_path = file_path
        self.functions: Dict[str, FunctionInfo] = {}
        self.type_definitions: Dict[str, TypeDefinition] = {}
        self.unsafe_functions: Set[str] = set()
        self._module_path: List[str] = []
        self._frames: List[_FunctionFrame] = []
        self._impl_types: List[str] = []
        self._pending_constructors: List[Tuple[str, str]] = []
        self._in_unsafe = False
        self._source = b""
        self._detector = UnsafeOpDetector()

    @property
    def module_path(self) -> str:
        return "::".join(self._module_path)

    # ----- entry point ------------------------------------------------------

    def visit(self, tree: SyntaxTree) -> FunctionVisitResult:
        self._source = tree.source
        self._detector = UnsafeOpDetector.for_tree(tree.root)
        self._visit(tree.root)
        self._attach_constructors()
        _log.debug(
            "%s: %d functions, %d types, %d unsafe",
            self.file_path or "<memory>", len(self.functions),
            len(self.type_definitions), len(self.unsafe_functions),
        )
        return FunctionVisitResult(
            self.functions, self.type_definitions, self.unsafe_functions
        )

    # ----- dispatch ---------------------------------------------------------

    def _visit(self, root: Node) -> None:
        """Walk *root* with an explicit stack.

        Handlers return the children to walk and an optional exit action.
        The exit action runs once all of those children have been walked,
        so arbitrarily deep expressions never grow the Python stack.
        """
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

    def _enter(self, node: Node) -> _Step:
        handler = getattr(self, f"_visit_{node.type}", None)
        if handler is not None:
            return handler(node)
        if node.type in _SKIPPED_ITEMS:
            return _LEAF
        if self._in_unsafe and self._frames:
            op = self._detector.classify(node, self._frames[-1].union_bindings)
            if op is not None:
                self._frames[-1].record(op)
        return None, node.children

    # ----- items ------------------------------------------------------------

    def _visit_mod_item(self, node: Node) -> _Step:
        body = field_of(node, "body")
        if body is None:
            return _LEAF
        self._module_path.append(node_text(field_of(node, "name")))
        return self._module_path.pop, body.children

    def _visit_function_item(self, node: Node) -> _Step:
        owner = self._method_owner(node)
        frame = self._open_frame(node, owner)
        saved_unsafe = self._in_unsafe
        self._frames.append(frame)
        # Operations in an unsafe fn body are unsafe without an inner block
        self._in_unsafe = frame.is_unsafe_declared
        body = field_of(node, "body")
        children = body.children if body is not None else []
        return (lambda: self._close_function(saved_unsafe)), children

    def _close_function(self, saved_unsafe: bool) -> None:
        frame = self._frames.pop()
        self._in_unsafe = saved_unsafe
        info = frame.commit(self.file_path)
        self.functions[info.full_path] = info
        if info.is_unsafe:
            self.unsafe_functions.add(info.full_path)

    def _open_frame(self, node: Node, owner: Optional[str]) -> _FunctionFrame:
        param_types: Set[str] = set()
        return_types: Set[str] = set()
        has_self = False
        union_bindings: Set[str] = set()
        params = field_of(node, "parameters")
        for param in code_children(params) if params is not None else []:
            if param.type == "self_parameter":
                has_self = True
            elif param.type == "parameter":
                pattern = field_of(param, "pattern")
                if node_text(pattern) == "self":
                    has_self = True
                    continue
                ptype = field_of(param, "type")
                extract_custom_types(ptype, param_types, owner)
                if self._names_union(ptype) and pattern is not None:
                    union_bindings.add(node_text(pattern))
        extract_custom_types(field_of(node, "return_type"), return_types, owner)
        if has_self and owner is not None:
            param_types.add(owner)
        return _FunctionFrame(
            name=node_text(field_of(node, "name")),
            module_path=self.module_path,
            visibility=Visibility.from_modifier(visibility_text(node)),
            is_unsafe_declared=is_unsafe_function(node),
            source_code=item_text(node, self._source),
            param_types=param_types,
            return_types=return_types,
            has_self_param=has_self,
            owner_type=owner,
            line=line_of(node),
            union_bindings=union_bindings,
        )

    def _method_owner(self, node: Node) -> Optional[str]:
        parent = node.parent
        if (
            self._impl_types
            and parent is not None
            and parent.type == "declaration_list"
            and parent.parent is not None
            and parent.parent.type == "impl_item"
        ):
            return self._impl_types[-1]
        return None

    def _visit_impl_item(self, node: Node) -> _Step:
        type_name = impl_type_name(node)
        if type_name is None:
            _log.debug("Skipping impl with non-path self type at line %d", line_of(node))
            return _LEAF
        body = field_of(node, "body")
        if body is None:
            return _LEAF
        self._queue_constructors(node, body, type_name)
        self._impl_types.append(type_name)
        return self._impl_types.pop, body.children

    def _queue_constructors(self, node: Node, body: Node, type_name: str) -> None:
        if last_segment(field_of(node, "trait")) == "Default":
            self._pending_constructors.append(
                (type_name, item_text(node, self._source))
            )
            return
        for method in body.named_children:
            if method.type != "function_item" or is_unsafe_function(method):
                continue
            if returns_own_type(method, type_name):
                fragment = f"impl {type_name} {{\n    {item_text(method, self._source)}\n}}"
                self._pending_constructors.append((type_name, fragment))

    def _visit_struct_item(self, node: Node) -> _Step:
        self._add_type_definition(node)
        return _LEAF

    _visit_enum_item = _visit_struct_item
    _visit_union_item = _visit_struct_item
    _visit_type_item = _visit_struct_item

    def _add_type_definition(self, node: Node) -> None:
        name = node_text(field_of(node, "name"))
        if not name:
            return
        definition = TypeDefinition(
            name=name,
            module_path=self.module_path,
            visibility=Visibility.from_modifier(visibility_text(node)),
            source_code=item_text(node, self._source),
            file_path=self.file_path,
        )
        self.type_definitions[definition.full_path] = definition

    def _attach_constructors(self) -> None:
        for type_name, fragment in self._pending_constructors:
            for path, definition in self.type_definitions.items():
                if simple_name(path) == type_name:
                    definition.constructors.append(fragment)

    # ----- statements and expressions ---------------------------------------

    def _visit_unsafe_block(self, node: Node) -> _Step:
        if self._frames:
            self._frames[-1].has_unsafe = True
        saved = self._in_unsafe
        self._in_unsafe = True
        return (lambda: self._leave_unsafe(saved)), node.children

    def _leave_unsafe(self, saved: bool) -> None:
        self._in_unsafe = saved

    def _visit_let_declaration(self, node: Node) -> _Step:
        if self._frames and self._names_union(field_of(node, "type")):
            pattern = field_of(node, "pattern")
            if pattern is not None and pattern.type == "identifier":
                self._frames[-1].union_bindings.add(node_text(pattern))
        return None, node.children

    def _names_union(self, type_node: Optional[Node]) -> bool:
        if type_node is None or not self._detector.union_types:
            return False
        if type_node.type in ("reference_type", "pointer_type"):
            type_node = field_of(type_node, "type")
        return last_segment(type_node) in self._detector.union_types
