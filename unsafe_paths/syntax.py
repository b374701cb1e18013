"""
unsafe_paths.syntax
===================

Thin adapter over the tree-sitter Rust grammar.

Everything that touches ``tree_sitter`` lives here; the visitors only see
:class:`SyntaxTree` and ``tree_sitter.Node`` objects and the helpers below.

Example::

    from unsafe_paths.syntax import parse_source, node_text

    tree = parse_source("pub fn f() { unsafe { g() } }")
    assert not tree.has_errors
    fn = tree.root.named_children[0]
    print(fn.type, node_text(fn.child_by_field_name("name")))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional

import tree_sitter_rust
from tree_sitter import Language, Node, Parser, Tree

RUST_LANGUAGE = Language(tree_sitter_rust.language())

# Node types that never carry semantics for the visitors
COMMENT_TYPES = frozenset({"line_comment", "block_comment"})


@dataclass
class SyntaxTree:
    """A parsed file: the tree-sitter tree plus the bytes it was parsed from."""

    tree: Tree
    source: bytes

    @property
    def root(self) -> Node:
        return self.tree.root_node

    @property
    def has_errors(self) -> bool:
        """True if the grammar inserted ERROR or MISSING nodes."""
        return self.tree.root_node.has_error

    def first_error_line(self) -> Optional[int]:
        """1-based line of the first ERROR / MISSING node, if any."""
        for node in walk(self.root):
            if node.type == "ERROR" or node.is_missing:
                return line_of(node)
        return None


def parse_source(text: str) -> SyntaxTree:
    """Parse Rust *text*.

    A new :class:`Parser` is created per call; parsers are not shared
    between threads.
    """
    data = text.encode("utf-8")
    parser = Parser(RUST_LANGUAGE)
    return SyntaxTree(tree=parser.parse(data), source=data)


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------

def node_text(node: Optional[Node]) -> str:
    """Verbatim source text of *node* (``""`` for ``None``)."""
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def is_doc_comment(node: Node) -> bool:
    if node.type not in COMMENT_TYPES:
        return False
    text = node_text(node)
    return text.startswith("///") or text.startswith("/**")


def item_text(node: Node, source: bytes) -> str:
    """Source of an item including its leading attributes and doc comments."""
    start = node.start_byte
    sibling = node.prev_sibling
    while sibling is not None and (
        sibling.type == "attribute_item" or is_doc_comment(sibling)
    ):
        start = sibling.start_byte
        sibling = sibling.prev_sibling
    return source[start:node.end_byte].decode("utf-8", errors="replace")


def compact_text(node: Optional[Node]) -> str:
    """Source text with all whitespace removed, e.g. ``"std :: ptr"`` -> ``"std::ptr"``."""
    return "".join(node_text(node).split())


def line_of(node: Node) -> int:
    return node.start_point[0] + 1


def field(node: Node, name: str) -> Optional[Node]:
    return node.child_by_field_name(name)


def child_of_type(node: Node, *types: str) -> Optional[Node]:
    for child in node.children:
        if child.type in types:
            return child
    return None


def has_token(node: Node, token: str) -> bool:
    """Does *node* have a direct (anonymous or named) child of type *token*?"""
    return any(child.type == token for child in node.children)


def code_children(node: Node) -> List[Node]:
    """Named children with comments filtered out."""
    return [c for c in node.named_children if c.type not in COMMENT_TYPES]


def walk(node: Node) -> Iterator[Node]:
    """Pre-order traversal of *node* and all its descendants."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def last_segment(node: Optional[Node]) -> str:
    """Final identifier of a (possibly scoped / generic) type or path node."""
    if node is None:
        return ""
    if node.type in ("generic_type", "generic_function"):
        inner = field(node, "type") or field(node, "function")
        return last_segment(inner)
    if node.type in ("scoped_type_identifier", "scoped_identifier"):
        return last_segment(field(node, "name"))
    return compact_text(node).rsplit("::", 1)[-1]


def is_unsafe_function(node: Node) -> bool:
    """``unsafe fn`` / ``pub unsafe extern "C" fn`` and friends."""
    modifiers = child_of_type(node, "function_modifiers")
    return modifiers is not None and has_token(modifiers, "unsafe")


def visibility_text(node: Node) -> str:
    return node_text(child_of_type(node, "visibility_modifier"))
