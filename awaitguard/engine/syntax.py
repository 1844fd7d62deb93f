"""
Normalized syntax nodes over tree-sitter TypeScript trees.

Rules reason about an ESTree-like shape: a call's parent is the node that
consumes its value, ``a || b`` is a logical expression, and grouping
parentheses do not exist. Tree-sitter keeps ``parenthesized_expression`` and
``arguments`` wrapper nodes and models ``||`` as a binary expression, so
``SyntaxNode`` hides those differences behind a read-only view.

Parent links are the tree-sitter back-references; nothing here mutates the tree.
"""

from typing import Iterator, List, Optional, Tuple

import tree_sitter


CALL = "call_expression"
MEMBER = "member_expression"
LOGICAL = "logical_expression"
BINARY = "binary_expression"
RETURN = "return_statement"
AWAIT = "await_expression"
ARRAY = "array"
IDENTIFIER = "identifier"
EXPRESSION_STATEMENT = "expression_statement"
FUNCTION_EXPRESSION = "function_expression"
PROGRAM = "program"

LOGICAL_OPERATORS = frozenset({"||", "&&", "??"})

# Wrappers with no ESTree counterpart, skipped when walking up or down
TRANSPARENT_KINDS = frozenset({"parenthesized_expression", "arguments"})

# Older grammars name function expressions "function"; computed access
# (obj['x']) is a member access without a property name.
_KIND_ALIASES = {
    "function": FUNCTION_EXPRESSION,
    "subscript_expression": MEMBER,
}


def _unwrap(node: Optional[tree_sitter.Node]) -> Optional["SyntaxNode"]:
    """Wrap a raw node, descending through grouping parentheses."""
    while node is not None and node.type == "parenthesized_expression":
        inner = [c for c in node.named_children if c.type != "comment"]
        node = inner[0] if inner else None
    if node is None:
        return None
    return SyntaxNode(node)


def _decode(raw: Optional[bytes]) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode('utf-8', errors='ignore')
    return str(raw)


class SyntaxNode:
    """Immutable, parent-linked view over one tree-sitter node."""

    __slots__ = ("_node",)

    def __init__(self, node: tree_sitter.Node):
        self._node = node

    @classmethod
    def from_tree(cls, tree: tree_sitter.Tree) -> "SyntaxNode":
        return cls(tree.root_node)

    @property
    def raw(self) -> tree_sitter.Node:
        return self._node

    @property
    def raw_kind(self) -> str:
        return self._node.type

    @property
    def kind(self) -> str:
        raw = self._node.type
        if raw == BINARY and self.operator in LOGICAL_OPERATORS:
            return LOGICAL
        if self._node.is_named:
            return _KIND_ALIASES.get(raw, raw)
        return raw

    @property
    def parent(self) -> Optional["SyntaxNode"]:
        node = self._node.parent
        while node is not None and node.type in TRANSPARENT_KINDS:
            node = node.parent
        return SyntaxNode(node) if node is not None else None

    @property
    def children(self) -> List["SyntaxNode"]:
        """Named children, comments excluded, wrappers kept."""
        return [SyntaxNode(c) for c in self._node.named_children if c.type != "comment"]

    def field(self, name: str) -> Optional["SyntaxNode"]:
        return _unwrap(self._node.child_by_field_name(name))

    def has_token(self, token: str) -> bool:
        """True if an anonymous child token (e.g. 'async', '*') is present."""
        return any(not c.is_named and c.type == token for c in self._node.children)

    # --- call expressions ---

    @property
    def callee(self) -> Optional["SyntaxNode"]:
        return self.field("function")

    @property
    def arguments(self) -> List["SyntaxNode"]:
        args = self._node.child_by_field_name("arguments")
        if args is None or args.type != "arguments":
            return []
        return [_unwrap(c) for c in args.named_children if c.type != "comment"]

    # --- member access ---

    @property
    def object(self) -> Optional["SyntaxNode"]:
        return self.field("object")

    @property
    def property_name(self) -> Optional[str]:
        """Member name for ``obj.name``; None for computed access."""
        if self._node.type != MEMBER:
            return None
        prop = self._node.child_by_field_name("property")
        if prop is None:
            return None
        return _decode(prop.text)

    # --- binary / logical expressions ---

    @property
    def left(self) -> Optional["SyntaxNode"]:
        return self.field("left")

    @property
    def right(self) -> Optional["SyntaxNode"]:
        return self.field("right")

    @property
    def operator(self) -> Optional[str]:
        op = self._node.child_by_field_name("operator")
        return op.type if op is not None else None

    # --- source positions ---

    @property
    def text(self) -> str:
        return _decode(self._node.text)

    @property
    def name(self) -> Optional[str]:
        if self._node.type in (IDENTIFIER, "property_identifier", "type_identifier"):
            return self.text
        return None

    @property
    def start_byte(self) -> int:
        return self._node.start_byte

    @property
    def end_byte(self) -> int:
        return self._node.end_byte

    @property
    def start_point(self) -> Tuple[int, int]:
        point = self._node.start_point
        return (point[0], point[1])

    def __eq__(self, other) -> bool:
        return isinstance(other, SyntaxNode) and self._node == other._node

    def __hash__(self) -> int:
        return hash((self._node.start_byte, self._node.end_byte, self._node.type))

    def __repr__(self) -> str:
        row, col = self.start_point
        return f"SyntaxNode({self.kind} @ {row + 1}:{col + 1})"


def iter_preorder(root: SyntaxNode) -> Iterator[SyntaxNode]:
    """Yield nodes depth-first in source order, skipping wrappers and comments."""
    # Iterative DFS so deeply nested expressions cannot hit the recursion limit
    stack = [root.raw]
    while stack:
        node = stack.pop()
        if node.type == "comment":
            continue
        if node.type not in TRANSPARENT_KINDS:
            yield SyntaxNode(node)
        stack.extend(reversed(node.named_children))
