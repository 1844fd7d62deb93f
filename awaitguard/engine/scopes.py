"""
Lexical scopes for TypeScript sources.

A ``ScopeGraph`` maps each scope-creating node of a file (the program,
functions, blocks, loops and catch clauses) to a ``Scope`` holding the names
bound there. A name resolves to its nearest enclosing binding, so parameters
and locals shadow outer declarations, and a declaration nested in one
function is invisible from another.
"""

from dataclasses import dataclass
from typing import Dict, Optional, TYPE_CHECKING

from .syntax import SyntaxNode

if TYPE_CHECKING:
    from .type_resolver import Signature


FUNCTION_SCOPE_KINDS = frozenset({
    "function_declaration", "generator_function_declaration", "function_expression",
    "function", "arrow_function", "generator_function", "method_definition",
})
BLOCK_SCOPE_KINDS = frozenset({
    "statement_block", "for_statement", "for_in_statement", "catch_clause", "switch_body",
})
CLASS_KINDS = frozenset({"class_declaration", "abstract_class_declaration", "class"})


@dataclass
class Binding:
    """A name bound in a scope and what is known about its value.

    ``signature`` is set for callable values with a known return type,
    ``members`` for classes and object literals, and ``type_name`` for values
    whose annotation or constructor names a type. A binding with none of them
    still shadows outer names.
    """
    name: str
    signature: Optional["Signature"] = None
    type_name: Optional[str] = None
    members: Optional[Dict[str, "Signature"]] = None


class Scope:
    """A namespace boundary: "module", "function" or "block"."""

    def __init__(self, kind: str, parent: Optional["Scope"] = None):
        self.kind = kind
        self.parent = parent
        self.bindings: Dict[str, Binding] = {}

    @property
    def is_module(self) -> bool:
        return self.parent is None

    def bind(self, binding: Binding) -> None:
        # First binding wins, so an overload signature keeps its return type
        self.bindings.setdefault(binding.name, binding)

    def resolve_visible(self, name: str) -> Optional["Scope"]:
        """Nearest scope, from this one outward, that binds name."""
        scope = self
        while scope is not None:
            if name in scope.bindings:
                return scope
            scope = scope.parent
        return None


class ScopeGraph:
    """Scopes of one file keyed by the node that opens them."""

    def __init__(self, root: SyntaxNode):
        self.module = Scope("module")
        self._scopes: Dict[SyntaxNode, Scope] = {root: self.module}

    def open_scope(self, node: SyntaxNode) -> Optional[Scope]:
        """Scope opened by node, created on first call. None if node opens no scope."""
        scope = self._scopes.get(node)
        if scope is not None:
            return scope
        kind = node.raw_kind
        if kind in FUNCTION_SCOPE_KINDS:
            scope = Scope("function", self.scope_at(node))
        elif kind in BLOCK_SCOPE_KINDS:
            scope = Scope("block", self.scope_at(node))
        else:
            return None
        self._scopes[node] = scope
        return scope

    def scope_of(self, node: SyntaxNode) -> Optional[Scope]:
        """Scope opened by node itself, if any."""
        return self._scopes.get(node)

    def scope_at(self, node: SyntaxNode) -> Scope:
        """Innermost scope enclosing node, not counting a scope node opens itself."""
        raw = node.raw.parent
        while raw is not None:
            scope = self._scopes.get(SyntaxNode(raw))
            if scope is not None:
                return scope
            raw = raw.parent
        return self.module

    def function_scope_at(self, node: SyntaxNode) -> Scope:
        """Innermost function or module scope enclosing node; where ``var`` lands."""
        scope = self.scope_at(node)
        while scope.kind == "block" and scope.parent is not None:
            scope = scope.parent
        return scope

    def lookup(self, node: SyntaxNode, name: str) -> Optional[Binding]:
        """Binding of name visible at node."""
        owner = self.scope_at(node).resolve_visible(name)
        return owner.bindings[name] if owner is not None else None

    def get_stats(self) -> Dict[str, int]:
        return {
            "scopes": len(self._scopes),
            "bindings": sum(len(s.bindings) for s in self._scopes.values()),
        }


def enclosing_class(node: SyntaxNode) -> Optional[SyntaxNode]:
    """Nearest class declaration or class expression around node."""
    raw = node.raw.parent
    while raw is not None:
        if raw.type in CLASS_KINDS:
            return SyntaxNode(raw)
        raw = raw.parent
    return None
