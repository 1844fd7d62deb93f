"""
Declaration-based type resolution for TypeScript calls.

``DeclarationTypeResolver`` answers the engine's ``TypeResolver`` queries from
what a single file declares. It is not a type checker. Signatures come from:

- function declarations, ``declare function`` signatures, and function or arrow
  expressions bound to a ``const``/``let``/``var`` name
- class methods, object-literal methods, interface and abstract method
  signatures, and class fields initialised with functions
- configured ``type_declarations`` (callee text -> return type), used for
  imported functions the file cannot see
- a small table of built-ins (``fetch`` and the ``Promise`` statics)

Annotated return types are rendered from their source text with whitespace
normalized. Unannotated functions get an inferred rendering: ``async`` gives
``Promise<unknown>``, and a body returning ``new Promise<T>(...)`` gives
``Promise<T>``. A call whose callee matches nothing resolves to ``None``.

Names are resolved lexically (see ``scopes``). A parameter or local that
shadows a declaration hides it, and a function declared inside another
function only answers calls made within that function. Methods are looked up
on a known receiver only, never by name across the whole file.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from .scopes import CLASS_KINDS, Binding, Scope, ScopeGraph, enclosing_class
from .syntax import CALL, IDENTIFIER, MEMBER, SyntaxNode, iter_preorder


logger = logging.getLogger(__name__)

PROMISE_TYPE_NAME = "Promise"

BUILTIN_DECLARATIONS: Dict[str, str] = {
    "fetch": "Promise<Response>",
    "Promise.all": "Promise<unknown[]>",
    "Promise.race": "Promise<unknown>",
    "Promise.allSettled": "Promise<PromiseSettledResult<unknown>[]>",
    "Promise.any": "Promise<unknown>",
    "Promise.resolve": "Promise<unknown>",
    "Promise.reject": "Promise<never>",
}

_CHAINING_METHODS = ("then", "catch", "finally")

_FUNCTION_DECLARATION_KINDS = frozenset({
    "function_declaration", "generator_function_declaration", "function_signature",
})
_FUNCTION_VALUE_KINDS = frozenset({
    "arrow_function", "function_expression", "function", "generator_function",
})
_METHOD_KINDS = frozenset({
    "method_definition", "method_signature", "abstract_method_signature",
})
_PARAMETER_KINDS = frozenset({"required_parameter", "optional_parameter"})
_PROPERTY_KINDS = frozenset({"pair", "public_field_definition", "property_signature"})
_GENERATOR_KINDS = frozenset({"generator_function_declaration", "generator_function"})
# Nested bodies whose return statements belong to someone else
_NESTED_BODY_KINDS = _FUNCTION_DECLARATION_KINDS | _FUNCTION_VALUE_KINDS | CLASS_KINDS | {"method_definition"}

_HEAD_RE = re.compile(r"[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*")


def render_type(text: str) -> str:
    """Normalize the source text of a type annotation, e.g. 'Promise< string >' -> 'Promise<string>'."""
    text = re.sub(r"\s+", " ", text.strip())
    text = re.sub(r"([<\[(])\s+", r"\1", text)
    text = re.sub(r"\s+([>\]),])", r"\1", text)
    return re.sub(r",(?=\S)", ", ", text)


def type_head(rendered: Optional[str]) -> Optional[str]:
    """Head symbol of a plain or generic type rendering.

    'Promise<string>' -> 'Promise', 'Foo' -> 'Foo'. Unions, intersections,
    arrays and function types have no single head and give None.
    """
    if not rendered:
        return None
    match = _HEAD_RE.match(rendered)
    if not match:
        return None
    head = match.group(0)
    rest = rendered[match.end():]
    if not rest:
        return head
    if rest[0] != "<":
        return None
    depth = 0
    for i, ch in enumerate(rest):
        if ch == "<":
            depth += 1
        elif ch == ">" and rest[i - 1] != "=":
            depth -= 1
            if depth == 0:
                return head if i == len(rest) - 1 else None
    return None


@dataclass(frozen=True)
class Signature:
    """A resolved call signature: who declared it and what it returns."""
    name: str
    return_type: str
    type_head: Optional[str] = None

    @classmethod
    def from_rendering(cls, name: str, type_text: str) -> "Signature":
        rendered = render_type(type_text)
        return cls(name=name, return_type=rendered, type_head=type_head(rendered))


_CHAINED_PROMISE = Signature.from_rendering("then", "Promise<unknown>")


class DeclarationTypeResolver:
    """Resolves call return types from declarations visible in one file.

    Bare callees resolve through lexical scopes: the nearest binding of the
    name wins, and a binding with no known signature (an untyped parameter,
    a destructured local) resolves to None. Qualified callees resolve only
    when the receiver's members are known: ``this`` inside a class, or a name
    bound to a class, an object literal or a value of a declared class or
    interface type.
    """

    def __init__(self, root: Optional[SyntaxNode], declarations: Optional[Dict[str, str]] = None):
        self._declared: Dict[str, Signature] = {
            name: Signature.from_rendering(name, text) for name, text in (declarations or {}).items()
        }
        self._builtins: Dict[str, Signature] = {
            name: Signature.from_rendering(name, text) for name, text in BUILTIN_DECLARATIONS.items()
        }
        self.scopes: Optional[ScopeGraph] = None
        # class and interface name -> members; declarations of one name merge
        self._types: Dict[str, Dict[str, Signature]] = {}
        self._class_members: Dict[SyntaxNode, Dict[str, Signature]] = {}
        self._aliases: Dict[str, Optional[str]] = {}
        if root is not None:
            self.scopes = ScopeGraph(root)
            self._index(root)
            logger.debug(
                "Indexed %s, %d types, %d type aliases",
                self.scopes.get_stats(), len(self._types), len(self._aliases),
            )

    # === TypeResolver protocol ===

    def resolve_return_type_text(self, call: SyntaxNode) -> Optional[str]:
        signature = self.resolve_signature(call)
        return signature.return_type if signature else None

    def resolve_return_type_symbol(self, call: SyntaxNode) -> Optional[str]:
        """Head symbol of the return type with type aliases expanded."""
        signature = self.resolve_signature(call)
        if signature is None:
            return None
        head = signature.type_head
        seen = set()
        while head in self._aliases and head not in seen:
            seen.add(head)
            head = self._aliases[head]
        return head

    def resolve_signature(self, call: Optional[SyntaxNode]) -> Optional[Signature]:
        if call is None or call.kind != CALL:
            return None
        callee = call.callee
        if callee is None:
            return None

        if callee.kind == IDENTIFIER:
            return self._resolve_name(call, callee.text)

        if callee.kind == MEMBER:
            qualified = re.sub(r"\s+", "", callee.text).replace("?.", ".")
            signature = self._declared.get(qualified) or self._builtins.get(qualified)
            if signature is not None:
                return signature
            member = callee.property_name
            if member is None:
                return None
            receiver = callee.object
            if member in _CHAINING_METHODS and receiver is not None and receiver.kind == CALL:
                received = self.resolve_signature(receiver)
                if received is not None and received.type_head == PROMISE_TYPE_NAME:
                    return _CHAINED_PROMISE
            members = self._receiver_members(receiver)
            return members.get(member) if members else None

        return None

    def _resolve_name(self, at: SyntaxNode, name: str) -> Optional[Signature]:
        owner = self.scopes.scope_at(at).resolve_visible(name) if self.scopes else None
        if owner is not None and not owner.is_module:
            return owner.bindings[name].signature
        # Module-level names: configured declarations describe them best
        configured = self._declared.get(name)
        if configured is not None:
            return configured
        if owner is not None:
            return owner.bindings[name].signature
        return self._builtins.get(name)

    def _receiver_members(self, receiver: Optional[SyntaxNode]) -> Optional[Dict[str, Signature]]:
        if receiver is None or self.scopes is None:
            return None
        if receiver.raw_kind == "this":
            cls = enclosing_class(receiver)
            return self._class_members.get(cls) if cls is not None else None
        if receiver.kind != IDENTIFIER:
            return None
        binding = self.scopes.lookup(receiver, receiver.text)
        if binding is None:
            return None
        if binding.members is not None:
            return binding.members
        return self._types.get(binding.type_name) if binding.type_name else None

    # === Indexing ===

    def _index(self, root: SyntaxNode) -> None:
        scopes = self.scopes
        for node in iter_preorder(root):
            kind = node.raw_kind
            own_scope = scopes.open_scope(node)

            if kind in _FUNCTION_DECLARATION_KINDS:
                name = node.field("name")
                if name is not None:
                    scopes.scope_at(node).bind(Binding(name.text, signature=self._signature(name.text, node)))
            elif kind in ("function_expression", "function", "generator_function"):
                # A function expression's own name is visible only inside it
                name = node.field("name")
                if name is not None and own_scope is not None:
                    own_scope.bind(Binding(name.text, signature=self._signature(name.text, node)))
            elif kind == "arrow_function":
                param = node.field("parameter")
                if param is not None and own_scope is not None:
                    own_scope.bind(Binding(param.text))
            elif kind == "variable_declarator":
                self._bind_declarator(node)
            elif kind in _PARAMETER_KINDS:
                self._bind_parameter(node)
            elif kind == "catch_clause":
                param = node.field("parameter")
                if param is not None:
                    _bind_names(own_scope, param)
            elif kind == "for_in_statement":
                left = node.field("left")
                if left is not None and node.has_token("var"):
                    _bind_names(scopes.function_scope_at(node), left)
                elif left is not None and (node.has_token("let") or node.has_token("const")):
                    _bind_names(own_scope, left)
            elif kind in CLASS_KINDS:
                self._index_class(node)
            elif kind == "interface_declaration":
                name = node.field("name")
                if name is not None:
                    self._merge_type(name.text, self._members(node.field("body")))
            elif kind == "import_specifier":
                local = node.field("alias") or node.field("name")
                if local is not None:
                    scopes.scope_at(node).bind(Binding(local.text))
            elif kind in ("namespace_import", "import_clause"):
                for child in node.children:
                    if child.raw_kind == IDENTIFIER:
                        scopes.scope_at(node).bind(Binding(child.text))
            elif kind == "type_alias_declaration":
                name, value = node.field("name"), node.field("value")
                if name is not None and value is not None:
                    self._aliases.setdefault(name.text, type_head(render_type(value.text)))

    def _bind_declarator(self, node: SyntaxNode) -> None:
        name = node.field("name")
        if name is None:
            return
        parent = node.raw.parent
        if parent is not None and parent.type == "variable_declaration":
            scope = self.scopes.function_scope_at(node)
        else:
            scope = self.scopes.scope_at(node)
        if name.kind != IDENTIFIER:
            _bind_names(scope, name)
            return

        value = node.field("value")
        value_kind = value.raw_kind if value is not None else None
        if value_kind in _FUNCTION_VALUE_KINDS:
            binding = Binding(name.text, signature=self._signature(name.text, value))
        elif value_kind in CLASS_KINDS:
            binding = Binding(name.text, members=self._members(value.field("body")))
        elif value_kind == "object":
            binding = Binding(name.text, members=self._members(value))
        else:
            signature, type_name = self._annotated(name.text, node.field("type"))
            if type_name is None and value_kind == "new_expression":
                constructor = value.field("constructor")
                if constructor is not None:
                    type_name = type_head(render_type(constructor.text))
            binding = Binding(name.text, signature=signature, type_name=type_name)
        scope.bind(binding)

    def _bind_parameter(self, node: SyntaxNode) -> None:
        params = node.raw.parent
        if params is None or params.type != "formal_parameters" or params.parent is None:
            return
        # Parameters of bodiless signatures bind nothing
        scope = self.scopes.scope_of(SyntaxNode(params.parent))
        pattern = node.field("pattern")
        if scope is None or pattern is None:
            return
        if pattern.kind == IDENTIFIER:
            signature, type_name = self._annotated(pattern.text, node.field("type"))
            scope.bind(Binding(pattern.text, signature=signature, type_name=type_name))
        else:
            _bind_names(scope, pattern)

    def _index_class(self, node: SyntaxNode) -> None:
        members = self._members(node.field("body"))
        self._class_members[node] = members
        name = node.field("name")
        if name is None:
            return
        self._merge_type(name.text, members)
        # A class expression's name is not bound in the enclosing scope
        if node.raw_kind != "class":
            self.scopes.scope_at(node).bind(Binding(name.text, members=members))

    def _merge_type(self, name: str, members: Dict[str, Signature]) -> None:
        merged = self._types.setdefault(name, {})
        for member, signature in members.items():
            merged.setdefault(member, signature)

    def _members(self, body: Optional[SyntaxNode]) -> Dict[str, Signature]:
        """Callable members of a class body, interface body or object literal."""
        members: Dict[str, Signature] = {}
        if body is None:
            return members
        for member in body.children:
            kind = member.raw_kind
            name = member.field("key" if kind == "pair" else "name")
            if name is None:
                continue
            signature = None
            if kind in _METHOD_KINDS:
                signature = self._signature(name.text, member)
            elif kind in _PROPERTY_KINDS:
                value = member.field("value")
                if value is not None and value.raw_kind in _FUNCTION_VALUE_KINDS:
                    signature = self._signature(name.text, value)
                else:
                    signature, _ = self._annotated(name.text, member.field("type"))
            if signature is not None:
                members.setdefault(name.text, signature)
        return members

    def _annotated(self, name: str, annotation: Optional[SyntaxNode]) -> Tuple[Optional[Signature], Optional[str]]:
        """(signature, type name) from a ``: T`` annotation.

        A function type gives a signature; any other type gives its head symbol.
        """
        if annotation is None or not annotation.children:
            return None, None
        annotated = annotation.children[0]
        while annotated.raw_kind == "parenthesized_type" and annotated.children:
            annotated = annotated.children[0]
        if annotated.raw_kind == "function_type":
            returned = annotated.field("return_type")
            return (Signature.from_rendering(name, returned.text) if returned is not None else None), None
        return None, type_head(render_type(annotated.text))

    def _signature(self, name: str, decl: SyntaxNode) -> Signature:
        return Signature.from_rendering(name, self._render_return_type(decl))

    def _render_return_type(self, decl: SyntaxNode) -> str:
        annotation = decl.field("return_type")
        if annotation is not None:
            if annotation.raw_kind == "asserts_annotation":
                return "void"
            if annotation.raw_kind == "type_predicate_annotation":
                return "boolean"
            children = annotation.children
            return children[0].text if children else annotation.text.lstrip(":")

        is_async = decl.has_token("async")
        is_generator = decl.has_token("*") or decl.raw_kind in _GENERATOR_KINDS
        if is_async and is_generator:
            return "AsyncGenerator<unknown>"
        if is_generator:
            return "Generator<unknown>"
        if is_async:
            return "Promise<unknown>"
        return self._infer_from_body(decl)

    def _infer_from_body(self, decl: SyntaxNode) -> str:
        body = decl.field("body")
        if body is None:
            # Unannotated signature without a body
            return "any"
        if body.raw_kind != "statement_block":
            return _render_returned_expression(body) or "unknown"

        returns_value = False
        for expr in _iter_own_return_values(body):
            returns_value = True
            rendered = _render_returned_expression(expr)
            if rendered:
                return rendered
        return "unknown" if returns_value else "void"


def _bind_names(scope: Optional[Scope], pattern: SyntaxNode) -> None:
    """Bind every name a destructuring pattern introduces, with nothing known about it."""
    if scope is None:
        return
    stack = [pattern.raw]
    while stack:
        node = stack.pop()
        if node.type in (IDENTIFIER, "shorthand_property_identifier_pattern"):
            scope.bind(Binding(node.text.decode('utf-8', errors='ignore')))
            continue
        # Default values and property keys are not bindings
        skipped = None
        if node.type in ("assignment_pattern", "object_assignment_pattern"):
            skipped = node.child_by_field_name("right")
        elif node.type == "pair_pattern":
            skipped = node.child_by_field_name("key")
        stack.extend(c for c in node.named_children if skipped is None or c != skipped)


def _render_returned_expression(expr: SyntaxNode) -> Optional[str]:
    """Rendering for ``new Promise<T>(...)``; None for anything else."""
    if expr.raw_kind != "new_expression":
        return None
    constructor = expr.field("constructor")
    if constructor is None or constructor.text != PROMISE_TYPE_NAME:
        return None
    type_arguments = expr.raw.child_by_field_name("type_arguments")
    if type_arguments is None:
        return "Promise<unknown>"
    return PROMISE_TYPE_NAME + type_arguments.text.decode('utf-8', errors='ignore')


def _iter_own_return_values(body: SyntaxNode) -> Iterator[SyntaxNode]:
    """Returned expressions of a function body, excluding nested functions and classes."""
    stack = list(reversed(body.children))
    while stack:
        node = stack.pop()
        if node.raw_kind in _NESTED_BODY_KINDS:
            continue
        if node.raw_kind == "return_statement":
            values = node.children
            if values:
                yield _strip_parens(values[0])
            continue
        stack.extend(reversed(node.children))


def _strip_parens(node: SyntaxNode) -> SyntaxNode:
    while node.raw_kind == "parenthesized_expression" and node.children:
        node = node.children[0]
    return node
