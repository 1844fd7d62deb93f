"""
Rule: concurrency.require_await_for_promise

Requires ``await`` or a ``then``/``catch``/``finally`` handler when calling a
function whose resolved return type is a Promise. A dropped promise loses its
rejection and races the code that follows it.

A call is accepted when any of these hold:
- it is awaited, or a handler is attached along its method chain
- it is passed (directly or inside an array) to Promise.all/race/allSettled/any/resolve/reject
- it is the argument of a ``return`` statement (``return f()``)

``return a() || b()`` and ``return a() && b()`` are inspected separately: if
any call in the logical chain is a Promise that is not directly awaited, the
logical expression is reported.

Category: concurrency
Severity: warn
Priority: P0
Languages: typescript
Autofix: none
"""

import logging
from typing import Iterator, Optional

from ..engine.types import Rule, RuleMeta, Requires, RuleContext, Finding, TypeResolver
from ..engine.syntax import (
    ARRAY, AWAIT, CALL, EXPRESSION_STATEMENT, IDENTIFIER, LOGICAL, MEMBER, RETURN,
    SyntaxNode,
)
from ..engine.type_resolver import PROMISE_TYPE_NAME


logger = logging.getLogger(__name__)

MESSAGE_ID = "missingAwait"

PROMISE_AGGREGATORS = ("all", "race", "allSettled", "any", "resolve", "reject")
_AGGREGATOR_NAMES = frozenset(PROMISE_AGGREGATORS)
HANDLER_METHODS = frozenset({"then", "catch", "finally"})
PROMISE_TYPE_PREFIX = PROMISE_TYPE_NAME + "<"

# Handler chains are expected to be shallow; the aggregator walk is unbounded.
MAX_CHAIN_STEPS = 30

# The direct-call entry only looks at || and &&; the logical-expression entry
# accepts any logical operator, ?? included.
DIRECT_RETURN_OPERATORS = frozenset({"||", "&&"})

# Type-only wrappers (f()!, f() as T, f() satisfies T, <T>f()) around a logical operand
TYPE_WRAPPER_KINDS = frozenset({
    "non_null_expression", "as_expression", "satisfies_expression", "type_assertion",
})
_STRIPPED_KINDS = TYPE_WRAPPER_KINDS | {"parenthesized_expression"}


class PromiseTypeOracle:
    """Decides whether a call returns a Promise.

    Resolvers that can name the return type's symbol (with aliases expanded)
    get a structural check; otherwise the rendered type must start with
    ``Promise<``. An unresolved call is never a Promise.
    """

    def __init__(self, resolver: Optional[TypeResolver]):
        self._resolver = resolver

    def is_promise_call(self, node: Optional[SyntaxNode]) -> bool:
        if self._resolver is None or node is None or node.kind != CALL:
            return False

        resolve_symbol = getattr(self._resolver, "resolve_return_type_symbol", None)
        if resolve_symbol is not None:
            symbol = resolve_symbol(node)
            if symbol is not None:
                return symbol == PROMISE_TYPE_NAME

        rendering = self._resolver.resolve_return_type_text(node)
        if rendering is None:
            return False
        return rendering.startswith(PROMISE_TYPE_PREFIX)


def is_handled_promise_chain(node: SyntaxNode, max_steps: int = MAX_CHAIN_STEPS) -> bool:
    """Walk up from a call looking for ``await`` or a then/catch/finally member."""
    current = node.parent
    steps = 0

    while current is not None and steps < max_steps:
        steps += 1
        kind = current.kind

        if kind == AWAIT:
            return True

        if kind == MEMBER and current.property_name in HANDLER_METHODS:
            return True

        if kind == CALL:
            callee = current.callee
            if callee is not None and callee.kind == MEMBER:
                current = callee
                continue

        if kind == MEMBER:
            receiver = current.object
            if receiver is not None:
                current = receiver
                continue

        if kind == EXPRESSION_STATEMENT:
            break

        current = current.parent

    return False


def is_promise_aggregator_call(node: Optional[SyntaxNode]) -> bool:
    """True for ``Promise.<aggregator>(...)``."""
    if node is None or node.kind != CALL:
        return False
    callee = node.callee
    if callee is None or callee.kind != MEMBER:
        return False
    receiver = callee.object
    return (
        receiver is not None
        and receiver.kind == IDENTIFIER
        and receiver.text == PROMISE_TYPE_NAME
        and callee.property_name in _AGGREGATOR_NAMES
    )


def is_promise_aggregator_argument(node: SyntaxNode) -> bool:
    """Walk up from a node looking for a Promise aggregator consuming it."""
    current = node

    while current.parent is not None:
        parent = current.parent

        if parent.kind == ARRAY and is_promise_aggregator_call(parent.parent):
            return True

        if is_promise_aggregator_call(parent):
            return True

        # Function literals are crossed like any other ancestor, so
        # Promise.all(items.map(() => f())) reaches the aggregator
        current = parent

    return False


def _strip_type_wrappers(expr: Optional[SyntaxNode]) -> Optional[SyntaxNode]:
    while expr is not None and expr.kind in _STRIPPED_KINDS and expr.children:
        # <T>expr keeps the expression after its type arguments
        expr = expr.children[-1] if expr.kind == "type_assertion" else expr.children[0]
    return expr


def consuming_parent(node: SyntaxNode) -> Optional[SyntaxNode]:
    """Nearest ancestor that is not a type-only wrapper."""
    parent = node.parent
    while parent is not None and parent.kind in TYPE_WRAPPER_KINDS:
        parent = parent.parent
    return parent


def _is_unawaited_promise_call(expr: Optional[SyntaxNode], oracle: PromiseTypeOracle) -> bool:
    expr = _strip_type_wrappers(expr)
    if expr is None or expr.kind != CALL:
        return False
    parent = expr.parent
    if parent is not None and parent.kind == AWAIT:
        return False
    return oracle.is_promise_call(expr)


def check_logical_return_promise(node: Optional[SyntaxNode], oracle: PromiseTypeOracle) -> bool:
    """Direct-call entry: ``return a || b`` where either operand is an unawaited Promise call."""
    if node is None or node.kind != LOGICAL or node.operator not in DIRECT_RETURN_OPERATORS:
        return False
    parent = node.parent
    if parent is None or parent.kind != RETURN:
        return False
    return _is_unawaited_promise_call(node.left, oracle) or _is_unawaited_promise_call(node.right, oracle)


def find_unawaited_promise_calls_in_logical(node: SyntaxNode, oracle: PromiseTypeOracle) -> bool:
    """Logical-expression entry: search every operand of a logical chain."""
    stack = [node]
    while stack:
        expr = stack.pop()
        if expr is None:
            continue
        if expr.kind == LOGICAL:
            stack.extend((expr.right, expr.left))
        elif _is_unawaited_promise_call(expr, oracle):
            return True
    return False


def is_returned_logical_operand(node: SyntaxNode) -> bool:
    """True when node is an operand of a logical chain that is itself returned."""
    current = consuming_parent(node)
    if current is None or current.kind != LOGICAL:
        return False
    while current.parent is not None and current.parent.kind == LOGICAL:
        current = current.parent
    parent = current.parent
    return parent is not None and parent.kind == RETURN


class RequireAwaitForPromiseRule(Rule):
    """Flag Promise-returning calls that are neither awaited nor handled."""

    meta = RuleMeta(
        id="concurrency.require_await_for_promise",
        category="concurrency",
        tier=1,
        priority="P0",
        type="problem",
        description="Requires await or then/catch/finally when calling functions that return a Promise",
        langs=["typescript"],
        messages={
            MESSAGE_ID: "A call to a function returning a Promise must use await or then/catch/finally",
        },
        recommended=False,
    )

    requires = Requires(syntax=True, types=True)

    def visit(self, ctx: RuleContext) -> Iterator[Finding]:
        """Visit call and logical expressions in source order."""
        if ctx.language not in self.meta.langs:
            return
        if ctx.tree is None:
            return
        if ctx.type_resolver is None:
            logger.debug("No type resolver for %s; nothing can be classified", ctx.file_path)
            return

        oracle = PromiseTypeOracle(ctx.type_resolver)

        for node in ctx.walk_nodes():
            kind = node.kind
            if kind == CALL:
                if self._check_call(node, oracle):
                    yield self._report(ctx, node)
            elif kind == LOGICAL:
                if self._check_logical(node, oracle):
                    yield self._report(ctx, node)

    def _check_call(self, node: SyntaxNode, oracle: PromiseTypeOracle) -> bool:
        callee = node.callee
        if callee is None or callee.kind != IDENTIFIER:
            return check_logical_return_promise(consuming_parent(node), oracle)

        if not oracle.is_promise_call(node):
            return False

        parent = node.parent
        if parent is not None and parent.kind == RETURN:
            return False

        # Operands of a returned logical chain are reported on the chain itself
        if is_returned_logical_operand(node):
            return False

        if is_handled_promise_chain(node) or is_promise_aggregator_argument(node):
            return False

        return True

    def _check_logical(self, node: SyntaxNode, oracle: PromiseTypeOracle) -> bool:
        parent = node.parent
        if parent is None or parent.kind != RETURN:
            return False
        return find_unawaited_promise_calls_in_logical(node, oracle)

    def _report(self, ctx: RuleContext, node: SyntaxNode) -> Finding:
        return Finding(
            rule=self.meta.id,
            message=self.meta.messages[MESSAGE_ID],
            file=ctx.file_path,
            start_byte=node.start_byte,
            end_byte=node.end_byte,
            severity="warn",
            meta={"message_id": MESSAGE_ID, "node_kind": node.kind},
        )


# Register the rule
rule = RequireAwaitForPromiseRule()
RULES = [rule]
