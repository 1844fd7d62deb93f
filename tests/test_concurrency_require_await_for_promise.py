"""
Tests for concurrency.require_await_for_promise rule.

Snippets are parsed with tree-sitter and typed by the declaration resolver,
so every Promise-returning function is declared in the snippet itself (or
passed as a configured declaration).
"""

import pytest

from awaitguard.engine.syntax import CALL, SyntaxNode, iter_preorder
from awaitguard.rules.concurrency_require_await_for_promise import (
    MAX_CHAIN_STEPS,
    MESSAGE_ID,
    PROMISE_AGGREGATORS,
    PromiseTypeOracle,
    RequireAwaitForPromiseRule,
    is_handled_promise_chain,
    is_promise_aggregator_argument,
)


DECLS = """
declare function f(): Promise<string>;
declare function g(): Promise<string>;
declare function h(): Promise<string>;
declare function sync(): string;
"""


def _calls(root: SyntaxNode, callee_text: str):
    return [n for n in iter_preorder(root) if n.kind == CALL and n.callee.text == callee_text]


class TestRuleMeta:
    """Rule metadata and registration."""

    def setup_method(self):
        self.rule = RequireAwaitForPromiseRule()

    def test_meta_properties(self):
        assert self.rule.meta.id == "concurrency.require_await_for_promise"
        assert self.rule.meta.type == "problem"
        assert self.rule.meta.description == (
            "Requires await or then/catch/finally when calling functions that return a Promise"
        )
        assert self.rule.meta.recommended is False
        assert self.rule.meta.langs == ["typescript"]
        assert self.rule.meta.messages[MESSAGE_ID] == (
            "A call to a function returning a Promise must use await or then/catch/finally"
        )

    def test_rule_accepts_no_options(self):
        assert self.rule.meta.options_schema == {"type": "object", "additionalProperties": False}

    def test_requires_types(self):
        assert self.rule.requires.syntax is True
        assert self.rule.requires.types is True

    def test_aggregator_names_are_fixed(self):
        assert PROMISE_AGGREGATORS == ("all", "race", "allSettled", "any", "resolve", "reject")


class TestIdentifierCalls:
    """Bare-identifier calls: oracle, return exemption, chain and aggregator checks."""

    def test_non_promise_call_is_ignored(self, run_rule):
        assert run_rule(DECLS + "sync();\n") == []

    def test_unresolved_call_is_ignored(self, run_rule):
        assert run_rule("somethingImported();\n") == []

    def test_bare_promise_call_is_reported(self, run_rule, anchor):
        code = DECLS + "f();\n"
        findings = run_rule(code)
        assert len(findings) == 1
        assert anchor(code, findings[0]) == "f()"
        assert findings[0].message_id == MESSAGE_ID
        assert findings[0].severity == "warn"
        assert findings[0].rule == "concurrency.require_await_for_promise"

    def test_await_statement(self, run_rule):
        code = DECLS + "async function run() {\n  await f();\n  const value = await g();\n}\n"
        assert run_rule(code) == []

    @pytest.mark.parametrize("handler", ["then", "catch", "finally"])
    def test_handler_attached(self, run_rule, handler):
        code = DECLS + f"f().{handler}(() => {{}});\n"
        assert run_rule(code) == []

    def test_handler_chain(self, run_rule):
        code = DECLS + "f()\n  .then(() => {})\n  .catch(() => {});\n"
        assert run_rule(code) == []

    def test_computed_member_is_not_a_handler(self, run_rule):
        code = DECLS + "f()['then'](() => {});\n"
        assert len(run_rule(code)) == 1

    @pytest.mark.parametrize("snippet", [
        "Promise.all([f()]);",
        "Promise.resolve(f());",
        "Promise.race([f(), g()]);",
        "Promise.allSettled([f(), g()]);",
        "Promise.any([f()]);",
        "Promise.reject(f());",
    ])
    def test_aggregator_argument(self, run_rule, snippet):
        assert run_rule(DECLS + snippet + "\n") == []

    def test_aggregator_through_callback(self, run_rule):
        code = DECLS + (
            "async function run(items: number[]) {\n"
            "  return await Promise.all(items.map(() => f()));\n"
            "}\n"
        )
        assert run_rule(code) == []

    @pytest.mark.parametrize("snippet", [
        "Promise.each([f()]);",
        "Bluebird.all([f()]);",
        "Promise.ALL([f()]);",
    ])
    def test_unknown_aggregator_is_reported(self, run_rule, snippet):
        assert len(run_rule(DECLS + snippet + "\n")) == 1

    def test_direct_return_is_exempt(self, run_rule):
        code = DECLS + "async function run(): Promise<string> {\n  return f();\n}\n"
        assert run_rule(code) == []

    def test_promise_stored_in_variable_is_reported(self, run_rule, anchor):
        code = DECLS + "async function run() {\n  const pending = f();\n  return g();\n}\n"
        findings = run_rule(code)
        assert [anchor(code, x) for x in findings] == ["f()"]

    def test_promise_passed_to_plain_function_is_reported(self, run_rule):
        code = DECLS + "function log(x: unknown) {}\nlog(f());\n"
        assert len(run_rule(code)) == 1

    def test_declared_async_arrow(self, run_rule):
        code = "const load = async () => 'x';\nload();\nasync function run() { await load(); }\n"
        assert len(run_rule(code)) == 1

    def test_configured_declaration(self, run_rule):
        code = "import { loadUser } from './api';\nloadUser(1);\n"
        assert run_rule(code) == []
        findings = run_rule(code, declarations={"loadUser": "Promise<User>"})
        assert len(findings) == 1

    def test_parameter_shadowing_promise_function(self, run_rule):
        code = DECLS + "function run(f: () => number, g) {\n  f();\n  g();\n}\n"
        assert run_rule(code) == []

    def test_nested_declaration_only_answers_its_own_scope(self, run_rule):
        code = (
            "function a() {\n  async function load() {}\n  load();\n}\n"
            "function b() {\n  function load() { return 1; }\n  load();\n}\n"
            "function c() {\n  load();\n}\n"
        )
        findings = run_rule(code)
        assert len(findings) == 1
        assert findings[0].start_byte == code.index("load();")

    def test_findings_follow_source_order(self, run_rule, anchor):
        code = DECLS + "h();\ng();\nf();\n"
        assert [anchor(code, x) for x in run_rule(code)] == ["h()", "g()", "f()"]

    def test_tsx_file(self, run_rule):
        code = DECLS + "f();\nconst el = <div>{'x'}</div>;\n"
        assert len(run_rule(code, file_path="view.tsx")) == 1


class TestLogicalReturns:
    """return a || b / return a && b chains."""

    def test_unawaited_chain_reports_once_on_logical(self, run_rule, anchor):
        code = DECLS + "async function run(): Promise<string> {\n  return f() || g() || h();\n}\n"
        findings = run_rule(code)
        assert len(findings) == 1
        assert anchor(code, findings[0]) == "f() || g() || h()"
        assert findings[0].meta["node_kind"] == "logical_expression"

    def test_mixed_chain(self, run_rule, anchor):
        code = DECLS + "async function run(): Promise<string> {\n  return await f() || g();\n}\n"
        findings = run_rule(code)
        assert len(findings) == 1
        assert anchor(code, findings[0]) == "await f() || g()"

    def test_fully_awaited_chain(self, run_rule):
        code = DECLS + "async function run(): Promise<string> {\n  return await f() || await g();\n}\n"
        assert run_rule(code) == []

    def test_trailing_default_value(self, run_rule):
        code = DECLS + (
            "async function run(): Promise<string> {\n"
            "  return await f() || await g() || 'default value';\n"
            "}\n"
        )
        assert run_rule(code) == []

    def test_multiline_chain_with_parentheses(self, run_rule):
        code = DECLS + "async function run() {\n  return (f()\n    || g());\n}\n"
        assert len(run_rule(code)) == 1

    def test_and_chain_with_sync_operand(self, run_rule):
        code = DECLS + "async function run() {\n  return sync() && f();\n}\n"
        assert len(run_rule(code)) == 1

    def test_nullish_chain(self, run_rule):
        code = DECLS + "async function run() {\n  return f() ?? g();\n}\n"
        assert len(run_rule(code)) == 1

    @pytest.mark.parametrize("operand", [
        "f()!",
        "f() as Promise<string>",
        "f() satisfies Promise<string>",
        "(f())!",
    ])
    def test_type_wrapped_operand_reports_once(self, run_rule, anchor, operand):
        code = DECLS + f"async function run() {{\n  return {operand} || g();\n}}\n"
        assert [anchor(code, x) for x in run_rule(code)] == [f"{operand} || g()"]

    def test_type_wrapped_operand_with_sync_partner(self, run_rule, anchor):
        code = DECLS + "async function run() {\n  return f()! || sync();\n}\n"
        assert [anchor(code, x) for x in run_rule(code)] == ["f()! || sync()"]

    def test_logical_outside_return_uses_call_path(self, run_rule, anchor):
        code = DECLS + "const either = f() || g();\n"
        assert [anchor(code, x) for x in run_rule(code)] == ["f()", "g()"]

    def test_qualified_calls_use_direct_entry(self, run_rule, anchor):
        code = (
            "import * as api from './api';\n"
            "async function next() {\n"
            "  return api.load() || api.save();\n"
            "}\n"
        )
        declarations = {"api.load": "Promise<string>", "api.save": "Promise<void>"}
        findings = run_rule(code, declarations=declarations)
        assert sorted(anchor(code, x) for x in findings) == [
            "api.load()", "api.load() || api.save()", "api.save()",
        ]

    def test_qualified_calls_in_longer_chain(self, run_rule, anchor):
        code = (
            "async function next() {\n"
            "  return api.load() || api.save() || undefined;\n"
            "}\n"
        )
        declarations = {"api.load": "Promise<string>", "api.save": "Promise<void>"}
        findings = run_rule(code, declarations=declarations)
        assert [anchor(code, x) for x in findings] == ["api.load() || api.save() || undefined"]

    def test_unresolved_qualified_calls_are_ignored(self, run_rule):
        code = "async function next() {\n  return api.load() || api.save();\n}\n"
        assert run_rule(code) == []

    def test_qualified_call_outside_return_is_not_checked(self, run_rule):
        code = (
            "class Store {\n"
            "  async save(): Promise<void> {}\n"
            "  run() { this.save(); }\n"
            "}\n"
        )
        assert run_rule(code) == []


class TestChainStepBound:
    """The handler walk gives up after MAX_CHAIN_STEPS ancestors."""

    @staticmethod
    def _nested(depth: int) -> str:
        # f() -> depth arrays -> settle(...) -> await: the await is ancestor depth + 2
        return DECLS + (
            "declare function settle(x: unknown): Promise<void>;\n"
            "async function run() {\n"
            f"  await settle({'[' * depth}f(){']' * depth});\n"
            "}\n"
        )

    def test_await_at_last_allowed_step(self, run_rule):
        assert run_rule(self._nested(MAX_CHAIN_STEPS - 2)) == []

    def test_await_beyond_bound_is_reported(self, run_rule, anchor):
        code = self._nested(MAX_CHAIN_STEPS - 1)
        findings = run_rule(code)
        assert [anchor(code, x) for x in findings] == ["f()"]

    def test_walk_helper_respects_custom_bound(self, root_of):
        root = root_of(self._nested(3))
        (call,) = _calls(root, "f")
        assert is_handled_promise_chain(call) is True
        assert is_handled_promise_chain(call, max_steps=4) is False
        assert is_handled_promise_chain(call, max_steps=5) is True

    def test_aggregator_walk_is_unbounded(self, run_rule):
        depth = MAX_CHAIN_STEPS * 2
        code = DECLS + f"Promise.all({'[' * depth}f(){']' * depth});\n"
        assert run_rule(code) == []


class TestHelpers:
    """Direct checks of the detector helpers."""

    def test_aggregator_argument_helper(self, root_of):
        root = root_of("Promise.all([a()]);\nother([b()]);\n")
        (a_call,) = _calls(root, "a")
        (b_call,) = _calls(root, "b")
        assert is_promise_aggregator_argument(a_call) is True
        assert is_promise_aggregator_argument(b_call) is False

    def test_oracle_without_resolver(self, root_of):
        root = root_of(DECLS + "f();\n")
        (call,) = _calls(root, "f")
        assert PromiseTypeOracle(None).is_promise_call(call) is False

    def test_oracle_textual_fallback(self, root_of):
        class TextOnlyResolver:
            def __init__(self, rendering):
                self.rendering = rendering

            def resolve_return_type_text(self, call):
                return self.rendering

        root = root_of("x();\n")
        (call,) = _calls(root, "x")
        assert PromiseTypeOracle(TextOnlyResolver("Promise<number>")).is_promise_call(call) is True
        assert PromiseTypeOracle(TextOnlyResolver("PromiseLike<number>")).is_promise_call(call) is False
        assert PromiseTypeOracle(TextOnlyResolver("Promise")).is_promise_call(call) is False
        assert PromiseTypeOracle(TextOnlyResolver(None)).is_promise_call(call) is False

    def test_oracle_prefers_structural_symbol(self, run_rule):
        code = (
            "type Deferred<T> = Promise<T>;\n"
            "declare function later(): Deferred<string>;\n"
            "later();\n"
        )
        assert len(run_rule(code)) == 1

    def test_alias_is_not_a_promise_textually(self, run_rule):
        class TextOnlyResolver:
            def resolve_return_type_text(self, call):
                return "Deferred<string>"

        code = "type Deferred<T> = Promise<T>;\nlater();\n"
        assert run_rule(code, resolver=TextOnlyResolver()) == []


class TestIdempotence:

    def test_repeated_runs_are_identical(self, context_of):
        code = DECLS + (
            "f();\n"
            "async function run() {\n"
            "  g().then(() => {});\n"
            "  return await f() || h();\n"
            "}\n"
        )
        rule = RequireAwaitForPromiseRule()
        ctx = context_of(code)
        first = list(rule.visit(ctx))
        second = list(rule.visit(ctx))
        assert first == second
        assert len(first) == 2

    def test_other_languages_are_skipped(self, context_of):
        class JavaScriptAdapter:
            language_id = "javascript"

        ctx = context_of(DECLS + "f();\n")
        ctx.adapter = JavaScriptAdapter()
        assert list(RequireAwaitForPromiseRule().visit(ctx)) == []
