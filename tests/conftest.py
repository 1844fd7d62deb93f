"""Shared fixtures for awaitguard tests."""

from typing import Dict, List, Optional

import pytest

from awaitguard.engine.syntax import SyntaxNode
from awaitguard.engine.type_resolver import DeclarationTypeResolver
from awaitguard.engine.types import Finding, RuleContext
from awaitguard.engine.typescript_adapter import TypeScriptAdapter
from awaitguard.rules.concurrency_require_await_for_promise import RequireAwaitForPromiseRule


@pytest.fixture(scope="session")
def adapter() -> TypeScriptAdapter:
    return TypeScriptAdapter()


def make_context(adapter: TypeScriptAdapter, code: str, file_path: str = "test.ts",
                 declarations: Optional[Dict[str, str]] = None, resolver=None) -> RuleContext:
    """Parse code and build a rule context with a declaration-based resolver."""
    tree = adapter.parse(code, file_path=file_path)
    if resolver is None:
        resolver = DeclarationTypeResolver(SyntaxNode.from_tree(tree), declarations)
    return RuleContext(
        file_path=file_path,
        text=code,
        tree=tree,
        adapter=adapter,
        config={},
        type_resolver=resolver,
    )


def anchor_text(code: str, finding: Finding) -> str:
    return code.encode("utf-8")[finding.start_byte:finding.end_byte].decode("utf-8")


@pytest.fixture
def anchor():
    """Source text a finding is anchored on."""
    return anchor_text


@pytest.fixture
def context_of(adapter):
    """Build a RuleContext for a snippet."""
    def _context_of(code: str, file_path: str = "test.ts",
                    declarations: Optional[Dict[str, str]] = None, resolver=None) -> RuleContext:
        return make_context(adapter, code, file_path, declarations, resolver)
    return _context_of


@pytest.fixture
def root_of(adapter):
    """Parse code and return its root SyntaxNode."""
    def _root_of(code: str, file_path: str = "test.ts") -> SyntaxNode:
        return SyntaxNode.from_tree(adapter.parse(code, file_path=file_path))
    return _root_of


@pytest.fixture
def run_rule(adapter):
    """Run the require-await rule over a snippet and return its findings."""
    rule = RequireAwaitForPromiseRule()

    def _run(code: str, declarations: Optional[Dict[str, str]] = None,
             file_path: str = "test.ts", resolver=None) -> List[Finding]:
        ctx = make_context(adapter, code, file_path, declarations, resolver)
        return list(rule.visit(ctx))
    return _run
