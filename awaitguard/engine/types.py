"""
Shared engine types: findings, rule metadata, the per-file rule context and
the interfaces adapters, resolvers and rules implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Iterator, List, Literal, Optional, Protocol, Tuple


Severity = Literal["info", "warn", "error"]
Priority = Literal["P0", "P1", "P2"]
Tier = Literal[0, 1, 2]
RuleType = Literal["problem", "suggestion", "layout"]
# 1-based lines and columns
FileRange = Tuple[int, int, int, int]
# 0-based byte offsets, end exclusive
NodeRange = Tuple[int, int]

_NO_OPTIONS_SCHEMA = {"type": "object", "additionalProperties": False}


@dataclass(frozen=True)
class Finding:
    """One reported problem, anchored on a byte span of a file."""
    rule: str
    message: str
    file: str
    start_byte: int
    end_byte: int
    severity: Severity
    meta: Optional[Dict[str, Any]] = None

    def _replace(self, **changes) -> "Finding":
        return replace(self, **changes)

    @property
    def message_id(self) -> Optional[str]:
        return (self.meta or {}).get("message_id")


@dataclass(frozen=True)
class RuleMeta:
    """Static description of a rule.

    Attributes:
        id: Dotted rule id, ``<category>.<name>``
        category: Grouping used in rule patterns (e.g. "concurrency")
        tier: 0 needs only syntax, 1 needs a type resolver
        priority: P0 (highest) to P2
        type: "problem", "suggestion" or "layout"
        description: One-line summary shown in listings
        langs: Language ids the rule runs on
        messages: Message id -> message text
        options_schema: JSON schema for the rule's configured options
        recommended: Whether the rule is on in a recommended preset
    """
    id: str
    category: str
    tier: Tier
    priority: Priority
    type: RuleType = "problem"
    description: str = ""
    langs: List[str] = None
    messages: Dict[str, str] = None
    options_schema: Dict[str, Any] = None
    recommended: bool = False

    def __post_init__(self):
        defaults = {"langs": [], "messages": {}, "options_schema": dict(_NO_OPTIONS_SCHEMA)}
        for name, value in defaults.items():
            if getattr(self, name) is None:
                object.__setattr__(self, name, value)


@dataclass(frozen=True)
class Requires:
    """What a rule needs from the engine before it can run."""
    raw_text: bool = False
    syntax: bool = True
    types: bool = False


class TypeResolver(Protocol):
    """Answers return-type questions about call nodes.

    ``resolve_return_type_text`` renders the resolved return type of a call
    (e.g. ``"Promise<string>"``) or returns None when no signature is known.
    Resolvers may also offer ``resolve_return_type_symbol``, the head symbol
    of the return type with aliases expanded.
    """

    def resolve_return_type_text(self, call: Any) -> Optional[str]:
        ...


@dataclass
class RuleContext:
    """Everything a rule sees about the file under analysis."""
    file_path: str
    text: str
    tree: Any
    adapter: "LanguageAdapter"
    # options configured for the rule currently running
    config: Dict[str, Any] = field(default_factory=dict)
    type_resolver: Optional[TypeResolver] = None

    @property
    def root(self):
        """Normalized root node, or None without a tree."""
        if self.tree is None:
            return None
        from .syntax import SyntaxNode
        return SyntaxNode.from_tree(self.tree)

    @property
    def language(self) -> Optional[str]:
        return self.adapter.language_id if self.adapter else None

    def walk_nodes(self, start_node=None) -> Iterator:
        """Normalized nodes under start_node (default: the root) in source order."""
        from .syntax import iter_preorder
        root = start_node or self.root
        if root is not None:
            yield from iter_preorder(root)


class Rule(Protocol):
    """A check run once per file.

    Rules keep no per-file state between ``visit`` calls, so one instance can
    serve several worker threads.
    """
    meta: RuleMeta
    requires: Requires

    def visit(self, ctx: RuleContext) -> Iterable[Finding]:
        ...


class LanguageAdapter(ABC):
    """Parsing and file discovery for one language."""

    @property
    @abstractmethod
    def language_id(self) -> str:
        ...

    @property
    @abstractmethod
    def file_extensions(self) -> Tuple[str, ...]:
        """Lower-case extensions including the dot."""

    @abstractmethod
    def parse(self, text: str, file_path: Optional[str] = None) -> Any:
        """Tree-sitter tree for text, or None when no parser is available."""

    @abstractmethod
    def list_files(self, paths: List[str]) -> List[str]:
        """Sorted absolute paths of analyzable files under paths."""

    @abstractmethod
    def node_text(self, text: str, start_byte: int, end_byte: int) -> str:
        ...

    @abstractmethod
    def byte_to_linecol(self, text: str, byte: int) -> Tuple[int, int]:
        """1-based (line, column) of a byte offset."""
