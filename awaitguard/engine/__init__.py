"""
awaitguard engine package.

This package provides the tree-sitter based analysis engine: syntax views,
type resolution, rule registry, configuration and the CLI runner.
"""

from .types import (
    Finding, RuleMeta, Rule, RuleContext, Requires, TypeResolver,
    LanguageAdapter, Severity, FileRange, NodeRange
)

from .registry import (
    register_rule, register_adapter, get_adapter, get_rule,
    get_all_rules, get_rules_for_language, get_enabled_rules,
    get_all_adapters, list_supported_languages, discover_rules, clear
)

from .config import (
    EngineConfig, load_config, get_default_config, save_config, find_config_file, get_rule_severity
)

__all__ = [
    # Types
    "Finding", "RuleMeta", "Rule", "RuleContext", "Requires", "TypeResolver",
    "LanguageAdapter", "Severity", "FileRange", "NodeRange",

    # Registry
    "register_rule", "register_adapter", "get_adapter", "get_rule",
    "get_all_rules", "get_rules_for_language", "get_enabled_rules",
    "get_all_adapters", "list_supported_languages", "discover_rules", "clear",

    # Config
    "EngineConfig", "load_config", "get_default_config", "save_config", "find_config_file", "get_rule_severity"
]
