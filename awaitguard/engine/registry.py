"""
Rule and adapter registry.

Rules are keyed by id and adapters by language. Rule modules are found by
walking a package and collecting each module's ``RULES`` list; the module-level
functions below operate on one process-wide registry.
"""

import fnmatch
import importlib
import logging
import os
import pkgutil
from typing import Dict, Iterable, List, Optional

from .types import Rule, LanguageAdapter


logger = logging.getLogger(__name__)


class Registry:
    """Rules by id, adapters by language id."""

    def __init__(self):
        # insertion-ordered; discovery order is the run order
        self._rules: Dict[str, Rule] = {}
        self._adapters: Dict[str, LanguageAdapter] = {}

    # === rules ===

    def register_rule(self, rule: Rule) -> bool:
        """Add a rule. Returns False when its id is already taken."""
        rule_id = rule.meta.id
        if rule_id in self._rules:
            return False
        self._rules[rule_id] = rule
        return True

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        return self._rules.get(rule_id)

    def get_all_rules(self) -> List[Rule]:
        return list(self._rules.values())

    def get_rule_ids(self) -> List[str]:
        return list(self._rules)

    def get_rules_for_language(self, language: str) -> List[Rule]:
        return [r for r in self._rules.values() if language in r.meta.langs]

    def get_enabled_rules(self, enabled_patterns: Iterable[str], language: str) -> List[Rule]:
        """Rules for ``language`` whose id matches one of the fnmatch patterns.

        An empty pattern list enables nothing.
        """
        patterns = list(enabled_patterns or ())
        if not patterns:
            return []
        return [
            r for r in self.get_rules_for_language(language)
            if any(fnmatch.fnmatchcase(r.meta.id, p) for p in patterns)
        ]

    # === adapters ===

    def register_adapter(self, language: str, adapter: LanguageAdapter) -> bool:
        """Add an adapter. The first adapter registered for a language is kept."""
        if language in self._adapters:
            return False
        self._adapters[language] = adapter
        return True

    def get_adapter(self, language: str) -> Optional[LanguageAdapter]:
        return self._adapters.get(language)

    def get_adapter_for_file(self, file_path: str) -> Optional[LanguageAdapter]:
        ext = os.path.splitext(file_path)[1].lower()
        return next((a for a in self._adapters.values() if ext in a.file_extensions), None)

    def get_all_adapters(self) -> Dict[str, LanguageAdapter]:
        return dict(self._adapters)

    def list_supported_languages(self) -> List[str]:
        return list(self._adapters)

    # === discovery ===

    def discover_rules(self, entry_packages: Iterable[str]) -> int:
        """
        Import every module under the given packages and register their rules.

        Args:
            entry_packages: Dotted package names, e.g. ``["awaitguard.rules"]``

        Returns:
            Number of rules newly registered
        """
        added = 0
        for package_name in entry_packages:
            for module in self._iter_modules(package_name):
                added += self._register_module_rules(module)
        return added

    def _iter_modules(self, package_name: str):
        try:
            package = importlib.import_module(package_name)
        except ImportError as e:
            logger.warning("Could not import package %s: %s", package_name, e)
            return

        yield package
        search_path = getattr(package, "__path__", None)
        if search_path is None:
            return
        for info in pkgutil.walk_packages(search_path, package.__name__ + "."):
            try:
                yield importlib.import_module(info.name)
            except Exception as e:
                logger.warning("Failed to import rule module %s: %s", info.name, e)

    def _register_module_rules(self, module) -> int:
        rules = getattr(module, "RULES", None)
        if not isinstance(rules, list):
            return 0

        added = 0
        for entry in rules:
            try:
                rule = entry() if isinstance(entry, type) else entry
                added += self.register_rule(rule)
            except Exception as e:
                logger.warning("Failed to register rule from %s: %s", module.__name__, e)
        return added

    def clear(self) -> None:
        """Forget all rules and adapters."""
        self._rules.clear()
        self._adapters.clear()


_global_registry = Registry()


def register_rule(rule: Rule) -> bool:
    return _global_registry.register_rule(rule)


def register_adapter(language: str, adapter: LanguageAdapter) -> bool:
    return _global_registry.register_adapter(language, adapter)


def get_adapter(language: str) -> Optional[LanguageAdapter]:
    return _global_registry.get_adapter(language)


def get_adapter_for_file(file_path: str) -> Optional[LanguageAdapter]:
    return _global_registry.get_adapter_for_file(file_path)


def get_rule(rule_id: str) -> Optional[Rule]:
    return _global_registry.get_rule(rule_id)


def get_all_rules() -> List[Rule]:
    return _global_registry.get_all_rules()


def get_rule_ids() -> List[str]:
    return _global_registry.get_rule_ids()


def get_rules_for_language(language: str) -> List[Rule]:
    return _global_registry.get_rules_for_language(language)


def get_enabled_rules(enabled_patterns: Iterable[str], language: str) -> List[Rule]:
    return _global_registry.get_enabled_rules(enabled_patterns, language)


def get_all_adapters() -> Dict[str, LanguageAdapter]:
    return _global_registry.get_all_adapters()


def list_supported_languages() -> List[str]:
    return _global_registry.list_supported_languages()


def discover_rules(entry_packages: Iterable[str]) -> int:
    return _global_registry.discover_rules(entry_packages)


def clear() -> None:
    _global_registry.clear()
