"""
TypeScript adapter: tree-sitter parsing for .ts/.mts/.cts (TypeScript grammar)
and .tsx (TSX grammar), plus source file discovery.

Parsers are built on first use and are not thread-safe; the runner gives each
worker thread its own adapter instance.
"""
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import tree_sitter
import tree_sitter_typescript

from .types import LanguageAdapter


logger = logging.getLogger(__name__)

IGNORED_DIRS = frozenset({"node_modules", "__pycache__", "dist", "build", "coverage"})
DECLARATION_SUFFIX = ".d.ts"

_GRAMMARS = {
    "typescript": tree_sitter_typescript.language_typescript,
    "tsx": tree_sitter_typescript.language_tsx,
}


class TypeScriptAdapter(LanguageAdapter):
    """tree-sitter backed adapter for TypeScript and TSX sources."""

    def __init__(self):
        self._parsers: Dict[str, Optional[tree_sitter.Parser]] = {}

    @property
    def language_id(self) -> str:
        return "typescript"

    @property
    def file_extensions(self) -> Tuple[str, ...]:
        return (".ts", ".tsx", ".mts", ".cts")

    def _parser_for(self, file_path: Optional[str]) -> Optional[tree_sitter.Parser]:
        grammar = "tsx" if file_path and file_path.lower().endswith(".tsx") else "typescript"
        if grammar not in self._parsers:
            try:
                self._parsers[grammar] = tree_sitter.Parser(tree_sitter.Language(_GRAMMARS[grammar]()))
                logger.debug("Loaded %s grammar", grammar)
            except Exception as e:
                # Remember the failure so the grammar is not reloaded for every file
                logger.warning("Could not load the %s grammar: %s", grammar, e)
                self._parsers[grammar] = None
        return self._parsers[grammar]

    def parse(self, text, file_path: Optional[str] = None) -> Any:
        """Parse str or UTF-8 bytes. None when the grammar is unavailable or text has another type."""
        if isinstance(text, str):
            source = text.encode('utf-8')
        elif isinstance(text, bytes):
            source = text
        else:
            return None

        parser = self._parser_for(file_path)
        return parser.parse(source) if parser is not None else None

    def _is_source(self, name: str) -> bool:
        lowered = name.lower()
        return lowered.endswith(self.file_extensions) and not lowered.endswith(DECLARATION_SUFFIX)

    def list_files(self, paths: List[str]) -> List[str]:
        """TypeScript sources under paths, skipping .d.ts files, hidden and vendored directories."""
        found = set()

        for path in paths:
            if os.path.isfile(path):
                if self._is_source(path):
                    found.add(os.path.abspath(path))
                continue
            if not os.path.isdir(path):
                logger.warning("Path '%s' does not exist", path)
                continue

            for dirpath, dirnames, filenames in os.walk(path):
                dirnames[:] = [d for d in dirnames if not d.startswith('.') and d not in IGNORED_DIRS]
                found.update(
                    os.path.abspath(os.path.join(dirpath, name))
                    for name in filenames if self._is_source(name)
                )

        return sorted(found)

    def node_text(self, text: str, start_byte: int, end_byte: int) -> str:
        return text.encode('utf-8')[start_byte:end_byte].decode('utf-8', errors='ignore')

    def byte_to_linecol(self, text: str, byte: int) -> Tuple[int, int]:
        prefix = text.encode('utf-8')[:max(byte, 0)].decode('utf-8', errors='ignore')
        last_line = prefix.rsplit('\n', 1)[-1]
        return prefix.count('\n') + 1, len(last_line) + 1


default_typescript_adapter = TypeScriptAdapter()
