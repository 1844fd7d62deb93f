"""
Inline suppression comments.

    doWork();  // awaitguard: ignore[concurrency.require_await_for_promise]

    // awaitguard: ignore-next-line[concurrency.*]
    doWork();

The bracket holds comma-separated rule ids or fnmatch patterns. A finding is
suppressed when the line its anchor starts on is covered by a matching pattern.
"""

import fnmatch
import re
from bisect import bisect_right
from typing import Dict, Iterable, List, Set, Tuple

from .types import Finding


_DIRECTIVE_RE = re.compile(
    r"//\s*awaitguard:\s*(?P<kind>ignore-next-line|ignore)\s*\[\s*(?P<patterns>[^\]]*)\]",
    re.IGNORECASE,
)
_UNCLOSED_RE = re.compile(r"//\s*awaitguard:\s*ignore(?:-next-line)?\s*\[[^\]]*$", re.IGNORECASE)


def _split_patterns(raw: str) -> Set[str]:
    return {p.strip() for p in raw.split(",") if p.strip()}


class SuppressionParser:
    """Suppressed rule patterns per line of one source text."""

    def __init__(self, text: str):
        self.text = text
        # line number (1-based) -> rule patterns
        self.line_suppressions: Dict[int, Set[str]] = {}
        self._line_starts = [0]

        offset = 0
        for number, line in enumerate(text.split("\n"), 1):
            offset += len(line.encode("utf-8")) + 1
            self._line_starts.append(offset)
            for match in _DIRECTIVE_RE.finditer(line):
                patterns = _split_patterns(match.group("patterns"))
                if not patterns:
                    continue
                target = number + 1 if match.group("kind").lower() == "ignore-next-line" else number
                self.line_suppressions.setdefault(target, set()).update(patterns)

    def line_of(self, byte_offset: int) -> int:
        """1-based line containing a UTF-8 byte offset."""
        return max(bisect_right(self._line_starts, byte_offset), 1)

    def is_suppressed(self, rule_id: str, start_byte: int) -> bool:
        patterns = self.line_suppressions.get(self.line_of(start_byte), ())
        return any(rule_id == p or fnmatch.fnmatchcase(rule_id, p) for p in patterns)

    def get_suppression_stats(self) -> Dict[str, int]:
        per_line = self.line_suppressions.values()
        return {
            "suppressed_lines": len(self.line_suppressions),
            "unique_patterns": len(set().union(*per_line)),
            "total_suppressions": sum(len(patterns) for patterns in per_line),
        }


def filter_suppressed_findings(findings: Iterable[Finding], text: str) -> List[Finding]:
    findings = list(findings)
    if not findings:
        return findings
    parser = SuppressionParser(text)
    return [f for f in findings if not parser.is_suppressed(f.rule, f.start_byte)]


def validate_suppression_patterns(text: str) -> List[Tuple[int, str]]:
    """(line, message) for each malformed suppression comment."""
    problems = []
    for number, line in enumerate(text.split("\n"), 1):
        problems.extend(
            (number, "Empty suppression pattern")
            for match in _DIRECTIVE_RE.finditer(line) if not _split_patterns(match.group("patterns"))
        )
        if _UNCLOSED_RE.search(line):
            problems.append((number, "Unclosed suppression bracket"))
    return problems
