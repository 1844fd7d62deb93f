"""Tests for suppression comments."""

from awaitguard.engine.suppressions import (
    SuppressionParser,
    filter_suppressed_findings,
    validate_suppression_patterns,
)
from awaitguard.engine.types import Finding


RULE_ID = "concurrency.require_await_for_promise"


def _finding_at(text: str, needle: str) -> Finding:
    start = text.encode("utf-8").index(needle.encode("utf-8"))
    return Finding(rule=RULE_ID, message="m", file="t.ts", start_byte=start,
                   end_byte=start + len(needle), severity="warn")


class TestSuppressionParser:

    def test_same_line(self):
        text = "load();  // awaitguard: ignore[concurrency.require_await_for_promise]\nsave();\n"
        parser = SuppressionParser(text)
        assert parser.is_suppressed(RULE_ID, text.index("load"))
        assert not parser.is_suppressed(RULE_ID, text.index("save"))

    def test_next_line(self):
        text = "// awaitguard: ignore-next-line[concurrency.*]\nload();\nsave();\n"
        parser = SuppressionParser(text)
        assert parser.is_suppressed(RULE_ID, text.index("load"))
        assert not parser.is_suppressed(RULE_ID, text.index("save"))

    def test_multiple_patterns_and_globs(self):
        text = "load(); // awaitguard: ignore[style.x, concurrency.require_*]\n"
        parser = SuppressionParser(text)
        assert parser.is_suppressed(RULE_ID, 0)
        assert parser.is_suppressed("style.x", 0)
        assert not parser.is_suppressed("style.y", 0)

    def test_byte_offsets_after_multibyte_text(self):
        text = "const s = 'héllo';\nload(); // awaitguard: ignore[*]\n"
        offset = text.encode("utf-8").index(b"load")
        assert SuppressionParser(text).is_suppressed(RULE_ID, offset)

    def test_stats(self):
        text = (
            "a(); // awaitguard: ignore[x, y]\n"
            "// awaitguard: ignore-next-line[x]\n"
            "b();\n"
        )
        stats = SuppressionParser(text).get_suppression_stats()
        assert stats == {"suppressed_lines": 2, "unique_patterns": 2, "total_suppressions": 3}


class TestFilterAndValidate:

    def test_filter(self):
        text = "load(); // awaitguard: ignore[concurrency.*]\nsave();\n"
        kept = filter_suppressed_findings([_finding_at(text, "load()"), _finding_at(text, "save()")], text)
        assert [text[f.start_byte:f.end_byte] for f in kept] == ["save()"]

    def test_filter_empty(self):
        assert filter_suppressed_findings([], "x") == []

    def test_validation_errors(self):
        text = (
            "a(); // awaitguard: ignore[]\n"
            "b(); // awaitguard: ignore[concurrency.*\n"
            "c(); // awaitguard: ignore[concurrency.*]\n"
        )
        assert validate_suppression_patterns(text) == [
            (1, "Empty suppression pattern"),
            (2, "Unclosed suppression bracket"),
        ]
