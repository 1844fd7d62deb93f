"""Tests for the TypeScript tree-sitter adapter."""

import os

from awaitguard.engine.typescript_adapter import TypeScriptAdapter


class TestTypeScriptAdapter:

    def setup_method(self):
        self.adapter = TypeScriptAdapter()

    def test_identity(self):
        assert self.adapter.language_id == "typescript"
        assert self.adapter.file_extensions == (".ts", ".tsx", ".mts", ".cts")

    def test_parse_ts_and_tsx(self):
        tree = self.adapter.parse("const x: number = 1;\n", file_path="a.ts")
        assert tree.root_node.type == "program"
        assert not tree.root_node.has_error

        tsx = self.adapter.parse("const el = <div>{x}</div>;\n", file_path="a.tsx")
        assert not tsx.root_node.has_error

    def test_parse_bytes(self):
        tree = self.adapter.parse(b"f();\n")
        assert tree.root_node.type == "program"

    def test_parse_rejects_other_input(self):
        assert self.adapter.parse(42) is None

    def test_positions(self):
        text = "é;\nfoo();\n"
        offset = text.encode("utf-8").index(b"foo")
        assert self.adapter.byte_to_linecol(text, offset) == (2, 1)
        assert self.adapter.byte_to_linecol(text, 10_000) == (3, 1)
        assert self.adapter.node_text(text, offset, offset + 3) == "foo"

    def test_list_single_files(self, tmp_path):
        source = tmp_path / "a.mts"
        source.write_text("f();\n", encoding="utf-8")
        declarations = tmp_path / "a.d.ts"
        declarations.write_text("declare const x: number;\n", encoding="utf-8")
        assert self.adapter.list_files([str(source), str(declarations)]) == [os.path.abspath(str(source))]

    def test_missing_path(self, tmp_path, caplog):
        assert self.adapter.list_files([str(tmp_path / "nope")]) == []
        assert "does not exist" in caplog.text
