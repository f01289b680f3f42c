# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the generation pipeline: compile_schema and generate."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cddlgen.backends import BackendOptions
from cddlgen.compiler.build import (
    SchemaDocument,
    SchemaLoadError,
    compile_schema,
    generate,
)
from cddlgen.errors import CddlGenError, UnresolvedReference, UnsupportedConstruct
from cddlgen.model.plan import ChoicePlan, ChoiceStrategy, EncodingPolicy, KeyOrder, RecordPlan
from cddlgen.parser import ParseError

# ###############
# Test data directory
# ###############

EXAMPLE = Path(__file__).parent.parent / "data" / "example.cddl"

# ###############
# Helpers
# ###############


def _doc(text: str, name: str = "test.cddl") -> SchemaDocument:
    return SchemaDocument(name=name, text=text)


# ###############
# Schema documents
# ###############


class TestSchemaDocument:
    def test_from_path(self, tmp_path: Path) -> None:
        path = tmp_path / "a.cddl"
        path.write_text("A = uint\n", encoding="utf-8")
        document = SchemaDocument.from_path(path)
        assert document.name == str(path)
        assert document.text == "A = uint\n"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SchemaLoadError, match="Cannot read schema file"):
            SchemaDocument.from_path(tmp_path / "missing.cddl")


# ###############
# Compilation
# ###############


class TestCompileSchema:
    def test_example_compiles_without_findings(self) -> None:
        compiled = compile_schema([SchemaDocument.from_path(EXAMPLE)])
        assert compiled.validation.warnings == []
        assert compiled.validation.errors == []
        assert "Point" in compiled.graph
        assert "pair<text, Point>" in compiled.graph
        message = compiled.plan["$message"]
        assert isinstance(message, ChoicePlan)
        assert message.strategy == ChoiceStrategy.LEADING_TAG

    def test_documents_are_merged_in_order(self) -> None:
        first = _doc("Message = $message\n$message /= Ping\nPing = [0]", "a.cddl")
        second = _doc("$message /= Pong\nPong = [1]", "b.cddl")
        compiled = compile_schema([first, second])
        assert [a.name for a in compiled.graph["$message"].alternatives] == ["Ping", "Pong"]
        assert [r.source for r in compiled.schema.rules] == ["a.cddl"] * 3 + ["b.cddl"] * 2

    def test_policy_reaches_the_plan(self) -> None:
        policy = EncodingPolicy(key_order=KeyOrder.DECLARATION)
        compiled = compile_schema([_doc("R = { b: uint, 1000: uint }")], policy=policy)
        plan = compiled.plan["R"]
        assert isinstance(plan, RecordPlan)
        assert plan.emission_order == ("b", "key_1000")

    def test_unreachable_rule_is_a_warning(self) -> None:
        compiled = compile_schema([_doc("A = { b: uint }\nC = tstr")], roots=["A"])
        assert [w.message for w in compiled.validation.warnings] == [
            "Rule 'C' is not reachable from the roots and generates no code."
        ]

    def test_syntax_error_names_the_document(self) -> None:
        with pytest.raises(ParseError, match="broken.cddl"):
            compile_schema([_doc("A = {", "broken.cddl")])

    def test_resolution_error_propagates(self) -> None:
        with pytest.raises(UnresolvedReference):
            compile_schema([_doc("A = { b: Missing }")])


# ###############
# Generation
# ###############


class TestGenerate:
    def test_default_backends(self) -> None:
        result = generate([SchemaDocument.from_path(EXAMPLE)])
        assert {"Cargo.toml", "src/lib.rs", "wasm/Cargo.toml", "wasm/src/lib.rs", "schema/graph.json"} <= set(
            result.artifacts
        )
        assert result.compiled is not None

    def test_selected_backends_only(self) -> None:
        options = BackendOptions(lib_name="shapes")
        result = generate([_doc("A = { x: uint }")], backends=["json-schema", "python"], options=options)
        assert set(result.artifacts) == {"schema/shapes.schema.json", "python/shapes.py"}
        json.loads(result.artifacts["schema/shapes.schema.json"])

    def test_parallel_matches_serial(self) -> None:
        documents = [SchemaDocument.from_path(EXAMPLE)]
        backends = ["rust", "wasm", "graph", "json-schema", "python"]
        serial = generate(documents, backends=backends)
        parallel = generate(documents, backends=backends, parallel=True)
        assert list(parallel.artifacts) == list(serial.artifacts)
        assert parallel.artifacts == serial.artifacts

    def test_generation_is_deterministic(self) -> None:
        documents = [SchemaDocument.from_path(EXAMPLE)]
        assert generate(documents).artifacts == generate(documents).artifacts

    def test_unknown_backend(self) -> None:
        with pytest.raises(KeyError, match="Unknown backend 'cobol'"):
            generate([_doc("A = uint")], backends=["cobol"])

    def test_duplicate_artifact_paths(self) -> None:
        with pytest.raises(CddlGenError, match="already produced"):
            generate([_doc("A = uint")], backends=["graph", "graph"])

    def test_validation_errors_are_fatal(self) -> None:
        with pytest.raises(UnsupportedConstruct, match="has no finite value"):
            generate([_doc("Loop = [next: Loop]")])

    def test_formatter_is_applied_to_every_artifact(self) -> None:
        def formatter(path: str, text: str) -> str:
            return f"formatted {path}"

        result = generate([_doc("A = { x: uint }")], backends=["graph", "json-schema"], formatter=formatter)
        assert result.artifacts == {
            "schema/graph.json": "formatted schema/graph.json",
            "schema/cddl-lib.schema.json": "formatted schema/cddl-lib.schema.json",
        }
