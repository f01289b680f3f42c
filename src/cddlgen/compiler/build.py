# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Generation entry point: schema documents in, generated artifacts out.

The pipeline runs in four stages:

1. Every document is parsed and the rules are merged in document order.
2. The type graph is built from the merged rules.
3. The encoding plan is derived from the graph and validated.
4. Each requested backend renders its artifacts from the shared, immutable
   graph and plan. With ``parallel=True`` the backends run on a thread pool.

Nothing is written to disk here; see :mod:`cddlgen.compiler.output`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from cddlgen.backends import DEFAULT_BACKENDS, BackendOptions, get_backend
from cddlgen.compiler.encoding import plan_encoding
from cddlgen.compiler.output import Formatter
from cddlgen.compiler.type_graph import build_type_graph
from cddlgen.errors import CddlGenError, UnsupportedConstruct
from cddlgen.model.ast import Schema
from cddlgen.model.graph import TypeGraph
from cddlgen.model.plan import EncodingPlan, EncodingPolicy
from cddlgen.parser import parse
from cddlgen.validation import ValidationResult, validate

logger = logging.getLogger(__name__)

# ###############
# Public Interface
# ###############


class SchemaLoadError(CddlGenError):
    """Raised when a schema document cannot be read."""


@dataclass(frozen=True)
class SchemaDocument:
    """One schema document: its name (used in error messages) and its text."""

    name: str
    text: str

    @classmethod
    def from_path(cls, path: Path) -> SchemaDocument:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SchemaLoadError(f"Cannot read schema file '{path}': {exc}") from exc
        return cls(name=str(path), text=text)


@dataclass
class CompiledSchema:
    """The resolved form of a set of schema documents.

    Attributes:
        schema: The merged rules of all documents.
        graph: The resolved type graph.
        plan: The encoding plan of every node in ``graph``.
        validation: Warnings and errors found in the graph and plan.
    """

    schema: Schema
    graph: TypeGraph
    plan: EncodingPlan
    validation: ValidationResult


@dataclass
class GenerationResult:
    """Artifacts rendered by a generation run.

    Attributes:
        artifacts: Relative artifact path mapped to file content, in backend order.
        compiled: The compiled schema the artifacts were rendered from.
    """

    artifacts: dict[str, str] = field(default_factory=dict)
    compiled: CompiledSchema | None = None


def compile_schema(
    documents: Iterable[SchemaDocument],
    roots: Sequence[str] | None = None,
    policy: EncodingPolicy | None = None,
) -> CompiledSchema:
    """Parse, resolve, plan and validate ``documents``.

    Validation findings are returned, not raised; callers decide whether
    errors are fatal (``generate`` treats them as such).

    Raises:
        CddlGenError: On the first syntax, resolution or planning error.
    """
    schema = Schema()
    for document in documents:
        started = time.perf_counter()
        schema = schema.merge(parse(document.text, source_name=document.name))
        logger.debug("Parsed %s in %.3fs", document.name, time.perf_counter() - started)

    started = time.perf_counter()
    graph = build_type_graph(schema, roots)
    logger.debug("Resolved %d types in %.3fs", len(graph), time.perf_counter() - started)

    plan = plan_encoding(graph, policy)
    defined_rules = _defined_type_rules(schema)
    validation = validate(graph, plan, defined_rules)
    return CompiledSchema(schema=schema, graph=graph, plan=plan, validation=validation)


def generate(
    documents: Iterable[SchemaDocument],
    roots: Sequence[str] | None = None,
    *,
    backends: Sequence[str] = DEFAULT_BACKENDS,
    policy: EncodingPolicy | None = None,
    options: BackendOptions | None = None,
    parallel: bool = False,
    formatter: Formatter | None = None,
) -> GenerationResult:
    """Generate the artifacts of every backend in ``backends``.

    Args:
        documents: Schema documents, merged in order.
        roots: Root rule names; defaults to every non-generic type rule.
        backends: Names of the backends to run, see :data:`cddlgen.backends.BACKENDS`.
        policy: Global encoding options.
        options: Naming and packaging options of the generated libraries.
        parallel: Render the backends concurrently on a thread pool.
        formatter: Optional callable applied to every artifact after rendering.

    Returns:
        A :class:`GenerationResult` holding every artifact in memory.

    Raises:
        CddlGenError: On the first error of any stage. Validation errors are
            raised as :class:`UnsupportedConstruct`.
        KeyError: If a backend name is unknown.
    """
    renderers = [(name, get_backend(name)) for name in backends]
    compiled = compile_schema(documents, roots, policy)
    if compiled.validation.has_errors:
        raise UnsupportedConstruct(None, "; ".join(e.message for e in compiled.validation.errors))
    options = options or BackendOptions()

    def _run(name: str) -> dict[str, str]:
        renderer = dict(renderers)[name]
        started = time.perf_counter()
        artifacts = renderer(compiled.graph, compiled.plan, options)
        logger.debug("Backend %s rendered %d artifacts in %.3fs", name, len(artifacts), time.perf_counter() - started)
        return artifacts

    names = [name for name, _ in renderers]
    if parallel and len(names) > 1:
        with ThreadPoolExecutor(max_workers=len(names)) as pool:
            futures = [pool.submit(_run, name) for name in names]
            # Results are collected in backend order; the first failure propagates.
            outputs = [future.result() for future in futures]
    else:
        outputs = [_run(name) for name in names]

    result = GenerationResult(compiled=compiled)
    for name, artifacts in zip(names, outputs):
        for path, text in artifacts.items():
            if path in result.artifacts:
                raise CddlGenError(f"Backend '{name}' produced '{path}', which another backend already produced")
            result.artifacts[path] = formatter(path, text) if formatter else text
    return result


# ################
# Implementation
# ################


def _defined_type_rules(schema: Schema) -> list[str]:
    """Return the names of non-generic type rules, each once, in declaration order."""
    names: list[str] = []
    for rule in schema.rules:
        if rule.type is None or rule.generic_params or rule.name.startswith("$"):
            continue
        if rule.name not in names:
            names.append(rule.name)
    return names
