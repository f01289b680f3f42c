# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for the generation configuration module."""

from pathlib import Path

import pytest

from cddlgen.backends import DEFAULT_BACKENDS
from cddlgen.model.plan import EncodingPolicy, KeyOrder, LengthEncoding
from cddlgen.workspace import (
    CONFIG_FILE_NAME,
    ConfigError,
    GenerationConfig,
    load_generation_config,
    parse_generation_config,
    render_default_config,
)

# ###############
# Helpers
# ###############


def _write_config(tmp_path: Path, content: str) -> Path:
    """Write a config file and return its path."""
    config_file = tmp_path / CONFIG_FILE_NAME
    config_file.write_text(content, encoding="utf-8")
    return config_file


# ###############
# Normal Cases
# ###############


def test_minimal_config(tmp_path: Path) -> None:
    """A config with only inputs gets the defaults for everything else."""
    config = load_generation_config(_write_config(tmp_path, "inputs: [schema.cddl]\n"))

    assert isinstance(config, GenerationConfig)
    assert config.inputs == ["schema.cddl"]
    assert config.roots == []
    assert config.output_directory == "generated"
    assert config.lib_name == "cddl-lib"
    assert config.backends == list(DEFAULT_BACKENDS)
    assert config.parallel is False
    assert config.format is False
    assert config.encoding == EncodingPolicy()


def test_full_config(tmp_path: Path) -> None:
    """Every field is read from the file."""
    content = """\
inputs:
  - a.cddl
  - b.cddl
roots: [Message]
output-directory: out
lib-name: my-protocol
backends: [rust, python]
parallel: true
format: true
encoding:
  key-order: bytewise
  length-encoding: indefinite
  reject-unknown-keys: false
"""
    config = load_generation_config(_write_config(tmp_path, content))

    assert config.inputs == ["a.cddl", "b.cddl"]
    assert config.roots == ["Message"]
    assert config.output_directory == "out"
    assert config.lib_name == "my-protocol"
    assert config.backends == ["rust", "python"]
    assert config.parallel is True
    assert config.format is True
    assert config.encoding == EncodingPolicy(
        key_order=KeyOrder.BYTEWISE,
        length_encoding=LengthEncoding.INDEFINITE,
        reject_unknown_keys=False,
    )


def test_partial_encoding_keeps_other_defaults() -> None:
    """Encoding options that are not given keep their defaults."""
    config = parse_generation_config("inputs: [a.cddl]\nencoding:\n  key-order: declaration\n")

    assert config.encoding.key_order == KeyOrder.DECLARATION
    assert config.encoding.length_encoding == LengthEncoding.DEFINITE
    assert config.encoding.reject_unknown_keys is True


def test_paths_are_anchored_at_the_base(tmp_path: Path) -> None:
    """Relative inputs and the output directory resolve against the config directory."""
    config = parse_generation_config("inputs: [schemas/a.cddl]\noutput-directory: build/gen\n")

    assert config.input_paths(tmp_path) == [tmp_path / "schemas" / "a.cddl"]
    assert config.output_path(tmp_path) == tmp_path / "build" / "gen"


def test_default_config_round_trips() -> None:
    """The starter config parses back to the same settings."""
    config = parse_generation_config(render_default_config(["schema.cddl"], "shapes"))

    assert config.inputs == ["schema.cddl"]
    assert config.lib_name == "shapes"
    assert config.backends == list(DEFAULT_BACKENDS)
    assert config.encoding == EncodingPolicy()


# ###############
# Error Cases
# ###############


def test_file_not_found(tmp_path: Path) -> None:
    """A missing config file raises ConfigError."""
    with pytest.raises(ConfigError, match="not found"):
        load_generation_config(tmp_path / CONFIG_FILE_NAME)


def test_invalid_yaml_syntax(tmp_path: Path) -> None:
    """Malformed YAML raises ConfigError naming the file."""
    config_file = _write_config(tmp_path, "inputs: [a.cddl\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_generation_config(config_file)


def test_not_a_mapping() -> None:
    """A top-level list is rejected."""
    with pytest.raises(ConfigError, match="must be a YAML mapping"):
        parse_generation_config("- a.cddl\n")


def test_missing_inputs() -> None:
    """The inputs field is required."""
    with pytest.raises(ConfigError, match="missing required field 'inputs'"):
        parse_generation_config("lib-name: x\n")


@pytest.mark.parametrize(
    "content,message",
    [
        ("inputs: a.cddl\n", "'inputs' must be a list of strings"),
        ("inputs: [a.cddl]\nroots: [1]\n", "'roots' must be a list of strings"),
        ("inputs: [a.cddl]\nlib-name: [x]\n", "'lib-name' must be a string"),
        ("inputs: [a.cddl]\nparallel: yes-please\n", "'parallel' must be true or false"),
        ("inputs: [a.cddl]\nencoding: bytewise\n", "encoding must be a YAML mapping"),
    ],
)
def test_wrong_field_types(content: str, message: str) -> None:
    """Fields with the wrong type raise ConfigError."""
    with pytest.raises(ConfigError, match=message):
        parse_generation_config(content)


def test_unknown_field() -> None:
    """Unknown top-level fields are rejected."""
    with pytest.raises(ConfigError, match="unknown field 'output'"):
        parse_generation_config("inputs: [a.cddl]\noutput: x\n")


def test_unknown_encoding_field() -> None:
    """Unknown encoding fields are rejected."""
    with pytest.raises(ConfigError, match="unknown field 'canonical'"):
        parse_generation_config("inputs: [a.cddl]\nencoding:\n  canonical: true\n")


def test_unknown_backend() -> None:
    """Backend names are checked against the registry."""
    with pytest.raises(ConfigError, match="unknown backend 'cobol'"):
        parse_generation_config("inputs: [a.cddl]\nbackends: [rust, cobol]\n")


def test_invalid_key_order() -> None:
    """Enumerated encoding options list the accepted values."""
    with pytest.raises(ConfigError, match="'key-order' must be one of length-first, bytewise, declaration"):
        parse_generation_config("inputs: [a.cddl]\nencoding:\n  key-order: random\n")


def test_invalid_length_encoding() -> None:
    with pytest.raises(ConfigError, match="'length-encoding' must be one of definite, indefinite"):
        parse_generation_config("inputs: [a.cddl]\nencoding:\n  length-encoding: streaming\n")
