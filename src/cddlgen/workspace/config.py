# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Data model and YAML parser for the ``cddlgen.yaml`` generation config."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from cddlgen.backends import BACKENDS, DEFAULT_BACKENDS
from cddlgen.errors import CddlGenError
from cddlgen.model.plan import EncodingPolicy, KeyOrder, LengthEncoding

# ###############
# Public Interface
# ###############

CONFIG_FILE_NAME = "cddlgen.yaml"


class ConfigError(CddlGenError):
    """Raised when a generation config file is invalid or cannot be loaded."""


@dataclass
class GenerationConfig:
    """The parsed configuration of a generation run.

    Relative paths are kept as written; :meth:`input_paths` and
    :meth:`output_path` anchor them at the directory of the config file.

    Attributes:
        inputs: Schema files, merged in order.
        roots: Root rule names; empty means every non-generic type rule.
        output_directory: Directory receiving the generated artifacts.
        lib_name: Name of the generated library.
        backends: Backends to run.
        parallel: Render the backends concurrently.
        format: Pipe generated Rust sources through ``rustfmt``.
        encoding: Global encoding options.
    """

    inputs: list[str]
    output_directory: str = "generated"
    lib_name: str = "cddl-lib"
    roots: list[str] = field(default_factory=list)
    backends: list[str] = field(default_factory=lambda: list(DEFAULT_BACKENDS))
    parallel: bool = False
    format: bool = False
    encoding: EncodingPolicy = field(default_factory=EncodingPolicy)

    def input_paths(self, base: Path) -> list[Path]:
        return [base / path for path in self.inputs]

    def output_path(self, base: Path) -> Path:
        return base / self.output_directory


def load_generation_config(path: Path) -> GenerationConfig:
    """Load and parse a generation config file.

    Args:
        path: Path to the ``cddlgen.yaml`` file.

    Returns:
        A GenerationConfig instance populated from the file.

    Raises:
        ConfigError: If the file cannot be read or the configuration is invalid.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except OSError as exc:
        raise ConfigError(f"Cannot read config file: {exc}") from exc

    return parse_generation_config(text, source_label=str(path))


def parse_generation_config(text: str, source_label: str = "<string>") -> GenerationConfig:
    """Parse config YAML text into a GenerationConfig.

    Raises:
        ConfigError: If the YAML is invalid, a required field is missing, or a
            field is unknown or has the wrong type.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {source_label}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{source_label}: config must be a YAML mapping")
    _reject_unknown_keys(data, _TOP_LEVEL_KEYS, source_label)

    config = GenerationConfig(inputs=_require_string_list(data, "inputs", source_label))
    if "roots" in data:
        config.roots = _require_string_list(data, "roots", source_label)
    if "output-directory" in data:
        config.output_directory = _require_string(data, "output-directory", source_label)
    if "lib-name" in data:
        config.lib_name = _require_string(data, "lib-name", source_label)
    if "backends" in data:
        config.backends = _require_string_list(data, "backends", source_label)
        for name in config.backends:
            if name not in BACKENDS:
                known = ", ".join(sorted(BACKENDS))
                raise ConfigError(f"{source_label}: unknown backend '{name}' in 'backends' (known: {known})")
    if "parallel" in data:
        config.parallel = _require_bool(data, "parallel", source_label)
    if "format" in data:
        config.format = _require_bool(data, "format", source_label)
    if "encoding" in data:
        config.encoding = _parse_encoding(data["encoding"], f"{source_label}: encoding")
    return config


def render_default_config(inputs: list[str], lib_name: str) -> str:
    """Return the text of a starter config file."""
    data = {
        "inputs": inputs,
        "output-directory": "generated",
        "lib-name": lib_name,
        "backends": list(DEFAULT_BACKENDS),
        "encoding": {
            "key-order": KeyOrder.LENGTH_FIRST.value,
            "length-encoding": LengthEncoding.DEFINITE.value,
            "reject-unknown-keys": True,
        },
    }
    return yaml.safe_dump(data, sort_keys=False)


# ################
# Implementation
# ################

_TOP_LEVEL_KEYS = (
    "inputs",
    "roots",
    "output-directory",
    "lib-name",
    "backends",
    "parallel",
    "format",
    "encoding",
)

_ENCODING_KEYS = ("key-order", "length-encoding", "reject-unknown-keys")


def _reject_unknown_keys(mapping: dict[str, object], known: tuple[str, ...], source_label: str) -> None:
    for key in mapping:
        if key not in known:
            raise ConfigError(f"{source_label}: unknown field '{key}'")


def _require_string(mapping: dict[str, object], key: str, source_label: str) -> str:
    """Extract a required string field from a mapping, raising ConfigError if missing."""
    if key not in mapping:
        raise ConfigError(f"{source_label}: missing required field '{key}'")
    value = mapping[key]
    if not isinstance(value, str):
        raise ConfigError(f"{source_label}: '{key}' must be a string")
    return value


def _require_string_list(mapping: dict[str, object], key: str, source_label: str) -> list[str]:
    if key not in mapping:
        raise ConfigError(f"{source_label}: missing required field '{key}'")
    value = mapping[key]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{source_label}: '{key}' must be a list of strings")
    return list(value)


def _require_bool(mapping: dict[str, object], key: str, source_label: str) -> bool:
    value = mapping[key]
    if not isinstance(value, bool):
        raise ConfigError(f"{source_label}: '{key}' must be true or false")
    return value


def _parse_encoding(entry: object, location: str) -> EncodingPolicy:
    """Parse the ``encoding`` mapping into an EncodingPolicy."""
    if not isinstance(entry, dict):
        raise ConfigError(f"{location} must be a YAML mapping")
    _reject_unknown_keys(entry, _ENCODING_KEYS, location)

    policy = EncodingPolicy()
    if "key-order" in entry:
        raw = _require_string(entry, "key-order", location)
        try:
            policy = policy.model_copy(update={"key_order": KeyOrder(raw)})
        except ValueError:
            choices = ", ".join(order.value for order in KeyOrder)
            raise ConfigError(f"{location}: 'key-order' must be one of {choices}, got '{raw}'") from None
    if "length-encoding" in entry:
        raw = _require_string(entry, "length-encoding", location)
        try:
            policy = policy.model_copy(update={"length_encoding": LengthEncoding(raw)})
        except ValueError:
            choices = ", ".join(encoding.value for encoding in LengthEncoding)
            raise ConfigError(f"{location}: 'length-encoding' must be one of {choices}, got '{raw}'") from None
    if "reject-unknown-keys" in entry:
        policy = policy.model_copy(update={"reject_unknown_keys": _require_bool(entry, "reject-unknown-keys", location)})
    return policy
