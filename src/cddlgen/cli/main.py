# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Entry point for the cddlgen command-line interface."""

import argparse
import logging
import sys
from pathlib import Path

from yachalk import chalk

from cddlgen import __version__
from cddlgen.backends import BACKENDS, BackendOptions
from cddlgen.compiler.build import SchemaDocument, compile_schema, generate
from cddlgen.compiler.output import DirectoryOutput, rustfmt_formatter, write_artifacts
from cddlgen.errors import CddlGenError
from cddlgen.workspace.config import (
    CONFIG_FILE_NAME,
    ConfigError,
    GenerationConfig,
    load_generation_config,
    render_default_config,
)

# ###############
# Public Interface
# ###############


def main(argv: list[str] | None = None) -> None:
    """Run the cddlgen CLI."""
    parser = argparse.ArgumentParser(
        prog="cddlgen",
        description="cddlgen: CBOR serialization libraries from CDDL schemas",
    )
    parser.add_argument("--version", action="version", version=f"cddlgen {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Write a starter configuration file",
        description=f"Create a {CONFIG_FILE_NAME} referencing the schemas found in a directory.",
    )
    init_parser.add_argument(
        "directory",
        nargs="?",
        default=".",
        help="Directory to write the configuration to (default: current directory)",
    )

    # check subcommand
    check_parser = subparsers.add_parser(
        "check",
        help="Check schemas for errors",
        description="Parse, resolve, plan and validate schemas without generating code.",
    )
    _add_schema_arguments(check_parser)

    # generate subcommand
    generate_parser = subparsers.add_parser(
        "generate",
        help="Generate serialization libraries",
        description="Generate code for the selected backends and write it to the output directory.",
    )
    _add_schema_arguments(generate_parser)
    generate_parser.add_argument("-o", "--output", help="Output directory (default: from config, or 'generated')")
    generate_parser.add_argument(
        "--backend",
        action="append",
        choices=sorted(BACKENDS),
        help="Backend to run; may be repeated (default: from config, or rust, wasm and graph)",
    )
    generate_parser.add_argument("--lib-name", help="Name of the generated library")
    generate_parser.add_argument("--parallel", action="store_true", help="Run the backends concurrently")
    generate_parser.add_argument("--format", action="store_true", help="Format generated Rust code with rustfmt")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if args.command is None:
        parser.print_help()
        sys.exit(0)

    sys.exit(_dispatch(args))


# ################
# Implementation
# ################

_SCHEMA_SUFFIX = ".cddl"


def _add_schema_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("schemas", nargs="*", help="Schema files (default: the inputs of the configuration)")
    parser.add_argument("--root", action="append", help="Root rule; may be repeated (default: every type rule)")
    parser.add_argument("--config", help=f"Configuration file (default: ./{CONFIG_FILE_NAME} if present)")


def _dispatch(args: argparse.Namespace) -> int:
    """Dispatch to the appropriate subcommand handler."""
    if args.command == "init":
        return _cmd_init(args)
    if args.command == "check":
        return _cmd_check(args)
    if args.command == "generate":
        return _cmd_generate(args)
    return 0


def _cmd_init(args: argparse.Namespace) -> int:
    """Handle the init subcommand."""
    directory = Path(args.directory).resolve()

    if not directory.exists():
        _error(f"directory '{directory}' does not exist.")
        return 1

    config_file = directory / CONFIG_FILE_NAME
    if config_file.exists():
        _error(f"configuration already exists at '{config_file}'.")
        return 1

    inputs = sorted(str(path.relative_to(directory)) for path in directory.rglob(f"*{_SCHEMA_SUFFIX}"))
    config_file.write_text(render_default_config(inputs, directory.name or "cddl-lib"), encoding="utf-8")
    print(chalk.green(f"Initialized cddlgen configuration at '{config_file}'."))
    if not inputs:
        print(chalk.yellow(f"No {_SCHEMA_SUFFIX} files found; add them to 'inputs'."))
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    """Handle the check subcommand."""
    try:
        config, base = _load_config(args)
        documents = _load_documents(args, config, base)
        compiled = compile_schema(documents, args.root or config.roots or None, config.encoding)
    except CddlGenError as exc:
        _error(str(exc))
        return 1

    for warning in compiled.validation.warnings:
        print(chalk.yellow(f"Warning: {warning.message}"))
    for error in compiled.validation.errors:
        _error(error.message)
    if compiled.validation.has_errors:
        return 1

    print(chalk.green(f"No issues found ({len(compiled.graph)} types)."))
    return 0


def _cmd_generate(args: argparse.Namespace) -> int:
    """Handle the generate subcommand."""
    try:
        config, base = _load_config(args)
        documents = _load_documents(args, config, base)
    except CddlGenError as exc:
        _error(str(exc))
        return 1

    output = Path(args.output) if args.output else config.output_path(base)
    options = BackendOptions(lib_name=args.lib_name or config.lib_name, generator_version=__version__)
    formatter = rustfmt_formatter() if (args.format or config.format) else None
    try:
        result = generate(
            documents,
            args.root or config.roots or None,
            backends=args.backend or config.backends,
            policy=config.encoding,
            options=options,
            parallel=args.parallel or config.parallel,
            formatter=formatter,
        )
        write_artifacts(result.artifacts, DirectoryOutput(output))
    except CddlGenError as exc:
        _error(str(exc))
        return 1

    if result.compiled is not None:
        for warning in result.compiled.validation.warnings:
            print(chalk.yellow(f"Warning: {warning.message}"))
    print(chalk.green(f"Generated {len(result.artifacts)} file(s) in '{output}'."))
    return 0


def _load_config(args: argparse.Namespace) -> tuple[GenerationConfig, Path]:
    """Return the configuration and the directory its relative paths are anchored at."""
    if args.config:
        path = Path(args.config).resolve()
        return load_generation_config(path), path.parent
    default = Path.cwd() / CONFIG_FILE_NAME
    if default.exists():
        return load_generation_config(default), default.parent
    return GenerationConfig(inputs=[]), Path.cwd()


def _load_documents(args: argparse.Namespace, config: GenerationConfig, base: Path) -> list[SchemaDocument]:
    paths = [Path(schema) for schema in args.schemas] or config.input_paths(base)
    if not paths:
        raise ConfigError("No schema files given and no configuration inputs found.")
    return [SchemaDocument.from_path(path) for path in paths]


def _error(message: str) -> None:
    print(chalk.red(f"Error: {message}"), file=sys.stderr)
