# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Committing generated artifacts to disk, and the optional formatter hook."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path, PurePosixPath
from typing import Protocol

from cddlgen.errors import CddlGenError

logger = logging.getLogger(__name__)

# ###############
# Public Interface
# ###############

# A formatter receives the relative artifact path and its text and returns
# the text to write.
Formatter = Callable[[str, str], str]


class OutputError(CddlGenError):
    """Raised when generated artifacts cannot be written."""


class ArtifactSink(Protocol):
    """Destination that receives all artifacts of one generation run at once."""

    def commit(self, artifacts: Mapping[str, str]) -> None: ...


class DirectoryOutput:
    """Writes artifacts below a directory, all or nothing.

    Every artifact is first written to a staging directory next to the
    target. Only when all of them have been written are they moved into
    place, so a failure while writing leaves the target untouched.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory

    def commit(self, artifacts: Mapping[str, str]) -> None:
        """Write ``artifacts`` (relative POSIX path -> text) below the directory.

        Raises:
            OutputError: If a path escapes the directory or a file cannot be written.
        """
        relative_paths = {name: _checked_relative_path(name) for name in artifacts}
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=".cddlgen-", dir=self._directory))
        except OSError as exc:
            raise OutputError(f"Cannot create output directory '{self._directory}': {exc}") from exc
        try:
            for name, text in artifacts.items():
                staged = staging / relative_paths[name]
                staged.parent.mkdir(parents=True, exist_ok=True)
                staged.write_text(text, encoding="utf-8")
            for name in artifacts:
                target = self._directory / relative_paths[name]
                target.parent.mkdir(parents=True, exist_ok=True)
                os.replace(staging / relative_paths[name], target)
        except OSError as exc:
            raise OutputError(f"Cannot write artifacts to '{self._directory}': {exc}") from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        logger.debug("Wrote %d artifacts to %s", len(artifacts), self._directory)


def write_artifacts(artifacts: Mapping[str, str], sink: ArtifactSink) -> None:
    """Hand all artifacts of a generation run to ``sink`` in one commit."""
    sink.commit(artifacts)


def rustfmt_formatter(executable: str = "rustfmt", *, timeout: int = 60) -> Formatter:
    """Return a formatter piping Rust sources through ``rustfmt``.

    Other artifacts pass through unchanged. If the tool is missing, fails or
    times out, the unformatted text is kept and a warning is logged.
    """

    def _format(path: str, text: str) -> str:
        if not path.endswith(".rs"):
            return text
        try:
            result = subprocess.run(
                [executable, "--edition", "2021"],
                input=text,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            logger.warning("%s not found on PATH; leaving %s unformatted", executable, path)
            return text
        except subprocess.TimeoutExpired:
            logger.warning("%s timed out on %s; leaving it unformatted", executable, path)
            return text
        if result.returncode != 0:
            logger.warning("%s failed on %s: %s", executable, path, result.stderr.strip())
            return text
        return result.stdout

    return _format


# ################
# Implementation
# ################


def _checked_relative_path(name: str) -> Path:
    """Return ``name`` as a relative path, rejecting absolute paths and ``..``."""
    pure = PurePosixPath(name)
    if pure.is_absolute() or ".." in pure.parts or not pure.parts:
        raise OutputError(f"Artifact path '{name}' is not a relative path inside the output directory")
    return Path(*pure.parts)
