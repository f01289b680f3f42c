# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Tests for committing artifacts to disk and the rustfmt formatter hook."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

from cddlgen.compiler.output import DirectoryOutput, OutputError, rustfmt_formatter, write_artifacts

# ###############
# Directory output
# ###############


class TestDirectoryOutput:
    def test_writes_nested_artifacts(self, tmp_path: Path) -> None:
        out = tmp_path / "generated"
        write_artifacts({"Cargo.toml": "[package]\n", "src/lib.rs": "pub mod x;\n"}, DirectoryOutput(out))
        assert (out / "Cargo.toml").read_text(encoding="utf-8") == "[package]\n"
        assert (out / "src" / "lib.rs").read_text(encoding="utf-8") == "pub mod x;\n"

    def test_staging_directory_is_removed(self, tmp_path: Path) -> None:
        DirectoryOutput(tmp_path).commit({"a.txt": "a"})
        assert sorted(p.name for p in tmp_path.iterdir()) == ["a.txt"]

    def test_existing_files_are_replaced(self, tmp_path: Path) -> None:
        (tmp_path / "a.txt").write_text("old", encoding="utf-8")
        DirectoryOutput(tmp_path).commit({"a.txt": "new"})
        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "new"

    @pytest.mark.parametrize("name", ["/etc/passwd", "../outside.txt", "src/../../outside.txt", ""])
    def test_paths_outside_the_directory_are_rejected(self, tmp_path: Path, name: str) -> None:
        out = tmp_path / "generated"
        with pytest.raises(OutputError, match="not a relative path"):
            DirectoryOutput(out).commit({"ok.txt": "ok", name: "bad"})
        assert not out.exists()

    def test_failure_leaves_target_untouched(self, tmp_path: Path) -> None:
        out = tmp_path / "generated"
        out.mkdir()
        # "a.txt" cannot be both a file and a directory.
        with pytest.raises(OutputError):
            DirectoryOutput(out).commit({"a.txt": "file", "a.txt/b.txt": "nested"})
        assert list(out.iterdir()) == []

    def test_directory_property(self, tmp_path: Path) -> None:
        assert DirectoryOutput(tmp_path).directory == tmp_path


# ###############
# Formatter
# ###############


class TestRustfmtFormatter:
    def test_non_rust_artifacts_pass_through(self) -> None:
        formatter = rustfmt_formatter("definitely-not-rustfmt")
        assert formatter("Cargo.toml", "[package]\n") == "[package]\n"

    def test_missing_executable_keeps_text(self, caplog: pytest.LogCaptureFixture) -> None:
        formatter = rustfmt_formatter("definitely-not-rustfmt")
        with caplog.at_level(logging.WARNING, logger="cddlgen.compiler.output"):
            assert formatter("src/lib.rs", "fn main(){}") == "fn main(){}"
        assert "not found" in caplog.text

    def test_failing_executable_keeps_text(self, caplog: pytest.LogCaptureFixture) -> None:
        # The interpreter rejects the rustfmt arguments and exits non-zero.
        formatter = rustfmt_formatter(sys.executable)
        with caplog.at_level(logging.WARNING, logger="cddlgen.compiler.output"):
            assert formatter("src/lib.rs", "fn main(){}") == "fn main(){}"
        assert "failed on src/lib.rs" in caplog.text
