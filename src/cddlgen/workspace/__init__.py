# Copyright 2026 CDDLGen Contributors
# SPDX-License-Identifier: Apache-2.0

"""Generation configuration for cddlgen."""

from cddlgen.workspace.config import (
    CONFIG_FILE_NAME,
    ConfigError,
    GenerationConfig,
    load_generation_config,
    parse_generation_config,
    render_default_config,
)

__all__ = [
    "CONFIG_FILE_NAME",
    "ConfigError",
    "GenerationConfig",
    "load_generation_config",
    "parse_generation_config",
    "render_default_config",
]
