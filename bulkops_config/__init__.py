"""
bulkops_config -- single entrypoint for orchestrator configuration.

Responsibility:
    ``load_config()`` is the only way runtime code obtains settings.  It
    reads the packaged ``defaults.yaml``, overlays an optional deployment
    file (argument, or the ``BULKOPS_CONFIG`` environment variable), parses
    and validates the result into a frozen ``BulkOpsConfig``.

Failure modes:
    - ``FileNotFoundError`` -- override file does not exist.
    - ``ConfigurationError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful load emits a ``bulkops_config_loaded`` log entry with
    the checksum of the effective configuration.
"""

from __future__ import annotations

import os
from pathlib import Path

from bulkops_kernel.logging_config import get_logger

from bulkops_config.loader import load_yaml_file, merge_dicts, parse_config
from bulkops_config.schema import (
    BulkOpsConfig,
    HistorySettings,
    OrchestratorSettings,
    PollerSettings,
    ProgressSettings,
    StatisticsSettings,
    ValidationSettings,
)

__all__ = [
    "BulkOpsConfig",
    "HistorySettings",
    "OrchestratorSettings",
    "PollerSettings",
    "ProgressSettings",
    "StatisticsSettings",
    "ValidationSettings",
    "load_config",
]

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
ENV_VAR = "BULKOPS_CONFIG"


def load_config(path: str | Path | None = None) -> BulkOpsConfig:
    """Load the effective configuration.

    Args:
        path: Optional override file.  When omitted, the file named by the
            ``BULKOPS_CONFIG`` environment variable is used if set.

    Returns:
        Frozen ``BulkOpsConfig`` with ``checksum`` populated.
    """
    data = load_yaml_file(DEFAULTS_PATH)

    override = path or os.environ.get(ENV_VAR)
    if override:
        data = merge_dicts(data, load_yaml_file(Path(override)))

    config = parse_config(data)
    _logger.info(
        "bulkops_config_loaded",
        extra={
            "override": str(override) if override else None,
            "checksum": config.checksum,
        },
    )
    return config
