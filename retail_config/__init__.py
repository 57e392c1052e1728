"""
retail_config -- single public entrypoint for retail kernel configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the typed sections they need
    from the caller; none of them read files or environment variables.

Architecture position:
    Configuration.  Sits beside ``retail_kernel``; the kernel never imports
    from ``retail_config``.  Scripts and hosts read the config here and pass
    sections into service constructors.

Invariants enforced:
    - Defaults ship in ``defaults.yaml``; an operator file and explicit
      overrides are deep-merged over them, in that order.
    - Every section validates itself; unknown keys are rejected.
    - Same merged document always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the operator file does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``RETAIL_CONFIG_TRACE`` log entry with the checksum and the settings
    that change kernel behaviour.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from retail_config.loader import compute_checksum, deep_merge, load_yaml_file
from retail_config.schema import (
    DatabaseConfig,
    LoggingConfig,
    MigrationConfig,
    RetailKernelConfig,
    SalesConfig,
    TransferConfig,
)

_logger = logging.getLogger("retail_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    config_path: Path | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> RetailKernelConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Optional operator YAML merged over the defaults.
        overrides: Optional nested dict merged last (tests, CLI flags).

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ValueError: If the merged configuration is invalid.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if config_path is not None:
        data = deep_merge(data, load_yaml_file(Path(config_path)))
    if overrides:
        data = deep_merge(data, overrides)

    config = RetailKernelConfig.from_dict(data, checksum=compute_checksum(data))

    _logger.info(
        "RETAIL_CONFIG_TRACE",
        extra={
            "trace_type": "RETAIL_CONFIG_TRACE",
            "checksum": config.checksum,
            "config_path": str(config_path) if config_path is not None else None,
            "sale_timeout_seconds": config.sales.transaction_timeout_seconds,
            "store_access_mode": config.transfers.store_access_mode,
            "migration_chunk_size": config.migration.chunk_size,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "RetailKernelConfig",
    "DatabaseConfig",
    "SalesConfig",
    "TransferConfig",
    "MigrationConfig",
    "LoggingConfig",
]
