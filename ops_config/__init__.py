"""
ops_config -- single public entrypoint for operations configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services and scripts never read YAML files
    or environment variables themselves.

Architecture position:
    Configuration -- sits above ``ops_kernel``.  The kernel MUST NEVER
    import from ``ops_config``; it receives a ``KernelSettings`` built here.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- unknown keys or out-of-range values.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``OPS_CONFIG_TRACE`` log entry containing the config_id, version and
    checksum, tying every sweep and write back to the configuration that
    governed it.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from ops_config.loader import load_yaml_file, parse_config
from ops_config.schema import DatabaseConfig, OperationsConfig

_logger = logging.getLogger("ops_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "OPS_CONFIG_PATH"
DATABASE_URL_ENV = "DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> OperationsConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``config_path``, then ``OPS_CONFIG_PATH``,
    then the bundled ``sets/default.yaml``.  ``DATABASE_URL`` overrides
    ``database.url``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If the configuration does not validate.
    """
    path = Path(config_path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_PATH)
    config = parse_config(load_yaml_file(path))

    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        config = dataclasses.replace(
            config, database=dataclasses.replace(config.database, url=env_url)
        )

    _logger.info(
        "OPS_CONFIG_TRACE",
        extra={
            "trace_type": "OPS_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "config_checksum": config.checksum,
            "config_path": str(path),
            "database_from_env": bool(env_url),
        },
    )
    return config


__all__ = [
    "DatabaseConfig",
    "OperationsConfig",
    "get_active_config",
]
