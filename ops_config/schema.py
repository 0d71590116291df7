"""
Configuration schema (``ops_config.schema``).

Frozen dataclasses for a parsed configuration file.  Kernel values are
carried as ``ops_kernel.domain.settings.KernelSettings`` so the kernel
never needs to import this package.
"""

from __future__ import annotations

from dataclasses import dataclass

from ops_kernel.domain.settings import KernelSettings


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings.  ``url`` may be None when DATABASE_URL supplies it."""

    url: str | None = None
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    sqlite_busy_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(f"database.max_overflow must be >= 0, got {self.max_overflow}")
        if self.sqlite_busy_timeout_seconds <= 0:
            raise ValueError(
                "database.sqlite_busy_timeout_seconds must be > 0, "
                f"got {self.sqlite_busy_timeout_seconds}"
            )


@dataclass(frozen=True)
class OperationsConfig:
    """One loaded configuration set."""

    config_id: str
    version: int
    database: DatabaseConfig
    kernel: KernelSettings
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.config_id:
            raise ValueError("config_id is required")
        if self.version < 1:
            raise ValueError(f"version must be >= 1, got {self.version}")
