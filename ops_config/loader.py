"""
Configuration loader (``ops_config.loader``).

Responsibility
--------------
Reads a YAML configuration file and parses it into the frozen dataclasses
of ``ops_config.schema``.  Runtime callers use
``ops_config.get_active_config()`` instead of calling this directly.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from ops_config.schema import DatabaseConfig, OperationsConfig
from ops_kernel.domain.settings import KernelSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(data: dict[str, Any], name: str, cls: type) -> Any:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"'{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown key(s) in '{name}': {', '.join(unknown)}")
    return cls(**raw)


def parse_config(data: dict[str, Any]) -> OperationsConfig:
    """Parse a raw configuration dict.  Missing keys take their defaults."""
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping")
    return OperationsConfig(
        config_id=str(data.get("config_id", "")),
        version=int(data.get("version", 1)),
        database=_section(data, "database", DatabaseConfig),
        kernel=_section(data, "kernel", KernelSettings),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
