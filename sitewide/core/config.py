#!/usr/bin/env python3
"""
config.py
--------------------
Aggregation configuration loaded from YAML.

Example ``sitewide.yaml``::

    aggregation_enabled: true
    excluded_tenants: [blog-3]
    database: data/sitewide.db
    log_dir: logs
    grace_seconds: 10
    cache_ttl: 300
    tenants:
      blog-1: sqlite:///data/tenants/blog-1.db
      blog-2: sqlite:///data/tenants/blog-2.db
    # or, for tenants discovered on disk:
    tenant_url_template: sqlite:///data/tenants/{tenant_id}.db

Relative paths are resolved against the directory holding the file.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Union

# --- Third party imports ---
import yaml

# --- Local imports ---
from .exceptions import ConfigError, ValidationError
from .paths import DB_PATH, LOG_DIR
from .validators import DataValidator


DEFAULT_GRACE_SECONDS = 10
DEFAULT_CACHE_TTL = 300


@dataclass
class AggregationConfig:
    """
    Settings consumed by the aggregator.

    Attributes:
        aggregation_enabled: Whether content-change events are mirrored
        excluded_tenants: Tenant ids whose content is never aggregated
        database: Path of the sitewide SQLite database
        log_dir: Directory for log files (None disables file logging)
        tenants: Explicit tenant id -> SQLAlchemy URL mapping
        tenant_url_template: URL template with a ``{tenant_id}`` placeholder
        grace_seconds: Window after user registration during which
            content is treated as host-generated placeholder content
        cache_ttl: Seconds cached sitewide views stay valid
    """

    aggregation_enabled: bool = True
    excluded_tenants: FrozenSet[str] = field(default_factory=frozenset)
    database: Path = DB_PATH
    log_dir: Optional[Path] = LOG_DIR
    tenants: Dict[str, str] = field(default_factory=dict)
    tenant_url_template: Optional[str] = None
    grace_seconds: int = DEFAULT_GRACE_SECONDS
    cache_ttl: int = DEFAULT_CACHE_TTL

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], base_dir: Optional[Path] = None
    ) -> "AggregationConfig":
        """
        Build a config from parsed YAML.

        Args:
            data: Mapping parsed from the YAML file
            base_dir: Directory that relative paths are resolved against

        Returns:
            AggregationConfig instance

        Raises:
            ConfigError: If a value has the wrong type
        """
        base_dir = base_dir or Path.cwd()
        config = cls()

        try:
            if "aggregation_enabled" in data:
                config.aggregation_enabled = bool(
                    DataValidator.normalize_bool(data["aggregation_enabled"])
                )
        except ValidationError as e:
            raise ConfigError(f"aggregation_enabled: {e}") from e

        excluded = data.get("excluded_tenants") or []
        if not isinstance(excluded, (list, tuple, set)):
            raise ConfigError("excluded_tenants must be a list")
        config.excluded_tenants = frozenset(str(t) for t in excluded)

        if data.get("database"):
            config.database = _resolve(base_dir, data["database"])
        if "log_dir" in data:
            config.log_dir = _resolve(base_dir, data["log_dir"]) if data["log_dir"] else None

        tenants = data.get("tenants") or {}
        if not isinstance(tenants, dict):
            raise ConfigError("tenants must map tenant ids to database URLs")
        config.tenants = {str(k): str(v) for k, v in tenants.items()}
        config.tenant_url_template = data.get("tenant_url_template")
        if config.tenant_url_template and "{tenant_id}" not in config.tenant_url_template:
            raise ConfigError("tenant_url_template needs a {tenant_id} placeholder")

        for key in ("grace_seconds", "cache_ttl"):
            if key in data:
                value = DataValidator.normalize_int(data[key])
                if value is None or value < 0:
                    raise ConfigError(f"{key} must be a non-negative integer")
                setattr(config, key, value)

        return config


def _resolve(base_dir: Path, value: Union[str, Path]) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base_dir / path).resolve()


def load_config(path: Optional[Union[str, Path]]) -> AggregationConfig:
    """
    Load the aggregation config from a YAML file.

    A missing file yields the defaults, so the CLI works before any
    configuration has been written.

    Args:
        path: Path to the YAML file, or None for defaults

    Returns:
        AggregationConfig instance

    Raises:
        ConfigError: If the file exists but cannot be parsed
    """
    if path is None:
        return AggregationConfig()

    path = Path(path).expanduser()
    if not path.exists():
        return AggregationConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must contain a mapping")

    return AggregationConfig.from_dict(data, base_dir=path.resolve().parent)
