#!/usr/bin/env python3
"""
paths.py
-------------------
Path constants for the sitewide aggregator.

All default locations are Path objects relative to the project root. The
root can be moved elsewhere (e.g. for a deployed install) with the
``SITEWIDE_HOME`` environment variable.

The project structure:
    ROOT/
    ├── sitewide/      # Package code
    ├── data/          # Sitewide database and tenant databases
    ├── logs/          # Application logs
    └── sitewide.yaml  # Aggregation configuration
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import os
from pathlib import Path


def _get_project_root() -> Path:
    """
    Determine the project root directory.

    Uses ``SITEWIDE_HOME`` when set; otherwise assumes this file lives at
    ROOT/sitewide/core/paths.py.

    Returns:
        Path object for project root
    """
    override = os.environ.get("SITEWIDE_HOME")
    if override:
        return Path(override).expanduser().resolve()

    # paths.py -> core/ -> sitewide/ -> ROOT/
    return Path(__file__).resolve().parent.parent.parent


# ----- Project directory -----
ROOT: Path = _get_project_root()
DATA_DIR = ROOT / "data"

# --- Database ---
DB_PATH = DATA_DIR / "sitewide.db"
TENANT_DB_DIR = DATA_DIR / "tenants"

# --- Configuration ---
CONFIG_PATH = ROOT / "sitewide.yaml"

# ---- Logs ----
LOG_DIR = ROOT / "logs"
