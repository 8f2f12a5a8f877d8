"""
Sitewide mirror database layer.

- manager: SitewideDB (engine, sessions, schema lifecycle)
- mirror_store: MirrorStore primitives over the mirror tables
- schema_manager: create-or-extend of mirror tables
- health_monitor: refcount invariant checks and repair
- models: ORM models
"""
from .health_monitor import HealthMonitor
from .manager import SitewideDB
from .mirror_store import DriftReports, MirrorStore
from .schema_manager import SchemaManager

__all__ = ["DriftReports", "HealthMonitor", "MirrorStore", "SchemaManager", "SitewideDB"]
