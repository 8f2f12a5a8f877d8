#!/usr/bin/env python3
"""
manager.py
--------------------
Database manager for the sitewide mirror.

Provides the SitewideDB class, the explicit handle through which every
other component reaches the mirror tables. Handles:
    - The SQLite engine and session factory
    - Transactional session scopes with automatic rollback
    - Mirror store scopes (one MirrorStore per transaction)
    - Schema creation/extension of the mirror tables
    - Dropping the mirror tables on deactivation

Key Features:
    - SQLite busy timeout and WAL journal for concurrent readers
    - Working SAVEPOINT support on pysqlite (used for tag-create races)
    - Comprehensive logging through SitewideLogger

Usage:
    db = SitewideDB("data/sitewide.db", log_dir="logs")
    db.ensure_schema()
    with db.mirror_scope() as store:
        store.upsert_post("blog-a", post)
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Union

# --- Third party imports ---
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# --- Local imports ---
from sitewide.core.exceptions import DatabaseError
from sitewide.core.logging_manager import SitewideLogger, safe_logger

from .health_monitor import HealthMonitor
from .mirror_store import DriftReports, MirrorStore
from .models import Base
from .schema_manager import SchemaManager


class SitewideDB:
    """
    Main database manager for the sitewide mirror database.

    Attributes:
        db_path: Filesystem path to the SQLite database file
        engine: SQLAlchemy engine instance
        SessionLocal: SQLAlchemy session factory
        schema: SchemaManager bound to the engine
        health_monitor: HealthMonitor for invariant checks
        logger: SitewideLogger or None
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        log_dir: Optional[Union[str, Path]] = None,
        logger: Optional[SitewideLogger] = None,
        busy_timeout: float = 30.0,
    ) -> None:
        """
        Args:
            db_path: Path to the SQLite file (created on first use)
            log_dir: Directory for log files (ignored if ``logger`` is given)
            logger: Existing logger to share with other components
            busy_timeout: Seconds SQLite waits on a locked database
        """
        self.db_path = Path(db_path).expanduser().resolve()
        self.busy_timeout = busy_timeout

        if logger is not None:
            self.logger: Optional[SitewideLogger] = logger
        elif log_dir:
            self.logger = SitewideLogger(
                Path(log_dir).expanduser().resolve(), component_name="database"
            )
        else:
            self.logger = None

        self.health_monitor = HealthMonitor(self.logger)
        self.drift_reports = DriftReports()
        self._setup_engine()
        self.schema = SchemaManager(self.engine, self.logger)

    def _setup_engine(self) -> None:
        try:
            safe_logger(self.logger).log_operation(
                "database_init_start", {"db_path": str(self.db_path)}
            )
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            self.engine: Engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                pool_pre_ping=True,
                connect_args={
                    "timeout": self.busy_timeout,
                    "check_same_thread": False,
                },
            )
            self._configure_sqlite(self.engine)

            self.SessionLocal: sessionmaker = sessionmaker(
                bind=self.engine,
                autoflush=True,
                expire_on_commit=False,
            )
            safe_logger(self.logger).log_operation(
                "database_init_complete", {"success": True}
            )
        except Exception as e:
            safe_logger(self.logger).log_error(e, {"operation": "database_init"})
            raise DatabaseError(f"Database initialization failed: {e}") from e

    @staticmethod
    def _configure_sqlite(engine: Engine) -> None:
        # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    # ---- Session Management ----
    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        Commits on success, rolls back and re-raises on any exception.

        Usage:
            with db.session_scope() as session:
                session.execute(...)
        """
        session = self.SessionLocal()
        session_id = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        safe_logger(self.logger).log_debug("session_start", {"session_id": session_id})

        try:
            yield session
            session.commit()
            safe_logger(self.logger).log_debug(
                "session_commit", {"session_id": session_id}
            )
        except Exception as e:
            session.rollback()
            safe_logger(self.logger).log_error(
                e, {"operation": "session_rollback", "session_id": session_id}
            )
            raise
        finally:
            session.close()

    @contextmanager
    def mirror_scope(self) -> Iterator[MirrorStore]:
        """
        Provide a MirrorStore bound to a fresh transactional session.

        Usage:
            with db.mirror_scope() as store:
                store.delete_post("blog-a", 42)
        """
        with self.session_scope() as session:
            yield MirrorStore(session, self.logger, self.drift_reports)

    # ---- Schema lifecycle ----
    def ensure_schema(self) -> bool:
        """
        Create or extend every mirror table.

        Returns:
            True if any table was created or gained columns
        """
        changed = self.schema.ensure_tables(Base.metadata.sorted_tables)
        safe_logger(self.logger).log_operation("ensure_schema", {"changed": changed})
        return changed

    def drop_mirror_tables(self) -> List[str]:
        """Drop every mirror table (dependents first)."""
        return self.schema.drop_tables(reversed(Base.metadata.sorted_tables))

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()

    def __enter__(self) -> "SitewideDB":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        del exc_type, exc_val, exc_tb
        self.dispose()
