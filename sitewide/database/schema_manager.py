#!/usr/bin/env python3
"""
schema_manager.py
--------------------
Create-or-extend management of the mirror tables.

The mirror schema only ever grows: a missing table is created and missing
columns are added in place through Alembic's operations API. Nothing is
renamed or dropped, and index-only differences are repaired without
counting as a change, because they do not alter what a row contains.

A reported change means previously mirrored rows may lack data for the
new columns, so the caller is expected to follow up with a full resync.
"""
from __future__ import annotations

from typing import Iterable, List, Optional

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Column, Engine, Table, inspect

from sitewide.core.exceptions import DatabaseError
from sitewide.core.logging_manager import SitewideLogger, safe_logger
from sitewide.database.decorators import handle_db_errors


class SchemaManager:
    """
    Ensures mirror tables exist with at least the columns of their models.

    Attributes:
        engine: SQLAlchemy engine of the sitewide database
        logger: Optional logger
    """

    def __init__(self, engine: Engine, logger: Optional[SitewideLogger] = None):
        self.engine = engine
        self.logger = logger

    @staticmethod
    def _column_for_add(column: Column) -> Column:
        server_default = column.server_default.arg if column.server_default is not None else None
        return Column(column.name, column.type, nullable=True, server_default=server_default)

    @handle_db_errors
    def ensure_table(self, table: Table) -> bool:
        """
        Create a table or add the columns it is missing.

        Args:
            table: Model table definition

        Returns:
            True if the table was created or gained columns
        """
        with self.engine.begin() as conn:
            inspector = inspect(conn)

            if not inspector.has_table(table.name):
                table.create(conn)
                safe_logger(self.logger).log_operation(
                    "table_created", {"table": table.name}
                )
                return True

            existing = {c["name"] for c in inspector.get_columns(table.name)}
            missing: List[Column] = [c for c in table.columns if c.name not in existing]

            if missing:
                operations = Operations(MigrationContext.configure(conn))
                for column in missing:
                    operations.add_column(table.name, self._column_for_add(column))
                safe_logger(self.logger).log_operation(
                    "columns_added",
                    {"table": table.name, "columns": [c.name for c in missing]},
                )

            existing_indexes = {i["name"] for i in inspector.get_indexes(table.name)}
            for index in table.indexes:
                if index.name not in existing_indexes:
                    index.create(conn)
                    safe_logger(self.logger).log_debug(
                        "index_restored", {"table": table.name, "index": index.name}
                    )

            return bool(missing)

    def ensure_tables(self, tables: Iterable[Table]) -> bool:
        """Ensure every table; True if any of them changed."""
        changed = False
        for table in tables:
            changed = self.ensure_table(table) or changed
        return changed

    @handle_db_errors
    def drop_tables(self, tables: Iterable[Table]) -> List[str]:
        """
        Drop the given tables if they exist.

        Returns:
            Names of the tables that were dropped
        """
        dropped: List[str] = []
        with self.engine.begin() as conn:
            inspector = inspect(conn)
            for table in tables:
                if inspector.has_table(table.name):
                    table.drop(conn)
                    dropped.append(table.name)
        safe_logger(self.logger).log_operation("tables_dropped", {"tables": dropped})
        return dropped

    def missing_columns(self, table: Table) -> List[str]:
        """Model columns the live table lacks."""
        with self.engine.connect() as conn:
            inspector = inspect(conn)
            if not inspector.has_table(table.name):
                raise DatabaseError(f"Table {table.name} does not exist")
            existing = {c["name"] for c in inspector.get_columns(table.name)}
        return [c.name for c in table.columns if c.name not in existing]
