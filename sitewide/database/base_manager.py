#!/usr/bin/env python3
"""
base_manager.py
--------------------
Session plumbing shared by the mirror store.

- execute_with_retry: rerun a unit of work while the store reports lock
  contention, backing off exponentially
- BaseManager: binds a session and logger, with helpers for unique-key
  inserts and row counts
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import time
from abc import ABC
from typing import Any, Callable, Dict, Optional, Type, TypeVar

# --- Third party imports ---
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

# --- Local imports ---
from sitewide.core.exceptions import DatabaseError
from sitewide.core.logging_manager import SitewideLogger, safe_logger

from .decorators import is_transient


T = TypeVar("T")


def execute_with_retry(
    operation: Callable[[], T],
    logger: Optional[SitewideLogger] = None,
    max_retries: int = 3,
    retry_delay: float = 0.1,
) -> T:
    """
    Run ``operation``, retrying it while it fails with a transient error.

    Each attempt must be a complete unit of work (its own transaction),
    since a retry starts it again from scratch. Waits are
    ``retry_delay * 2**attempt``.

    Args:
        operation: Zero-argument callable performing the unit of work
        logger: Optional logger for retry notices
        max_retries: Total number of attempts
        retry_delay: Base delay in seconds

    Returns:
        Whatever ``operation`` returns

    Raises:
        The error of the last attempt, or the first non-transient error
    """
    if max_retries < 1:
        raise DatabaseError(f"max_retries must be at least 1, got {max_retries}")

    attempt = 0
    while True:
        try:
            return operation()
        except Exception as e:
            attempt += 1
            if attempt >= max_retries or not is_transient(e):
                raise
            wait = retry_delay * (2 ** (attempt - 1))
            safe_logger(logger).log_debug(
                "Store busy, retrying",
                {"attempt": attempt, "max_retries": max_retries, "wait_seconds": wait},
            )
            time.sleep(wait)


class BaseManager(ABC):
    """
    Base for classes that work inside one caller-owned session.

    Managers never commit; the transaction belongs to whoever opened the
    session scope.

    Attributes:
        session: Active SQLAlchemy session
        logger: Optional logger
    """

    def __init__(self, session: Session, logger: Optional[SitewideLogger] = None):
        self.session = session
        self.logger = logger

    def _find(self, model_class: Type[T], **filters: Any) -> Optional[T]:
        return self.session.execute(
            select(model_class).filter_by(**filters)
        ).scalar_one_or_none()

    def _get_or_create(
        self,
        model_class: Type[T],
        unique_fields: Dict[str, Any],
        defaults: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Return the row identified by ``unique_fields``, inserting it if absent.

        The insert happens in a savepoint: when a concurrent writer inserts
        the same key first, only the savepoint is rolled back and the
        winner's row is returned.

        Raises:
            DatabaseError: If the key conflicts but no row can be found
        """
        existing = self._find(model_class, **unique_fields)
        if existing is not None:
            return existing

        try:
            with self.session.begin_nested():
                row = model_class(**{**(defaults or {}), **unique_fields})
                self.session.add(row)
            return row
        except IntegrityError as e:
            winner = self._find(model_class, **unique_fields)
            if winner is None:
                raise DatabaseError(
                    f"Cannot insert {model_class.__name__} {unique_fields}: {e}"
                ) from e
            return winner

    def _count(self, model_class: Type[Any], **filters: Any) -> int:
        """Number of rows matching ``filters`` (all rows without filters)."""
        stmt = select(func.count()).select_from(model_class)
        if filters:
            stmt = stmt.filter_by(**filters)
        return int(self.session.execute(stmt).scalar() or 0)

    def _exists(self, model_class: Type[Any], **filters: Any) -> bool:
        return self._count(model_class, **filters) > 0
