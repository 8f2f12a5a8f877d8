#!/usr/bin/env python3
"""
decorators.py
--------------------
Decorators shared by the mirror store, the health monitor and the sync
engine.

- handle_db_errors: map SQLAlchemy failures onto DatabaseError, or onto
  TransientStoreError when a retry can help
- log_database_operation: debug-log start and duration through
  ``self.logger``; failures go to the error log
"""
import time
from functools import wraps
from typing import Callable

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from sitewide.core.exceptions import DatabaseError, TransientStoreError


# Substrings of driver messages that mean "try again later"
TRANSIENT_MARKERS = ("locked", "busy", "deadlock", "timeout")


def is_transient(error: BaseException) -> bool:
    """True for lock contention and timeouts, which a retry may resolve."""
    if isinstance(error, TransientStoreError):
        return True
    if isinstance(error, OperationalError):
        message = str(error).lower()
        return any(marker in message for marker in TRANSIENT_MARKERS)
    return False


def handle_db_errors(function: Callable) -> Callable:
    """
    Translate driver errors raised by ``function``.

    Project exceptions and non-database errors pass through unchanged.
    """

    @wraps(function)
    def wrapper(*args, **kwargs):
        try:
            return function(*args, **kwargs)
        except IntegrityError as e:
            raise DatabaseError(f"Data integrity violation: {e}") from e
        except SQLAlchemyError as e:
            if is_transient(e):
                raise TransientStoreError(f"Store temporarily unavailable: {e}") from e
            raise DatabaseError(f"Database operation failed: {e}") from e

    return wrapper


def log_database_operation(operation_name: str):
    """Log ``operation_name`` with its duration on the instance's logger."""

    def decorator(method: Callable) -> Callable:
        @wraps(method)
        def wrapper(self, *args, **kwargs):
            logger = getattr(self, "logger", None)
            if logger is None:
                return method(self, *args, **kwargs)

            started = time.perf_counter()
            logger.log_debug(
                f"{operation_name} started", {"args": [repr(a) for a in args[:4]]}
            )
            try:
                result = method(self, *args, **kwargs)
            except Exception as e:
                logger.log_error(
                    e,
                    {
                        "operation": operation_name,
                        "duration_seconds": round(time.perf_counter() - started, 4),
                    },
                )
                raise
            logger.log_debug(
                f"{operation_name} completed",
                {"duration_seconds": round(time.perf_counter() - started, 4)},
            )
            return result

        return wrapper

    return decorator
