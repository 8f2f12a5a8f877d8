#!/usr/bin/env python3
"""
logging_manager.py
--------------------
Centralized logging for the sitewide aggregator.

Every record is one line tagged with its kind (SYNC, RESYNC, OPERATION,
ERROR, ...) followed by JSON details, so a log file can be grepped for one
tenant or one kind of event:

    grep '"tenant_id": "blog-a"' logs/aggregator.log
    grep 'RESYNC' logs/aggregator.log

Files rotate at ``max_bytes``; errors are duplicated into ``errors.log``.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import json
import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

# --- Third party imports ---
import click


FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(funcName)s:%(lineno)d] %(message)s"
CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(message)s"


class SitewideLogger:
    """
    Structured logger shared by the mirror store, the sync engine and the CLI.

    Attributes:
        log_dir: Directory for log files
        component_name: Prefix of the logger names and of the main log file
        main_logger: ``<component>.operations``, everything at DEBUG and up
        error_logger: ``<component>.errors``, errors only
    """

    def __init__(
        self,
        log_dir: Path,
        component_name: str = "aggregator",
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 3,
        console_level: int = logging.WARNING,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.component_name = component_name
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.main_logger = self._build(
            "operations", f"{component_name}.log", logging.DEBUG, max_bytes, backup_count
        )
        self.error_logger = self._build(
            "errors", "errors.log", logging.ERROR, max_bytes, backup_count
        )

        console = logging.StreamHandler()
        console.setLevel(console_level)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        self.main_logger.addHandler(console)

    def _build(
        self, suffix: str, filename: str, level: int, max_bytes: int, backup_count: int
    ) -> logging.Logger:
        logger = logging.getLogger(f"{self.component_name}.{suffix}")
        logger.setLevel(level)
        # Loggers are process-global; a second instance must not double the output
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = False

        handler = RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
        return logger

    # ---- Record formatting ----
    @staticmethod
    def _line(kind: str, message: str, details: Optional[Dict[str, Any]] = None) -> str:
        if not details:
            return f"{kind} - {message}"
        return f"{kind} - {message}: {json.dumps(details, default=str, sort_keys=True)}"

    def _emit(
        self, level: int, kind: str, message: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.main_logger.log(level, self._line(kind, message, details), stacklevel=3)

    # ---- Aggregation records ----
    def log_sync(
        self,
        action: str,
        tenant_id: Any,
        content_id: Any,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Record what one incremental event did to the mirror.

        Args:
            action: 'upserted', 'deleted', 'skipped' or 'failed'
            tenant_id: Tenant owning the post or comment
            content_id: Source id such as ``post:42`` or ``comment:7``
            details: Tag deltas, skip reasons and similar
        """
        payload: Dict[str, Any] = {"tenant_id": tenant_id, "content_id": content_id}
        payload.update(details or {})
        self._emit(logging.INFO, "SYNC", action, payload)

    def log_resync(self, phase: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Record a full resync phase ('start', 'complete')."""
        self._emit(logging.INFO, "RESYNC", phase, details)

    def log_operation(self, operation: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Record a completed store or lifecycle operation."""
        self._emit(logging.INFO, "OPERATION", operation, details or {})

    def log_debug(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.DEBUG, "DEBUG", message, details)

    def log_info(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.INFO, "INFO", message, details)

    def log_warning(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.WARNING, "WARNING", message, details)

    # ---- Errors ----
    def log_error(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Write an error, its context and its traceback to both log files.

        The traceback is only attached while the exception is being handled.
        """
        lines = [f"ERROR - {type(error).__name__}: {error}"]
        if context:
            lines.append("Context: " + ", ".join(f"{k}={v}" for k, v in context.items()))
        if sys.exc_info()[1] is error:
            lines.append("Traceback:\n" + traceback.format_exc().rstrip())
        record = "\n".join(lines)
        self.error_logger.error(record)
        self.main_logger.debug(lines[0])

    def log_cli_error(
        self,
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
        show_traceback: bool = False,
    ) -> str:
        """
        Log a failed CLI command and build the line shown to the operator.

        Returns:
            ``❌ <ErrorType>: <message>``, plus the traceback when requested
        """
        self.log_error(error, context or {"source": "cli"})
        return format_cli_error(error, show_traceback)


def format_cli_error(error: Exception, show_traceback: bool = False) -> str:
    message = f"❌ {type(error).__name__}: {error}"
    if show_traceback:
        return f"{message}\n\n{traceback.format_exc()}"
    return message


def handle_cli_error(
    ctx: "click.Context",
    error: Exception,
    operation: str,
    additional_context: Optional[Dict[str, Any]] = None,
    exit_code: int = 1,
) -> None:
    """
    Report a failed command and exit.

    Logs through the logger on the click context (if any), prints a short
    message to stderr (with traceback under ``--verbose``) and exits with
    ``exit_code``.
    """
    context = {"operation": operation, **(additional_context or {})}
    message = safe_logger(ctx.obj.get("logger")).log_cli_error(
        error, context, show_traceback=ctx.obj.get("verbose", False)
    )
    click.echo(message, err=True)
    sys.exit(exit_code)


class NullLogger:
    """
    Stand-in with the SitewideLogger interface that drops every record.

    Used when no log directory is configured so that components can log
    unconditionally.
    """

    def log_sync(self, action, tenant_id, content_id, details=None) -> None:
        pass

    def log_resync(self, phase, details=None) -> None:
        pass

    def log_operation(self, operation, details=None) -> None:
        pass

    def log_debug(self, message, details=None) -> None:
        pass

    def log_info(self, message, details=None) -> None:
        pass

    def log_warning(self, message, details=None) -> None:
        pass

    def log_error(self, error, context=None) -> None:
        pass

    def log_cli_error(self, error, context=None, show_traceback=False) -> str:
        return format_cli_error(error, show_traceback)


_null_logger = NullLogger()


def safe_logger(logger: Optional[SitewideLogger]) -> SitewideLogger:
    """Return ``logger``, or a NullLogger when it is None."""
    return logger if logger is not None else _null_logger  # type: ignore[return-value]
