#!/usr/bin/env python3
"""
exceptions.py
--------------------
Custom exception classes for the sitewide aggregator.

This module defines a hierarchy of exceptions used throughout the project
to handle specific error conditions in the mirror store, the sync engine
and the configuration layer.

Exception Hierarchy:
    Exception (built-in)
    ├── DatabaseError - Base for all mirror store errors
    │   ├── TransientStoreError - Lock/connection failures worth retrying
    │   ├── InvariantViolation - Tag refcount diverged from usage rows
    │   └── FullResyncInterrupted - A full resync failed and was rolled back
    ├── ValidationError - Data validation failures
    └── ConfigError - Unreadable or malformed configuration

    UserWarning (built-in)
    └── SchemaDriftWarning - Source rows lack columns the mirror expects

Usage:
    from sitewide.core.exceptions import DatabaseError, TransientStoreError

    try:
        engine.handle(PostChanged("blog-2", 17))
    except TransientStoreError as e:
        logger.error(f"Mirror store unavailable: {e}")
    except DatabaseError as e:
        logger.error(f"Mirror operation failed: {e}")
"""


class DatabaseError(Exception):
    """
    Base exception for mirror store errors.

    Raised when operations on the sitewide tables fail due to connection
    issues, query errors, integrity violations, or other database problems.

    This is the parent class for all store-specific exceptions. Catch this
    to handle any store error, or catch specific subclasses for more
    granular handling.

    Examples:
        >>> raise DatabaseError("Data integrity violation: duplicate slug")
    """

    pass


class TransientStoreError(DatabaseError):
    """
    Exception for store failures that may succeed when retried.

    Raised when the underlying database is locked, busy or unreachable,
    or a single write fails for operational reasons. The triggering event
    should be retried; if it still fails it is recorded as unsynced so
    the mirror can be repaired later.

    Examples:
        >>> raise TransientStoreError("database is locked")
    """

    pass


class InvariantViolation(DatabaseError):
    """
    Exception for broken tag refcount invariants.

    Raised by the health monitor when a Tag's usage_count differs from
    the number of live TagUsage rows that reference it, when a Tag with a
    zero count survives, or when a usage row points at a post that is not
    mirrored. Any of these indicates a bug in the tag delta application
    or a missed rollback.

    Attributes:
        violations: List of dictionaries describing each violation

    Examples:
        >>> raise InvariantViolation("1 tag count mismatch", [{"slug": "x"}])
    """

    def __init__(self, message: str, violations=None):
        super().__init__(message)
        self.violations = violations or []


class FullResyncInterrupted(DatabaseError):
    """
    Exception for a full resync that failed part of the way through.

    The resync runs in a single transaction, so when this is raised the
    previous mirror contents are still in place. The original failure is
    available as ``__cause__``.

    Examples:
        >>> raise FullResyncInterrupted("Resync aborted on tenant blog-4")
    """

    pass


class ValidationError(Exception):
    """
    Exception for data validation failures.

    Raised when input data fails validation checks:
    - Empty tag names or slugs
    - Missing identifiers in source rows
    - Malformed event payloads

    Examples:
        >>> raise ValidationError("Tag slug cannot be empty")
    """

    pass


class ConfigError(Exception):
    """
    Exception for configuration failures.

    Raised when the YAML configuration cannot be read or contains values
    of the wrong type.

    Examples:
        >>> raise ConfigError("excluded_tenants must be a list")
    """

    pass


class SchemaDriftWarning(UserWarning):
    """
    Warning for source schemas missing fields the mirror expects.

    The mirror degrades gracefully by copying only the columns present in
    both schemas; this warning records which mirror columns were left at
    their defaults.
    """

    pass
