#!/usr/bin/env python3
"""
mirror_store.py
--------------------
Primitive operations over the sitewide mirror tables.

The mirror store owns the lifetime of MirrorPost, MirrorComment, Tag and
TagUsage rows. Every method is atomic at the single-entity level and
flushes immediately, so later reads in the same session see earlier
writes. Transaction boundaries belong to the caller (``session_scope``).

Key Features:
    - Upsert/delete of mirrored posts and comments keyed by
      ``(tenant_id, source id)``
    - Shared-field copy restricted to columns the source row and the
      mirror table both have (schema-drift tolerant)
    - Tag primitives: lookup, create, atomic usage count adjustment,
      garbage collection of unused tags
    - TagUsage primitives and the previous-tag snapshot for a post

Usage:
    with db.mirror_scope() as store:
        store.upsert_post("blog-a", post)
        previous = store.get_post_tag_slugs("blog-a", post.post_id)
"""
from __future__ import annotations

import threading
import warnings
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Set, Tuple, Type

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from sitewide.core.content import SourceComment, SourcePost
from sitewide.core.exceptions import SchemaDriftWarning, ValidationError
from sitewide.core.logging_manager import SitewideLogger, safe_logger
from sitewide.core.validators import DataValidator
from sitewide.database.decorators import handle_db_errors, log_database_operation
from sitewide.database.models import MirrorComment, MirrorPost, Tag, TagUsage

from .base_manager import BaseManager


MirrorModel = Type[Any]


class DriftReports:
    """
    Remembers which ``(table, missing columns)`` drifts were already reported.

    One instance lives on each SitewideDB, so separate databases report
    their own drift.
    """

    def __init__(self) -> None:
        self._seen: Set[Tuple[str, FrozenSet[str]]] = set()
        self._lock = threading.Lock()

    def report(self, table: str, missing: FrozenSet[str]) -> bool:
        """Record a drift; True only the first time it is seen."""
        key = (table, missing)
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()


class MirrorStore(BaseManager):
    """
    Manages the sitewide mirror tables.

    A MirrorStore is bound to one session; create one per transaction
    through ``SitewideDB.mirror_scope()``, which hands every store the
    database's DriftReports.
    """

    def __init__(
        self,
        session: Session,
        logger: Optional[SitewideLogger] = None,
        drift_reports: Optional[DriftReports] = None,
    ) -> None:
        super().__init__(session, logger)
        self.drift_reports = drift_reports if drift_reports is not None else DriftReports()

    # -------------------------------------------------------------------------
    # Shared field copy
    # -------------------------------------------------------------------------

    @staticmethod
    def _coerce(column: Any, value: Any) -> Any:
        """Convert a raw source value to the mirror column's Python type."""
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return value

        if python_type is datetime:
            return DataValidator.normalize_datetime(value)
        if value is None:
            if column.nullable:
                return None
            return 0 if python_type is int else ""
        if python_type is int:
            coerced = DataValidator.normalize_int(value)
            return coerced if coerced is not None else 0
        if python_type is str:
            return str(value)
        return value

    def shared_values(
        self, model: MirrorModel, source_fields: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Restrict a source row to the columns the mirror table also has.

        Source column names match mirror columns case-insensitively (MySQL
        column names are, so ``comment_author_IP`` fills
        ``comment_author_ip``); an exact-case match wins. Mirror columns
        the source row lacks are reported once through SchemaDriftWarning
        and left out of the copy.

        Args:
            model: MirrorPost or MirrorComment
            source_fields: Raw source columns

        Returns:
            Column name -> coerced value, key columns excluded
        """
        columns = {
            c.name: c for c in model.__table__.columns if c.name not in model.KEY_COLUMNS
        }
        by_lower: Dict[str, str] = {}
        for key in source_fields:
            by_lower.setdefault(key.lower(), key)
        source_keys = {
            name: name if name in source_fields else by_lower.get(name.lower())
            for name in columns
        }
        missing = frozenset(name for name, key in source_keys.items() if key is None)

        if missing and self.drift_reports.report(model.__tablename__, missing):
            message = (
                f"Source rows for {model.__tablename__} lack columns "
                f"{sorted(missing)}; copying the shared subset"
            )
            warnings.warn(message, SchemaDriftWarning, stacklevel=3)
            safe_logger(self.logger).log_warning(
                "schema_drift",
                {"table": model.__tablename__, "missing": sorted(missing)},
            )

        try:
            return {
                name: self._coerce(column, source_fields[source_keys[name]])
                for name, column in columns.items()
                if source_keys[name] is not None
            }
        except ValidationError as e:
            raise ValidationError(f"Unusable value for {model.__tablename__}: {e}") from e

    def _upsert(
        self, model: MirrorModel, keys: Dict[str, Any], source_fields: Mapping[str, Any]
    ) -> int:
        values = self.shared_values(model, source_fields)
        row = self.session.execute(select(model).filter_by(**keys)).scalar_one_or_none()

        if row is None:
            row = model(**keys, **values)
            self.session.add(row)
        else:
            for name, value in values.items():
                setattr(row, name, value)

        self.session.flush()
        return row.id

    # -------------------------------------------------------------------------
    # Posts
    # -------------------------------------------------------------------------

    @handle_db_errors
    @log_database_operation("upsert_post")
    def upsert_post(self, tenant_id: str, post: SourcePost) -> int:
        """
        Insert or overwrite the mirror row of a tenant post.

        Args:
            tenant_id: Tenant owning the post
            post: Current source state of the post

        Returns:
            Sitewide id of the mirror row
        """
        return self._upsert(
            MirrorPost,
            {"tenant_id": tenant_id, "source_post_id": post.post_id},
            post.shared_fields(),
        )

    @handle_db_errors
    @log_database_operation("delete_post")
    def delete_post(self, tenant_id: str, source_post_id: int) -> bool:
        """
        Remove a mirrored post. Idempotent.

        Returns:
            True if a row was removed
        """
        result = self.session.execute(
            delete(MirrorPost).where(
                MirrorPost.tenant_id == tenant_id,
                MirrorPost.source_post_id == source_post_id,
            )
        )
        self.session.flush()
        return result.rowcount > 0

    @handle_db_errors
    def get_post(self, tenant_id: str, source_post_id: int) -> Optional[MirrorPost]:
        return self.session.execute(
            select(MirrorPost).filter_by(tenant_id=tenant_id, source_post_id=source_post_id)
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    @handle_db_errors
    @log_database_operation("upsert_comment")
    def upsert_comment(self, tenant_id: str, comment: SourceComment) -> int:
        """Insert or overwrite the mirror row of a tenant comment."""
        return self._upsert(
            MirrorComment,
            {"tenant_id": tenant_id, "source_comment_id": comment.comment_id},
            comment.shared_fields(),
        )

    @handle_db_errors
    @log_database_operation("delete_comment")
    def delete_comment(self, tenant_id: str, source_comment_id: int) -> bool:
        result = self.session.execute(
            delete(MirrorComment).where(
                MirrorComment.tenant_id == tenant_id,
                MirrorComment.source_comment_id == source_comment_id,
            )
        )
        self.session.flush()
        return result.rowcount > 0

    @handle_db_errors
    def get_comment(
        self, tenant_id: str, source_comment_id: int
    ) -> Optional[MirrorComment]:
        return self.session.execute(
            select(MirrorComment).filter_by(
                tenant_id=tenant_id, source_comment_id=source_comment_id
            )
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    @handle_db_errors
    def get_tag_by_slug(self, slug: str) -> Optional[Tag]:
        return self.session.execute(
            select(Tag).filter_by(slug=slug)
        ).scalar_one_or_none()

    @handle_db_errors
    @log_database_operation("create_tag")
    def create_tag(self, name: str, slug: str) -> int:
        """
        Create a tag with a zero usage count, or return the existing one.

        Args:
            name: Display name
            slug: Normalized slug

        Returns:
            Tag id

        Raises:
            ValidationError: If the slug is empty
        """
        if not slug:
            raise ValidationError(f"Tag '{name}' has an empty slug")
        tag = self._get_or_create(
            Tag, {"slug": slug}, {"name": name or slug, "usage_count": 0}
        )
        return tag.tag_id

    @handle_db_errors
    def adjust_tag_usage_count(self, tag_id: int, delta: int) -> None:
        """Atomically add ``delta`` to a tag's usage count."""
        self.session.execute(
            update(Tag)
            .where(Tag.tag_id == tag_id)
            .values(usage_count=Tag.usage_count + delta)
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()

    @handle_db_errors
    def delete_tag_if_unused(self, tag_id: int) -> bool:
        """
        Delete a tag whose usage count has reached zero.

        Returns:
            True if the tag was deleted
        """
        result = self.session.execute(
            delete(Tag).where(Tag.tag_id == tag_id, Tag.usage_count <= 0)
        )
        self.session.flush()
        return result.rowcount > 0

    @handle_db_errors
    def get_all_tags(self) -> List[Tag]:
        return list(self.session.execute(select(Tag).order_by(Tag.slug)).scalars())

    # -------------------------------------------------------------------------
    # Tag usage
    # -------------------------------------------------------------------------

    @handle_db_errors
    def add_tag_usage(self, tag_id: int, tenant_id: str, source_post_id: int) -> bool:
        """
        Record that a post carries a tag.

        Returns:
            True if a row was added, False if it already existed
        """
        if self._exists(
            TagUsage, tag_id=tag_id, tenant_id=tenant_id, source_post_id=source_post_id
        ):
            return False
        self.session.add(
            TagUsage(tag_id=tag_id, tenant_id=tenant_id, source_post_id=source_post_id)
        )
        self.session.flush()
        return True

    @handle_db_errors
    def remove_tag_usage(self, tag_id: int, tenant_id: str, source_post_id: int) -> bool:
        result = self.session.execute(
            delete(TagUsage).where(
                TagUsage.tag_id == tag_id,
                TagUsage.tenant_id == tenant_id,
                TagUsage.source_post_id == source_post_id,
            )
        )
        self.session.flush()
        return result.rowcount > 0

    @handle_db_errors
    def get_post_tag_slugs(self, tenant_id: str, source_post_id: int) -> FrozenSet[str]:
        """
        Slugs of the tags currently mirrored for a post.

        This is the "previous" snapshot for tag reconciliation and must be
        read before the post row is overwritten.
        """
        rows = self.session.execute(
            select(Tag.slug)
            .join(TagUsage, TagUsage.tag_id == Tag.tag_id)
            .where(
                TagUsage.tenant_id == tenant_id,
                TagUsage.source_post_id == source_post_id,
            )
        ).scalars()
        return frozenset(rows)

    @handle_db_errors
    def first_tag_usage(self, tag_id: int) -> Optional[Tuple[str, int]]:
        """``(tenant_id, source_post_id)`` of the lowest usage of a tag, if any."""
        row = self.session.execute(
            select(TagUsage.tenant_id, TagUsage.source_post_id)
            .where(TagUsage.tag_id == tag_id)
            .order_by(TagUsage.tenant_id, TagUsage.source_post_id)
            .limit(1)
        ).first()
        return (row[0], row[1]) if row is not None else None

    @handle_db_errors
    def rename_tag(self, tag_id: int, name: str) -> None:
        self.session.execute(
            update(Tag)
            .where(Tag.tag_id == tag_id)
            .values(name=name)
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()

    # -------------------------------------------------------------------------
    # Whole-table operations
    # -------------------------------------------------------------------------

    @handle_db_errors
    @log_database_operation("clear_all")
    def clear_all(self) -> None:
        """Empty every mirror table. Only used as the first step of a full resync."""
        for model in (TagUsage, Tag, MirrorComment, MirrorPost):
            self.session.execute(delete(model))
        self.session.flush()
        self.session.expunge_all()

    @handle_db_errors
    def counts(self) -> Dict[str, int]:
        """Row count of every mirror table."""
        return {
            "posts": self._count(MirrorPost),
            "comments": self._count(MirrorComment),
            "tags": self._count(Tag),
            "tag_usages": self._count(TagUsage),
        }

    @handle_db_errors
    def tenant_counts(self) -> Dict[str, Dict[str, int]]:
        """Mirrored post and comment counts per tenant."""
        result: Dict[str, Dict[str, int]] = {}
        for key, model in (("posts", MirrorPost), ("comments", MirrorComment)):
            rows = self.session.execute(
                select(model.tenant_id, func.count()).group_by(model.tenant_id)
            )
            for tenant_id, count in rows:
                result.setdefault(tenant_id, {"posts": 0, "comments": 0})[key] = count
        return result
