#!/usr/bin/env python3
"""
health_monitor.py
-----------------
Consistency checks and repair for the sitewide mirror.

The mirror has one invariant that everything else depends on: every
Tag's ``usage_count`` equals the number of TagUsage rows that reference
it, and no Tag with a zero count survives. A divergence means a tag delta
was applied partially or a rollback was missed.

Checks Performed:
    1. **Connectivity**: Basic query execution
    2. **Tag counts**: ``usage_count`` vs. live TagUsage rows
    3. **Zero-count tags**: Tags that should have been garbage-collected
    4. **Orphaned usages**: TagUsage rows whose mirrored post is gone
    5. **Duplicate keys**: More than one mirror row per (tenant, source id)

Usage:
    monitor = HealthMonitor(logger)
    with db.session_scope() as session:
        report = monitor.health_check(session)
        if report["status"] != "healthy":
            print(report["issues"])

        monitor.assert_tag_invariants(session)   # raises InvariantViolation

Health Report Structure:
    {
        "status": "healthy" | "warning" | "critical",
        "issues": ["2 tags have usage counts that do not match", ...],
        "metrics": {
            "invariants": {"count_mismatches": [...], ...},
            "tables": {"posts": 120, "comments": 340, ...},
        },
        "recommendations": ["Run `sitewide health --fix` ...", ...]
    }
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, func, select, text, update
from sqlalchemy.orm import Session

from sitewide.core.exceptions import InvariantViolation
from sitewide.core.logging_manager import SitewideLogger, safe_logger
from .decorators import handle_db_errors, log_database_operation
from .models import MirrorComment, MirrorPost, Tag, TagUsage


class HealthMonitor:
    """
    Mirror health checks and invariant repair.
    """

    # (metric key, issue message, recommendation, critical)
    _HEALTH_RULES = [
        (
            "count_mismatches",
            "{n} tags have usage counts that do not match their usage rows",
            "Run `sitewide health --fix` or a full resync",
            True,
        ),
        (
            "zero_count_tags",
            "{n} tags with zero usages were not garbage-collected",
            "Run `sitewide health --fix`",
            False,
        ),
        (
            "orphaned_usages",
            "{n} tag usages reference posts that are not mirrored",
            "Run `sitewide health --fix` or a full resync",
            True,
        ),
        (
            "duplicate_posts",
            "{n} posts are mirrored more than once",
            "Run a full resync",
            True,
        ),
        (
            "duplicate_comments",
            "{n} comments are mirrored more than once",
            "Run a full resync",
            True,
        ),
    ]

    def __init__(self, logger: Optional[SitewideLogger] = None) -> None:
        self.logger = logger

    @handle_db_errors
    @log_database_operation("health_check")
    def health_check(self, session: Session) -> Dict[str, Any]:
        """
        Run every check and summarize the result.

        Args:
            session: SQLAlchemy session

        Returns:
            Health report dictionary (see module docstring)
        """
        health: Dict[str, Any] = {
            "status": "healthy",
            "issues": [],
            "metrics": {},
            "recommendations": [],
        }

        session.execute(text("SELECT 1"))
        health["metrics"]["invariants"] = self.check_tag_invariants(session)
        health["metrics"]["tables"] = self._get_table_metrics(session)

        return self._evaluate_health_status(health)

    def check_tag_invariants(self, session: Session) -> Dict[str, List[Any]]:
        """
        Find every violation of the tag refcount invariant.

        Returns:
            Dictionary with lists of offending rows per check:
                - count_mismatches: (slug, usage_count, live usages)
                - zero_count_tags: slugs
                - orphaned_usages: (tenant_id, source_post_id, slug)
                - duplicate_posts / duplicate_comments: (tenant_id, source id)
        """
        live = (
            select(TagUsage.tag_id, func.count().label("live"))
            .group_by(TagUsage.tag_id)
            .subquery()
        )
        live_count = func.coalesce(live.c.live, 0)
        mismatches = session.execute(
            select(Tag.slug, Tag.usage_count, live_count)
            .outerjoin(live, live.c.tag_id == Tag.tag_id)
            .where(Tag.usage_count != live_count)
            .order_by(Tag.slug)
        ).all()

        zero = session.execute(
            select(Tag.slug).where(Tag.usage_count <= 0).order_by(Tag.slug)
        ).scalars().all()

        orphaned = session.execute(
            select(TagUsage.tenant_id, TagUsage.source_post_id, Tag.slug)
            .join(Tag, Tag.tag_id == TagUsage.tag_id)
            .outerjoin(
                MirrorPost,
                and_(
                    MirrorPost.tenant_id == TagUsage.tenant_id,
                    MirrorPost.source_post_id == TagUsage.source_post_id,
                ),
            )
            .where(MirrorPost.id.is_(None))
        ).all()

        return {
            "count_mismatches": [tuple(r) for r in mismatches],
            "zero_count_tags": list(zero),
            "orphaned_usages": [tuple(r) for r in orphaned],
            "duplicate_posts": self._duplicates(
                session, MirrorPost.tenant_id, MirrorPost.source_post_id
            ),
            "duplicate_comments": self._duplicates(
                session, MirrorComment.tenant_id, MirrorComment.source_comment_id
            ),
        }

    @staticmethod
    def _duplicates(session: Session, tenant_col, source_col) -> List[Any]:
        rows = session.execute(
            select(tenant_col, source_col)
            .group_by(tenant_col, source_col)
            .having(func.count() > 1)
        ).all()
        return [tuple(r) for r in rows]

    def assert_tag_invariants(self, session: Session) -> None:
        """
        Raise if any invariant check found a violation.

        Raises:
            InvariantViolation: With the offending rows in ``violations``
        """
        report = self.check_tag_invariants(session)
        violations = [
            f"{name}: {rows}" for name, rows in report.items() if rows
        ]
        if violations:
            safe_logger(self.logger).log_warning(
                "tag_invariant_violation", {"violations": violations}
            )
            raise InvariantViolation(
                f"{len(violations)} mirror invariant checks failed", violations
            )

    @handle_db_errors
    @log_database_operation("repair_tag_invariants")
    def repair_tag_invariants(self, session: Session) -> Dict[str, int]:
        """
        Restore the refcount invariant from the live rows.

        Drops usages of posts that are not mirrored, recounts every tag from
        its usages and deletes tags left without usages.

        Returns:
            Number of usages removed, tags recounted and tags deleted
        """
        orphan_ids = session.execute(
            select(TagUsage.usage_id)
            .outerjoin(
                MirrorPost,
                and_(
                    MirrorPost.tenant_id == TagUsage.tenant_id,
                    MirrorPost.source_post_id == TagUsage.source_post_id,
                ),
            )
            .where(MirrorPost.id.is_(None))
        ).scalars().all()
        removed = 0
        if orphan_ids:
            removed = session.execute(
                delete(TagUsage)
                .where(TagUsage.usage_id.in_(orphan_ids))
                .execution_options(synchronize_session=False)
            ).rowcount

        live = (
            select(func.count())
            .where(TagUsage.tag_id == Tag.tag_id)
            .correlate(Tag)
            .scalar_subquery()
        )
        recounted = session.execute(
            update(Tag)
            .where(Tag.usage_count != live)
            .values(usage_count=live)
            .execution_options(synchronize_session=False)
        ).rowcount

        deleted = session.execute(
            delete(Tag)
            .where(Tag.usage_count <= 0)
            .execution_options(synchronize_session=False)
        ).rowcount
        session.expire_all()

        result = {
            "usages_removed": removed,
            "tags_recounted": recounted,
            "tags_deleted": deleted,
        }
        safe_logger(self.logger).log_operation("tag_invariants_repaired", result)
        return result

    def _get_table_metrics(self, session: Session) -> Dict[str, int]:
        return {
            name: int(session.execute(select(func.count()).select_from(model)).scalar() or 0)
            for name, model in (
                ("posts", MirrorPost),
                ("comments", MirrorComment),
                ("tags", Tag),
                ("tag_usages", TagUsage),
            )
        }

    def _evaluate_health_status(self, health: Dict[str, Any]) -> Dict[str, Any]:
        """
        Derive status, issues and recommendations from the metrics.

        Args:
            health: Current health dictionary

        Returns:
            Updated health dictionary
        """
        invariants = health["metrics"].get("invariants", {})

        for key, issue_msg, recommendation, critical in self._HEALTH_RULES:
            found = len(invariants.get(key, []))
            if not found:
                continue
            health["issues"].append(issue_msg.format(n=found))
            if recommendation not in health["recommendations"]:
                health["recommendations"].append(recommendation)
            if critical:
                health["status"] = "critical"
            elif health["status"] == "healthy":
                health["status"] = "warning"

        return health
