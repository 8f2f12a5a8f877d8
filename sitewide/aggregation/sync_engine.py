#!/usr/bin/env python3
"""
sync_engine.py
--------------------
Keeps the sitewide mirror in step with tenant content.

Two paths share the same upsert routines:

    incremental   one content-change event -> one mirror transaction
    full resync   clear the mirror, replay every usable tenant's public
                  posts and approved comments, all in one transaction

Post upserts follow a fixed order inside their transaction:

    1. read the post's current tags from its tenant
    2. read the tags the mirror currently records for it (previous)
    3. upsert the post row
    4. reconcile current vs. previous and apply the tag delta
    5. rename tags this post owns (lowest tenant id, then post id)

Step 2 must come before step 3, otherwise the previous-tag snapshot is
lost. The delta is applied in the same transaction as the row, so a
failure rolls both back and tag counts never drift from their usages.

Concurrency:
    - events for the same (tenant, kind, source id) are serialized
    - a full resync waits for in-flight events and holds new ones back
      until it commits

Usage:
    engine = SyncEngine(db, reader, TenantRegistry(reader), CacheInvalidator(cache))
    engine.activate()
    engine.handle(PostChanged("blog-a", 42))
    engine.full_resync("operator request")
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from sitewide.core.config import AggregationConfig, DEFAULT_GRACE_SECONDS
from sitewide.core.content import SourceComment, SourcePost, is_approved_status
from sitewide.core.exceptions import DatabaseError, FullResyncInterrupted, ValidationError
from sitewide.core.logging_manager import SitewideLogger, safe_logger
from sitewide.database.base_manager import execute_with_retry
from sitewide.database.decorators import handle_db_errors, log_database_operation
from sitewide.database.manager import SitewideDB
from sitewide.database.mirror_store import MirrorStore

from .cache import CacheInvalidator, SiteCache
from .events import CommentChanged, ContentEvent, PostChanged, PostDeleted, content_id, event_key
from .locks import KeyedLocks, ResyncGate
from .sql_reader import SqlTenantReader
from .tag_reconciler import TagDelta, TagReconciler
from .tenants import TenantContentReader, TenantRegistry


class SyncState(Enum):
    IDLE = "idle"
    SYNCING_INCREMENTAL = "syncing_incremental"
    SYNCING_FULL = "syncing_full"


UPSERTED = "upserted"
DELETED = "deleted"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class SyncResult:
    """
    Outcome of one event.

    Attributes:
        event: The event handled
        action: 'upserted', 'deleted', 'skipped' or 'failed'
        reason: Why the content was removed or skipped
        tags_added / tags_removed: Applied tag delta (posts only)
        error: The exception of a failed event
        mirror_changed: Rows were removed even though the event was skipped
    """

    event: ContentEvent
    action: str
    reason: Optional[str] = None
    tags_added: FrozenSet[str] = frozenset()
    tags_removed: FrozenSet[str] = frozenset()
    error: Optional[Exception] = None
    mirror_changed: bool = False

    @property
    def ok(self) -> bool:
        return self.action != FAILED


@dataclass
class ResyncStats:
    """Summary of a completed full resync."""

    reason: str
    tenants: int = 0
    posts: int = 0
    comments: int = 0
    tags: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0


@dataclass
class UnsyncedEvent:
    """An event whose mirror update failed and still needs replaying."""

    event: ContentEvent
    error: Exception
    failed_at: datetime = field(default_factory=datetime.now)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SyncEngine:
    """
    Orchestrates incremental syncs and full resyncs of the mirror.

    Attributes:
        db: SitewideDB handle
        reader: Tenant content reader
        registry: Usable tenant set
        invalidator: Cache invalidation hooks
        logger: Optional logger
        grace_seconds: Placeholder-content window after user registration
        unsynced: Events that failed and wait for ``retry_unsynced``
    """

    def __init__(
        self,
        db: SitewideDB,
        reader: TenantContentReader,
        registry: TenantRegistry,
        invalidator: Optional[CacheInvalidator] = None,
        logger: Optional[SitewideLogger] = None,
        aggregation_enabled: Union[bool, Callable[[], bool]] = True,
        grace_seconds: int = DEFAULT_GRACE_SECONDS,
        max_retries: int = 3,
        retry_delay: float = 0.1,
    ) -> None:
        self.db = db
        self.reader = reader
        self.registry = registry
        self.invalidator = invalidator or CacheInvalidator()
        self.logger = logger
        self._enabled = aggregation_enabled
        self.grace_seconds = grace_seconds
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        self.unsynced: List[UnsyncedEvent] = []
        self._unsynced_lock = threading.Lock()
        self._locks = KeyedLocks()
        self._gate = ResyncGate()
        self._active: Dict[Tuple[str, str, int], int] = {}
        self._active_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: AggregationConfig,
        db: Optional[SitewideDB] = None,
        reader: Optional[TenantContentReader] = None,
        cache: Optional[SiteCache] = None,
        logger: Optional[SitewideLogger] = None,
    ) -> "SyncEngine":
        """
        Wire an engine from configuration.

        Without an explicit reader, tenants are read from their own
        databases as listed in the config.
        """
        db = db or SitewideDB(config.database, logger=logger)
        reader = reader or SqlTenantReader(
            config.tenants, config.tenant_url_template, logger=logger
        )
        return cls(
            db,
            reader,
            TenantRegistry(reader, lambda: config.excluded_tenants),
            CacheInvalidator(cache),
            logger=logger,
            aggregation_enabled=lambda: config.aggregation_enabled,
            grace_seconds=config.grace_seconds,
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def aggregation_enabled(self) -> bool:
        return bool(self._enabled() if callable(self._enabled) else self._enabled)

    @property
    def state(self) -> SyncState:
        if self._gate.resync_in_progress:
            return SyncState.SYNCING_FULL
        with self._active_lock:
            if self._active:
                return SyncState.SYNCING_INCREMENTAL
        return SyncState.IDLE

    @property
    def in_flight(self) -> List[Tuple[str, str, int]]:
        """Keys of the events being processed right now."""
        with self._active_lock:
            return sorted(self._active)

    def _enter(self, key: Tuple[str, str, int]) -> None:
        with self._active_lock:
            self._active[key] = self._active.get(key, 0) + 1

    def _leave(self, key: Tuple[str, str, int]) -> None:
        with self._active_lock:
            self._active[key] -= 1
            if not self._active[key]:
                del self._active[key]

    # -------------------------------------------------------------------------
    # Placeholder filter
    # -------------------------------------------------------------------------

    def _is_placeholder(
        self, tenant_id: str, user_id: Optional[int], created_at: Optional[datetime]
    ) -> bool:
        """
        True if content was created within the grace window of its owner's
        registration, i.e. it was generated by the host with the account.
        """
        if not user_id or created_at is None:
            return False
        registered = self.reader.get_user_registered(tenant_id, user_id)
        if registered is None:
            return False
        elapsed = _naive_utc(created_at) - _naive_utc(registered)
        return elapsed <= timedelta(seconds=self.grace_seconds)

    def _post_exclusion(self, tenant_id: str, post: Optional[SourcePost]) -> Optional[str]:
        """Why a post must not be mirrored, or None if it should be."""
        if post is None:
            return "missing"
        if post.is_revision:
            return "revision"
        if not post.is_public:
            return "not public"
        if self._is_placeholder(tenant_id, post.author_id, post.created_at):
            return "placeholder"
        return None

    def _comment_exclusion(
        self, tenant_id: str, comment: Optional[SourceComment], status: Optional[str] = None
    ) -> Optional[str]:
        """Why a comment must not be mirrored, or None if it should be."""
        if comment is None:
            return "missing"
        approved = is_approved_status(status) if status is not None else comment.is_approved
        if not approved:
            return "not approved"
        post = self.reader.get_post(tenant_id, comment.post_id)
        owner = post.author_id if post is not None else None
        if self._is_placeholder(tenant_id, owner, comment.created_at):
            return "placeholder"
        return None

    # -------------------------------------------------------------------------
    # Shared mirror routines (used by both paths)
    # -------------------------------------------------------------------------

    def _apply_tag_delta(
        self,
        store: MirrorStore,
        tenant_id: str,
        post_id: int,
        delta: TagDelta,
        names: Optional[Dict[str, str]] = None,
    ) -> None:
        names = names or {}
        for slug in sorted(delta.to_add):
            tag = store.get_tag_by_slug(slug)
            tag_id = tag.tag_id if tag is not None else store.create_tag(names.get(slug, slug), slug)
            if store.add_tag_usage(tag_id, tenant_id, post_id):
                store.adjust_tag_usage_count(tag_id, 1)

        for slug in sorted(delta.to_remove):
            tag = store.get_tag_by_slug(slug)
            if tag is None:
                continue
            was_owner = store.first_tag_usage(tag.tag_id) == (tenant_id, post_id)
            if store.remove_tag_usage(tag.tag_id, tenant_id, post_id):
                store.adjust_tag_usage_count(tag.tag_id, -1)
            if not store.delete_tag_if_unused(tag.tag_id) and was_owner:
                self._name_from_owner(store, tag.tag_id, slug)

    def _name_tags(
        self, store: MirrorStore, tenant_id: str, post_id: int, names: Dict[str, str]
    ) -> None:
        """
        Give each tag the name used by its owning post.

        The owner is the usage with the lowest ``(tenant_id, source_post_id)``,
        so both sync paths agree on a tag's name whatever order posts arrive in.
        """
        for slug, name in names.items():
            tag = store.get_tag_by_slug(slug)
            if tag is None or tag.name == name:
                continue
            if store.first_tag_usage(tag.tag_id) == (tenant_id, post_id):
                store.rename_tag(tag.tag_id, name)

    def _name_from_owner(self, store: MirrorStore, tag_id: int, slug: str) -> None:
        """Re-read a tag's name from its new owner after the old owner dropped it."""
        owner = store.first_tag_usage(tag_id)
        if owner is None:
            return
        for source_tag in self.reader.get_post_tags(*owner):
            if source_tag.slug == slug:
                store.rename_tag(tag_id, source_tag.name)
                return

    def _upsert_post(self, store: MirrorStore, tenant_id: str, post: SourcePost) -> TagDelta:
        names: Dict[str, str] = {}
        for tag in self.reader.get_post_tags(tenant_id, post.post_id):
            if tag.slug:
                names.setdefault(tag.slug, tag.name)

        previous = store.get_post_tag_slugs(tenant_id, post.post_id)
        store.upsert_post(tenant_id, post)
        delta = TagReconciler.reconcile(names.keys(), previous)
        self._apply_tag_delta(store, tenant_id, post.post_id, delta, names)
        self._name_tags(store, tenant_id, post.post_id, names)
        return delta

    def _remove_post(
        self, store: MirrorStore, tenant_id: str, post_id: int
    ) -> Tuple[bool, TagDelta]:
        """Delete a mirrored post; returns whether a row existed and the tags it lost."""
        previous = store.get_post_tag_slugs(tenant_id, post_id)
        removed = store.delete_post(tenant_id, post_id)
        delta = TagDelta(to_remove=previous)
        self._apply_tag_delta(store, tenant_id, post_id, delta)
        return removed, delta

    def _upsert_comment(
        self, store: MirrorStore, tenant_id: str, comment: SourceComment, status: Optional[str] = None
    ) -> None:
        if status is not None and is_approved_status(status) and not comment.is_approved:
            comment.status = "1"
        store.upsert_comment(tenant_id, comment)

    # -------------------------------------------------------------------------
    # Incremental path
    # -------------------------------------------------------------------------

    @handle_db_errors
    def _apply_event(self, event: ContentEvent) -> SyncResult:
        """Run one event in its own transaction."""
        tenant_id = event.tenant_id

        with self.db.mirror_scope() as store:
            if isinstance(event, CommentChanged):
                comment = self.reader.get_comment(tenant_id, event.source_comment_id)
                reason = self._comment_exclusion(tenant_id, comment, event.status)
                if reason is None:
                    self._upsert_comment(store, tenant_id, comment, event.status)
                    return SyncResult(event, UPSERTED)
                removed = store.delete_comment(tenant_id, event.source_comment_id)
                action = SKIPPED if reason == "placeholder" else DELETED
                return SyncResult(event, action, reason=reason, mirror_changed=removed)

            if isinstance(event, PostChanged):
                post = self.reader.get_post(tenant_id, event.source_post_id)
                reason = self._post_exclusion(tenant_id, post)
                if reason == "revision":
                    return SyncResult(event, SKIPPED, reason=reason)
                if reason is None:
                    delta = self._upsert_post(store, tenant_id, post)
                    return SyncResult(
                        event, UPSERTED, tags_added=delta.to_add, tags_removed=delta.to_remove
                    )
            else:
                reason = "deleted"

            removed, delta = self._remove_post(store, tenant_id, event.source_post_id)
            action = SKIPPED if reason == "placeholder" else DELETED
            return SyncResult(
                event,
                action,
                reason=reason,
                tags_removed=delta.to_remove,
                mirror_changed=removed or not delta.is_empty,
            )

    def handle(self, event: ContentEvent) -> SyncResult:
        """
        Mirror one content-change event.

        Failures stay local to the event: the error is logged, the event is
        queued in ``unsynced`` and a 'failed' result is returned, so the
        caller can go on with the next event.

        Args:
            event: PostChanged, PostDeleted or CommentChanged

        Returns:
            SyncResult describing what happened to the mirror
        """
        logger = safe_logger(self.logger)
        item_id = content_id(event)

        if not self.aggregation_enabled:
            return SyncResult(event, SKIPPED, reason="aggregation disabled")
        if not self.registry.is_usable(event.tenant_id):
            logger.log_sync(SKIPPED, event.tenant_id, item_id, {"reason": "tenant not usable"})
            return SyncResult(event, SKIPPED, reason="tenant not usable")

        key = event_key(event)
        with self._gate.incremental(), self._locks.hold(key):
            self._enter(key)
            try:
                result = execute_with_retry(
                    lambda: self._apply_event(event),
                    self.logger,
                    self.max_retries,
                    self.retry_delay,
                )
            except (DatabaseError, ValidationError) as e:
                with self._unsynced_lock:
                    self.unsynced.append(UnsyncedEvent(event, e))
                logger.log_error(
                    e,
                    {
                        "operation": "incremental_sync",
                        "event": type(event).__name__,
                        "tenant_id": event.tenant_id,
                        "content_id": item_id,
                    },
                )
                return SyncResult(event, FAILED, error=e)
            finally:
                self._leave(key)

        if result.action in (UPSERTED, DELETED) or result.mirror_changed:
            if isinstance(event, CommentChanged):
                self.invalidator.comment_changed()
            else:
                self.invalidator.post_changed()

        details = {"event": type(event).__name__}
        if result.reason:
            details["reason"] = result.reason
        if result.tags_added or result.tags_removed:
            details.update(TagDelta(result.tags_added, result.tags_removed).as_dict())
        logger.log_sync(result.action, event.tenant_id, item_id, details)
        return result

    def handle_all(self, events: Iterable[ContentEvent]) -> List[SyncResult]:
        """Handle events in order; a failing event does not stop the rest."""
        return [self.handle(event) for event in events]

    def retry_unsynced(self) -> List[SyncResult]:
        """Replay every failed event once; events failing again are re-queued."""
        with self._unsynced_lock:
            pending, self.unsynced = self.unsynced, []
        return [self.handle(item.event) for item in pending]

    # -------------------------------------------------------------------------
    # Full resync
    # -------------------------------------------------------------------------

    @handle_db_errors
    def _rebuild(self, reason: str) -> ResyncStats:
        stats = ResyncStats(reason=reason)

        with self.db.mirror_scope() as store:
            store.clear_all()

            for tenant_id in sorted(self.registry.usable_tenants()):
                stats.tenants += 1

                for post in self.reader.iter_posts(tenant_id):
                    if self._post_exclusion(tenant_id, post) is not None:
                        stats.skipped += 1
                        continue
                    self._upsert_post(store, tenant_id, post)
                    stats.posts += 1

                for comment in self.reader.iter_comments(tenant_id):
                    if self._comment_exclusion(tenant_id, comment) is not None:
                        stats.skipped += 1
                        continue
                    self._upsert_comment(store, tenant_id, comment)
                    stats.comments += 1

            stats.tags = store.counts()["tags"]

        return stats

    @log_database_operation("full_resync")
    def full_resync(self, reason: str = "operator request") -> ResyncStats:
        """
        Rebuild the whole mirror from the usable tenants.

        The clear and the repopulation commit together. Until then other
        connections keep seeing the previous mirror, and on failure the
        previous mirror is left untouched.

        Args:
            reason: Why the resync runs (activation, schema change, operator)

        Returns:
            ResyncStats of the committed rebuild

        Raises:
            FullResyncInterrupted: If anything failed; nothing was changed
        """
        started = time.monotonic()
        logger = safe_logger(self.logger)
        logger.log_resync("start", {"reason": reason})

        with self._gate.exclusive():
            try:
                stats = execute_with_retry(
                    lambda: self._rebuild(reason),
                    self.logger,
                    self.max_retries,
                    self.retry_delay,
                )
            except Exception as e:
                raise FullResyncInterrupted(
                    f"Full resync ({reason}) failed and was rolled back: {e}"
                ) from e

            with self._unsynced_lock:
                self.unsynced.clear()

        self.invalidator.everything_changed()
        stats.duration_seconds = time.monotonic() - started
        logger.log_resync(
            "complete",
            {
                "reason": reason,
                "tenants": stats.tenants,
                "posts": stats.posts,
                "comments": stats.comments,
                "tags": stats.tags,
                "skipped": stats.skipped,
                "duration_seconds": round(stats.duration_seconds, 3),
            },
        )
        return stats

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def activate(self) -> Optional[ResyncStats]:
        """
        Ensure the mirror schema and resync if it changed.

        Returns:
            ResyncStats if a resync ran, otherwise None
        """
        if self.db.ensure_schema():
            return self.full_resync("schema changed")
        return None

    def deactivate(self) -> List[str]:
        """Drop the mirror tables. Returns the dropped table names."""
        with self._gate.exclusive():
            dropped = self.db.drop_mirror_tables()
        self.invalidator.everything_changed()
        safe_logger(self.logger).log_operation("deactivated", {"tables": dropped})
        return dropped
