#!/usr/bin/env python3
"""
queries.py
--------------------
Read-side views over the sitewide mirror.

These are the consumers the mirror exists for: sitewide post and comment
listings, tag lists and clouds, and per-author filters used by reports.
Listings go through the site cache; the sync engine invalidates the
matching cache group after every mutation.

Usage:
    queries = SitewideQueries(db, cache)
    latest = queries.limit_per_tenant(queries.sitewide_posts(), 10, 2)
    cloud = queries.tag_cloud(threshold=2)
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import and_, func, select

from sitewide.core.content import APPROVED_COMMENT_STATUSES
from sitewide.database.manager import SitewideDB
from sitewide.database.models import MirrorComment, MirrorPost, Tag, TagUsage

from .cache import COMMENTS, POSTS, TAGS, SiteCache, cached


DateBound = Union[date, datetime]


@dataclass(frozen=True)
class TagSummary:
    slug: str
    name: str
    count: int


@dataclass(frozen=True)
class CommentView:
    """A mirrored comment with the title of the post it was left on."""

    comment: MirrorComment
    post_title: str


@dataclass
class AuthorPosts:
    """Posts of one author, capped at a limit, with the uncapped total."""

    tenant_id: str
    author_id: int
    posts: List[MirrorPost]
    total_posts: int


def _start_of(bound: DateBound) -> datetime:
    if isinstance(bound, datetime):
        return bound
    return datetime.combine(bound, time.min)


def _end_of(bound: DateBound) -> datetime:
    # A bare date includes the whole day
    if isinstance(bound, datetime):
        return bound
    return datetime.combine(bound + timedelta(days=1), time.min) - timedelta(microseconds=1)


class SitewideQueries:
    """
    Cached read queries over the mirror tables.

    Attributes:
        db: SitewideDB handle
        cache: Optional site cache shared with the sync engine
    """

    def __init__(self, db: SitewideDB, cache: Optional[SiteCache] = None) -> None:
        self.db = db
        self.cache = cache

    # ---- Posts ----
    def sitewide_posts(self) -> List[MirrorPost]:
        """Every mirrored post, newest first."""

        def compute() -> List[MirrorPost]:
            with self.db.session_scope() as session:
                return list(
                    session.execute(
                        select(MirrorPost).order_by(
                            MirrorPost.post_date.desc(), MirrorPost.id.desc()
                        )
                    ).scalars()
                )

        return cached(self.cache, POSTS, ("sitewide_posts",), compute)

    def _edge_post(self, newest: bool) -> Optional[MirrorPost]:
        order = MirrorPost.post_date.desc() if newest else MirrorPost.post_date.asc()
        with self.db.session_scope() as session:
            return session.execute(
                select(MirrorPost)
                .where(MirrorPost.post_date.is_not(None))
                .order_by(order)
                .limit(1)
            ).scalar_one_or_none()

    def newest_post(self) -> Optional[MirrorPost]:
        return self._edge_post(newest=True)

    def oldest_post(self) -> Optional[MirrorPost]:
        return self._edge_post(newest=False)

    def filter_posts(
        self, author_id: int, start: DateBound, end: DateBound
    ) -> List[MirrorPost]:
        """
        Posts by one author published within ``[start, end]``.

        Bare dates cover whole days, so ``end=date(2024, 5, 31)`` includes
        posts from the evening of May 31st.
        """
        with self.db.session_scope() as session:
            return list(
                session.execute(
                    select(MirrorPost)
                    .where(
                        MirrorPost.post_author == author_id,
                        MirrorPost.post_date >= _start_of(start),
                        MirrorPost.post_date <= _end_of(end),
                    )
                    .order_by(MirrorPost.post_date)
                ).scalars()
            )

    def tagged_posts(self, slug: str) -> List[MirrorPost]:
        """Mirrored posts carrying a tag, newest first."""
        with self.db.session_scope() as session:
            return list(
                session.execute(
                    select(MirrorPost)
                    .join(
                        TagUsage,
                        and_(
                            TagUsage.tenant_id == MirrorPost.tenant_id,
                            TagUsage.source_post_id == MirrorPost.source_post_id,
                        ),
                    )
                    .join(Tag, Tag.tag_id == TagUsage.tag_id)
                    .where(Tag.slug == slug)
                    .order_by(MirrorPost.post_date.desc())
                ).scalars()
            )

    def posts_by_author(self, limit: int = 5) -> List[AuthorPosts]:
        """
        Group sitewide posts by author.

        Each group keeps at most ``limit`` of its newest posts; groups are
        ordered by the date of their newest post, most recent first.
        """
        groups: "OrderedDict[Tuple[str, int], AuthorPosts]" = OrderedDict()
        for post in self.sitewide_posts():
            key = (post.tenant_id, post.post_author)
            group = groups.get(key)
            if group is None:
                group = groups[key] = AuthorPosts(post.tenant_id, post.post_author, [], 0)
            if group.total_posts < limit:
                group.posts.append(post)
            group.total_posts += 1
        # sitewide_posts is newest first, so insertion order is already the ranking
        return list(groups.values())

    # ---- Tags ----
    def sitewide_tags(self) -> "OrderedDict[str, TagSummary]":
        """Every sitewide tag keyed by slug, in slug order."""

        def compute() -> "OrderedDict[str, TagSummary]":
            with self.db.session_scope() as session:
                rows = session.execute(
                    select(Tag.slug, Tag.name, Tag.usage_count).order_by(Tag.slug)
                ).all()
            return OrderedDict(
                (slug, TagSummary(slug, name, count)) for slug, name, count in rows
            )

        return cached(self.cache, TAGS, ("sitewide_tags",), compute)

    def usage_bounds(self) -> Tuple[int, int]:
        """(least, most) tag usage counts; (0, 0) when there are no tags."""

        def compute() -> Tuple[int, int]:
            with self.db.session_scope() as session:
                low, high = session.execute(
                    select(func.min(Tag.usage_count), func.max(Tag.usage_count))
                ).one()
            return (int(low or 0), int(high or 0))

        return cached(self.cache, TAGS, ("usage_bounds",), compute)

    def tag_cloud(self, threshold: int = 1) -> List[TagSummary]:
        """Tags used at least ``threshold`` times, in slug order."""
        return cached(
            self.cache,
            TAGS,
            ("tag_cloud", threshold),
            lambda: [t for t in self.sitewide_tags().values() if t.count >= threshold],
        )

    # ---- Comments ----
    def sitewide_comments(self, approved_only: bool = True) -> List[CommentView]:
        """
        Mirrored comments with their post titles, newest first.

        Comments whose post is not mirrored are left out. Without
        ``approved_only`` everything except spam is returned.
        """

        def compute() -> List[CommentView]:
            stmt = (
                select(MirrorComment, MirrorPost.post_title)
                .join(
                    MirrorPost,
                    and_(
                        MirrorPost.tenant_id == MirrorComment.tenant_id,
                        MirrorPost.source_post_id == MirrorComment.comment_post_id,
                    ),
                )
                .order_by(MirrorComment.comment_date.desc(), MirrorComment.id.desc())
            )
            if approved_only:
                stmt = stmt.where(
                    MirrorComment.comment_approved.in_(sorted(APPROVED_COMMENT_STATUSES))
                )
            else:
                stmt = stmt.where(MirrorComment.comment_approved != "spam")
            with self.db.session_scope() as session:
                return [CommentView(c, title) for c, title in session.execute(stmt).all()]

        key = ("sitewide_comments", "approved" if approved_only else "all")
        return cached(self.cache, COMMENTS, key, compute)

    def _edge_comment(self, newest: bool) -> Optional[MirrorComment]:
        order = MirrorComment.comment_date.desc() if newest else MirrorComment.comment_date.asc()
        with self.db.session_scope() as session:
            return session.execute(
                select(MirrorComment)
                .where(MirrorComment.comment_date.is_not(None))
                .order_by(order)
                .limit(1)
            ).scalar_one_or_none()

    def newest_comment(self) -> Optional[MirrorComment]:
        return self._edge_comment(newest=True)

    def oldest_comment(self) -> Optional[MirrorComment]:
        return self._edge_comment(newest=False)

    def filter_comments(
        self, user_id: int, start: DateBound, end: DateBound
    ) -> List[MirrorComment]:
        """Comments by one logged-in user left within ``[start, end]``."""
        with self.db.session_scope() as session:
            return list(
                session.execute(
                    select(MirrorComment)
                    .where(
                        MirrorComment.user_id == user_id,
                        MirrorComment.comment_date >= _start_of(start),
                        MirrorComment.comment_date <= _end_of(end),
                    )
                    .order_by(MirrorComment.comment_date)
                ).scalars()
            )

    def comment_totals(self) -> Dict[int, int]:
        """Number of mirrored comments per commenting user id."""

        def compute() -> Dict[int, int]:
            with self.db.session_scope() as session:
                rows = session.execute(
                    select(MirrorComment.user_id, func.count()).group_by(MirrorComment.user_id)
                ).all()
            return {user_id: count for user_id, count in rows}

        return cached(self.cache, COMMENTS, ("comment_totals",), compute)

    # ---- Helpers ----
    @staticmethod
    def limit_per_tenant(
        items: Iterable[Any], max_items: int, max_per_tenant: int
    ) -> List[Any]:
        """
        Take items in order while respecting a global and a per-tenant quota.

        Args:
            items: Objects with a ``tenant_id`` attribute (or CommentViews)
            max_items: Most items returned overall
            max_per_tenant: Most items returned from any one tenant

        Returns:
            The selected items, in their original order
        """
        subset: List[Any] = []
        per_tenant: Dict[str, int] = {}
        if max_items <= 0:
            return subset

        for item in items:
            row = item.comment if isinstance(item, CommentView) else item
            used = per_tenant.get(row.tenant_id, 0)
            if used >= max_per_tenant:
                continue
            subset.append(item)
            per_tenant[row.tenant_id] = used + 1
            if len(subset) >= max_items:
                break
        return subset
