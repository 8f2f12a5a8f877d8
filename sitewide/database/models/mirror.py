#!/usr/bin/env python3
"""
mirror.py
---------
Denormalized copies of tenant posts and comments.

Models:
    - MirrorPost: One public post from one tenant
    - MirrorComment: One approved comment from one tenant

Each row is keyed by ``(tenant_id, source id)`` and additionally carries a
synthetic sitewide ``id`` so that posts with the same id on different
tenants never collide. The remaining columns are the "shared fields":
they are copied verbatim from the tenant's own row, restricted to the
columns both schemas have.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from datetime import datetime
from typing import ClassVar, FrozenSet, Optional

# --- Third party imports ---
from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

# --- Local imports ---
from .base import Base, TABLE_PREFIX


class MirrorPost(Base):
    """
    Sitewide copy of a tenant's public post.

    Attributes:
        id: Sitewide row id
        tenant_id: Tenant the post was published on
        source_post_id: Post id on the tenant (unique per tenant)
        post_author: Tenant user id of the author
        post_date / post_date_gmt: Publish timestamp, local and UTC
        post_title / post_content / post_excerpt: Text fields
        post_status: Source status (always 'publish' while mirrored)
        post_name: URL slug
        post_parent: Parent post id on the tenant
        guid: Globally unique post URL
        post_type / post_mime_type: Content type fields
        comment_count: Approved comment count on the tenant
        post_modified / post_modified_gmt: Last edit timestamps
    """

    __tablename__ = f"{TABLE_PREFIX}posts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "source_post_id", name="uq_sw_posts_source"),
        Index("ix_sw_posts_type_status_date", "post_type", "post_status", "post_date"),
    )

    # Key columns, never copied from the source row
    KEY_COLUMNS: ClassVar[FrozenSet[str]] = frozenset({"id", "tenant_id", "source_post_id"})

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source_post_id: Mapped[int] = mapped_column(Integer, nullable=False)

    post_author: Mapped[int] = mapped_column(Integer, default=0, server_default="0", index=True)
    post_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    post_date_gmt: Mapped[Optional[datetime]] = mapped_column(DateTime)
    post_title: Mapped[str] = mapped_column(Text, default="", server_default="")
    post_content: Mapped[str] = mapped_column(Text, default="", server_default="")
    post_excerpt: Mapped[str] = mapped_column(Text, default="", server_default="")
    post_status: Mapped[str] = mapped_column(String(20), default="publish", server_default="publish")
    post_name: Mapped[str] = mapped_column(String(200), default="", server_default="", index=True)
    post_parent: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    guid: Mapped[str] = mapped_column(String(255), default="", server_default="")
    post_type: Mapped[str] = mapped_column(String(20), default="post", server_default="post")
    post_mime_type: Mapped[str] = mapped_column(String(100), default="", server_default="")
    comment_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    post_modified: Mapped[Optional[datetime]] = mapped_column(DateTime)
    post_modified_gmt: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return (
            f"<MirrorPost(id={self.id}, tenant={self.tenant_id!r}, "
            f"source_post_id={self.source_post_id})>"
        )


class MirrorComment(Base):
    """
    Sitewide copy of a tenant's approved comment.

    Attributes:
        id: Sitewide row id
        tenant_id: Tenant the comment was left on
        source_comment_id: Comment id on the tenant (unique per tenant)
        comment_post_id: Tenant post id the comment belongs to
        comment_author / _email / _url / _ip: Author identity fields
        comment_date / comment_date_gmt: Timestamps, local and UTC
        comment_content: Comment body
        comment_karma: Source karma value
        comment_approved: Source approval flag
        comment_agent: Author user agent
        comment_type: Comment type ('' for plain comments)
        comment_parent: Parent comment id on the tenant
        user_id: Tenant user id of a logged-in author (0 if anonymous)
    """

    __tablename__ = f"{TABLE_PREFIX}comments"
    __table_args__ = (
        UniqueConstraint("tenant_id", "source_comment_id", name="uq_sw_comments_source"),
        Index("ix_sw_comments_approved_date", "comment_approved", "comment_date_gmt"),
    )

    KEY_COLUMNS: ClassVar[FrozenSet[str]] = frozenset({"id", "tenant_id", "source_comment_id"})

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source_comment_id: Mapped[int] = mapped_column(Integer, nullable=False)

    comment_post_id: Mapped[int] = mapped_column(Integer, default=0, server_default="0", index=True)
    comment_author: Mapped[str] = mapped_column(Text, default="", server_default="")
    comment_author_email: Mapped[str] = mapped_column(String(100), default="", server_default="")
    comment_author_url: Mapped[str] = mapped_column(String(200), default="", server_default="")
    comment_author_ip: Mapped[str] = mapped_column(String(100), default="", server_default="")
    comment_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    comment_date_gmt: Mapped[Optional[datetime]] = mapped_column(DateTime)
    comment_content: Mapped[str] = mapped_column(Text, default="", server_default="")
    comment_karma: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    comment_approved: Mapped[str] = mapped_column(String(20), default="1", server_default="1")
    comment_agent: Mapped[str] = mapped_column(String(255), default="", server_default="")
    comment_type: Mapped[str] = mapped_column(String(20), default="", server_default="")
    comment_parent: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    user_id: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    def __repr__(self) -> str:
        return (
            f"<MirrorComment(id={self.id}, tenant={self.tenant_id!r}, "
            f"source_comment_id={self.source_comment_id})>"
        )
