#!/usr/bin/env python3
"""
content.py
--------------------
Plain data types describing content as it exists on a tenant.

These are what a TenantContentReader returns and what the mirror store
copies from. They are deliberately storage-agnostic: ``fields`` holds the
tenant row's raw columns, whatever the tenant schema happens to have.

Types:
    - Tenant: A tenant identifier and its exclusion flag
    - SourceTag: A tag as attached to a tenant post
    - SourcePost: A tenant post with its status and raw row
    - SourceComment: A tenant comment with its status and raw row
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import unquote

from .validators import DataValidator


PUBLIC_POST_STATUS = "publish"
PUBLIC_POST_TYPE = "post"
APPROVED_COMMENT_STATUSES = frozenset({"1", "approve", "approved"})


def is_approved_status(status: Any) -> bool:
    """True if a comment status string means 'approved'."""
    if status is None:
        return False
    return str(status).strip().lower() in APPROVED_COMMENT_STATUSES


@dataclass(frozen=True)
class Tenant:
    """One isolated content origin."""

    tenant_id: str
    excluded: bool = False


@dataclass(frozen=True)
class SourceTag:
    """
    A tag attached to a post on a tenant.

    The tenant's slug is kept with case and whitespace normalized, so
    ``Python``, ``python`` and `` python `` land on the same sitewide tag
    while ``C#`` and ``C++`` stay apart. The name stands in for a missing
    slug; non-Latin text is percent-encoded rather than dropped.
    """

    name: str
    slug: str = ""

    def __post_init__(self) -> None:
        slug = DataValidator.normalize_slug(self.slug) or DataValidator.normalize_slug(self.name)
        object.__setattr__(self, "slug", slug)
        object.__setattr__(
            self, "name", DataValidator.normalize_string(self.name) or unquote(slug)
        )


@dataclass
class SourcePost:
    """
    A post as stored on its tenant.

    Attributes:
        post_id: Post id on the tenant
        author_id: Tenant user id of the author
        status: Source post status ('publish', 'draft', 'trash', ...)
        post_type: Source post type ('post', 'page', 'revision', ...)
        created_at: Creation timestamp in UTC
        fields: Raw tenant columns, keyed by column name
    """

    post_id: int
    author_id: int = 0
    status: str = PUBLIC_POST_STATUS
    post_type: str = PUBLIC_POST_TYPE
    created_at: Optional[datetime] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_public(self) -> bool:
        return self.status == PUBLIC_POST_STATUS and self.post_type == PUBLIC_POST_TYPE

    @property
    def is_revision(self) -> bool:
        return self.post_type == "revision"

    def shared_fields(self) -> Dict[str, Any]:
        """Raw fields with the typed attributes written back over them."""
        data = dict(self.fields)
        data["post_author"] = self.author_id
        data["post_status"] = self.status
        data["post_type"] = self.post_type
        if self.created_at is not None:
            data.setdefault("post_date_gmt", self.created_at)
        return data

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SourcePost":
        """
        Build a SourcePost from a tenant ``posts`` row.

        Args:
            row: Mapping with at least ``ID``; other columns are optional

        Raises:
            ValidationError: If the row has no post id
        """
        DataValidator.validate_required_fields(row, ["ID"])
        created = DataValidator.normalize_datetime(
            row.get("post_date_gmt") or row.get("post_date")
        )
        return cls(
            post_id=int(row["ID"]),
            author_id=DataValidator.normalize_int(row.get("post_author")) or 0,
            status=str(row.get("post_status") or ""),
            post_type=str(row.get("post_type") or PUBLIC_POST_TYPE),
            created_at=created,
            fields=dict(row),
        )


@dataclass
class SourceComment:
    """
    A comment as stored on its tenant.

    Attributes:
        comment_id: Comment id on the tenant
        post_id: Tenant post id the comment belongs to
        status: Raw approval status ('1', '0', 'spam', 'trash', ...)
        user_id: Tenant user id of a logged-in commenter (0 if anonymous)
        created_at: Creation timestamp in UTC
        fields: Raw tenant columns, keyed by column name
    """

    comment_id: int
    post_id: int = 0
    status: str = "1"
    user_id: int = 0
    created_at: Optional[datetime] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return is_approved_status(self.status)

    def shared_fields(self) -> Dict[str, Any]:
        data = dict(self.fields)
        data["comment_post_id"] = self.post_id
        data["comment_approved"] = self.status
        data["user_id"] = self.user_id
        if self.created_at is not None:
            data.setdefault("comment_date_gmt", self.created_at)
        return data

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SourceComment":
        """Build a SourceComment from a tenant ``comments`` row."""
        DataValidator.validate_required_fields(row, ["comment_ID"])
        created = DataValidator.normalize_datetime(
            row.get("comment_date_gmt") or row.get("comment_date")
        )
        return cls(
            comment_id=int(row["comment_ID"]),
            post_id=DataValidator.normalize_int(row.get("comment_post_ID")) or 0,
            status=str(row.get("comment_approved") if row.get("comment_approved") is not None else "0"),
            user_id=DataValidator.normalize_int(row.get("user_id")) or 0,
            created_at=created,
            fields=dict(row),
        )
