"""
Tag Models
----------

Sitewide tags and the usage rows that reference them.

Models:
    - Tag: A tag deduplicated across tenants by slug
    - TagUsage: "This mirrored post currently carries this tag"

Invariant maintained by the sync engine: ``Tag.usage_count`` equals the
number of TagUsage rows pointing at the tag, and no Tag row with a zero
count survives a completed sync step.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
from typing import List

# --- Third party imports ---
from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

# --- Local imports ---
from .base import Base, TABLE_PREFIX


class Tag(Base):
    """
    Sitewide tag.

    Attributes:
        tag_id: Primary key
        name: Display name (taken from the first tenant that used the slug)
        slug: Normalized slug, unique sitewide
        usage_count: Number of live TagUsage rows

    Relationships:
        usages: One-to-many with TagUsage
    """

    __tablename__ = f"{TABLE_PREFIX}tags"
    __table_args__ = (
        CheckConstraint("slug != ''", name="ck_sw_tags_non_empty_slug"),
        CheckConstraint("usage_count >= 0", name="ck_sw_tags_usage_non_negative"),
    )

    tag_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    usage_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    usages: Mapped[List["TagUsage"]] = relationship(
        "TagUsage", back_populates="tag", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Tag(tag_id={self.tag_id}, slug='{self.slug}', usage_count={self.usage_count})>"

    def __str__(self) -> str:
        return self.name


class TagUsage(Base):
    """
    Association between a mirrored post and a sitewide tag.

    Attributes:
        usage_id: Primary key
        source_post_id: Post id on the tenant
        tag_id: Sitewide tag id
        tenant_id: Tenant owning the post
    """

    __tablename__ = f"{TABLE_PREFIX}tag_usage"
    __table_args__ = (
        UniqueConstraint(
            "source_post_id", "tenant_id", "tag_id", name="uq_sw_tag_usage_provenance"
        ),
    )

    usage_id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    source_post_id: Mapped[int] = mapped_column(Integer, nullable=False)
    tag_id: Mapped[int] = mapped_column(
        ForeignKey(f"{TABLE_PREFIX}tags.tag_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    tag: Mapped["Tag"] = relationship("Tag", back_populates="usages")

    def __repr__(self) -> str:
        return (
            f"<TagUsage(tenant={self.tenant_id!r}, post={self.source_post_id}, "
            f"tag_id={self.tag_id})>"
        )
