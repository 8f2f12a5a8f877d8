"""
Database Models Package
------------------------

SQLAlchemy ORM models for the sitewide mirror database.

- base: Declarative base and table prefix
- mirror: MirrorPost, MirrorComment
- tags: Tag, TagUsage

Usage:
    from sitewide.database.models import MirrorPost, Tag, TagUsage
"""
from .base import Base, TABLE_PREFIX
from .mirror import MirrorComment, MirrorPost
from .tags import Tag, TagUsage

# Creation order for the schema manager (tags before usages)
MIRROR_MODELS = (MirrorComment, MirrorPost, Tag, TagUsage)

__all__ = [
    "Base",
    "TABLE_PREFIX",
    "MirrorPost",
    "MirrorComment",
    "Tag",
    "TagUsage",
    "MIRROR_MODELS",
]
