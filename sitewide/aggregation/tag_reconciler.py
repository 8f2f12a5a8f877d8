#!/usr/bin/env python3
"""
tag_reconciler.py
--------------------
Tag set differences for a single mirrored post.

The reconciler never touches the database. It turns "the tags the post
has now" and "the tags the mirror last recorded for it" into an intent,
which the sync engine applies through the mirror store inside the same
transaction as the post upsert.

Usage:
    delta = TagReconciler.reconcile(current={"y", "z"}, previous={"x", "y"})
    delta.to_add     # frozenset({"z"})
    delta.to_remove  # frozenset({"x"})
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable

from sitewide.core.validators import DataValidator


@dataclass(frozen=True)
class TagDelta:
    """Slugs to attach to and detach from one post."""

    to_add: FrozenSet[str] = frozenset()
    to_remove: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    def as_dict(self):
        return {"added": sorted(self.to_add), "removed": sorted(self.to_remove)}


class TagReconciler:
    """Computes tag deltas between two slug sets."""

    @staticmethod
    def reconcile(current: Iterable[str], previous: Iterable[str]) -> TagDelta:
        """
        Compute the tag delta of a post.

        Both inputs are normalized to slugs first, so that differently
        cased spellings of one tag never produce a spurious add/remove pair.

        Args:
            current: Slugs the post carries on its tenant now
            previous: Slugs currently mirrored for the post

        Returns:
            TagDelta with ``to_add = current - previous`` and
            ``to_remove = previous - current``
        """
        current_set = DataValidator.normalize_slugs(current)
        previous_set = DataValidator.normalize_slugs(previous)
        return TagDelta(
            to_add=frozenset(current_set - previous_set),
            to_remove=frozenset(previous_set - current_set),
        )
