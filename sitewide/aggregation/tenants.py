#!/usr/bin/env python3
"""
tenants.py
--------------------
Tenant enumeration and tenant-scoped content reading.

Reading another tenant's content is an explicit capability: every call
takes the tenant id as an argument and returns plain content objects, so
no ambient "current tenant" state exists anywhere in the aggregator.

Components:
    - TenantContentReader: the reading protocol the sync engine consumes
    - InMemoryContentReader: dict-backed reader for embedding and tests
    - TenantRegistry: the usable tenant set (known tenants minus exclusions)

Usage:
    reader = InMemoryContentReader()
    reader.add_user("blog-a", 1, registered=datetime(2020, 1, 1))
    reader.put_post("blog-a", SourcePost(post_id=7, author_id=1), tags=["python"])

    registry = TenantRegistry(reader, excluded={"blog-b"})
    registry.usable_tenants()   # {"blog-a"}
"""
from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    Set,
    Union,
)

from sitewide.core.content import SourceComment, SourcePost, SourceTag, Tenant


class TenantContentReader(Protocol):
    """Read access to the content of any tenant, by tenant id."""

    def list_tenants(self) -> Iterable[str]: ...

    def get_post(self, tenant_id: str, post_id: int) -> Optional[SourcePost]: ...

    def iter_posts(self, tenant_id: str) -> Iterator[SourcePost]: ...

    def get_post_tags(self, tenant_id: str, post_id: int) -> List[SourceTag]: ...

    def get_comment(self, tenant_id: str, comment_id: int) -> Optional[SourceComment]: ...

    def iter_comments(self, tenant_id: str) -> Iterator[SourceComment]: ...

    def get_user_registered(self, tenant_id: str, user_id: int) -> Optional[datetime]: ...


TagInput = Union[str, SourceTag]


def _as_tag(value: TagInput) -> SourceTag:
    return value if isinstance(value, SourceTag) else SourceTag(name=value)


@dataclass
class _TenantContent:
    posts: Dict[int, SourcePost] = field(default_factory=dict)
    tags: Dict[int, List[SourceTag]] = field(default_factory=dict)
    comments: Dict[int, SourceComment] = field(default_factory=dict)
    users: Dict[int, datetime] = field(default_factory=dict)


class InMemoryContentReader:
    """
    Tenant content held in dictionaries.

    Doubles as a writable fake of the host content system: the ``put_*``
    and ``remove_*`` methods mutate tenant state, after which the caller
    raises the matching event. Returned objects are copies, so a caller
    cannot change tenant state by mutating them.
    """

    def __init__(self) -> None:
        self._tenants: Dict[str, _TenantContent] = {}
        self._lock = threading.RLock()

    def _tenant(self, tenant_id: str) -> _TenantContent:
        return self._tenants.setdefault(tenant_id, _TenantContent())

    # ---- Mutation ----
    def add_tenant(self, tenant_id: str) -> None:
        with self._lock:
            self._tenant(tenant_id)

    def remove_tenant(self, tenant_id: str) -> None:
        with self._lock:
            self._tenants.pop(tenant_id, None)

    def add_user(self, tenant_id: str, user_id: int, registered: datetime) -> None:
        with self._lock:
            self._tenant(tenant_id).users[user_id] = registered

    def put_post(
        self,
        tenant_id: str,
        post: SourcePost,
        tags: Optional[Iterable[TagInput]] = None,
    ) -> None:
        """Create or replace a post; ``tags`` replaces its tag list when given."""
        with self._lock:
            content = self._tenant(tenant_id)
            content.posts[post.post_id] = copy.deepcopy(post)
            if tags is not None:
                content.tags[post.post_id] = [_as_tag(t) for t in tags]

    def set_post_tags(self, tenant_id: str, post_id: int, tags: Iterable[TagInput]) -> None:
        with self._lock:
            self._tenant(tenant_id).tags[post_id] = [_as_tag(t) for t in tags]

    def remove_post(self, tenant_id: str, post_id: int) -> None:
        with self._lock:
            content = self._tenant(tenant_id)
            content.posts.pop(post_id, None)
            content.tags.pop(post_id, None)

    def put_comment(self, tenant_id: str, comment: SourceComment) -> None:
        with self._lock:
            self._tenant(tenant_id).comments[comment.comment_id] = copy.deepcopy(comment)

    def remove_comment(self, tenant_id: str, comment_id: int) -> None:
        with self._lock:
            self._tenant(tenant_id).comments.pop(comment_id, None)

    # ---- TenantContentReader ----
    def list_tenants(self) -> List[str]:
        with self._lock:
            return sorted(self._tenants)

    def get_post(self, tenant_id: str, post_id: int) -> Optional[SourcePost]:
        with self._lock:
            content = self._tenants.get(tenant_id)
            post = content.posts.get(post_id) if content else None
            return copy.deepcopy(post)

    def iter_posts(self, tenant_id: str) -> Iterator[SourcePost]:
        with self._lock:
            content = self._tenants.get(tenant_id)
            posts = [copy.deepcopy(p) for _, p in sorted(content.posts.items())] if content else []
        return iter(posts)

    def get_post_tags(self, tenant_id: str, post_id: int) -> List[SourceTag]:
        with self._lock:
            content = self._tenants.get(tenant_id)
            return list(content.tags.get(post_id, [])) if content else []

    def get_comment(self, tenant_id: str, comment_id: int) -> Optional[SourceComment]:
        with self._lock:
            content = self._tenants.get(tenant_id)
            comment = content.comments.get(comment_id) if content else None
            return copy.deepcopy(comment)

    def iter_comments(self, tenant_id: str) -> Iterator[SourceComment]:
        with self._lock:
            content = self._tenants.get(tenant_id)
            comments = (
                [copy.deepcopy(c) for _, c in sorted(content.comments.items())] if content else []
            )
        return iter(comments)

    def get_user_registered(self, tenant_id: str, user_id: int) -> Optional[datetime]:
        with self._lock:
            content = self._tenants.get(tenant_id)
            return content.users.get(user_id) if content else None


class TenantRegistry:
    """
    The set of tenants whose content takes part in aggregation.

    Membership is recomputed on every call from the reader's tenant list
    and the exclusion set; nothing is cached or persisted.

    Attributes:
        reader: Source of the known tenant ids
        excluded: Tenant ids never aggregated (may be a callable so that
            configuration changes are picked up without a restart)
    """

    def __init__(
        self,
        reader: TenantContentReader,
        excluded: Union[Iterable[str], Callable[[], Iterable[str]], None] = None,
    ) -> None:
        self.reader = reader
        self._excluded = excluded if excluded is not None else frozenset()

    @property
    def excluded(self) -> FrozenSet[str]:
        source = self._excluded() if callable(self._excluded) else self._excluded
        return frozenset(str(t) for t in source)

    def tenants(self) -> List[Tenant]:
        """Every known tenant with its exclusion flag."""
        excluded = self.excluded
        return [
            Tenant(tenant_id=t, excluded=t in excluded)
            for t in sorted(set(self.reader.list_tenants()))
        ]

    def usable_tenants(self) -> Set[str]:
        """Known tenants minus the exclusion set. Empty means aggregate nothing."""
        return {t.tenant_id for t in self.tenants() if not t.excluded}

    def is_usable(self, tenant_id: str) -> bool:
        return tenant_id not in self.excluded and tenant_id in set(self.reader.list_tenants())
