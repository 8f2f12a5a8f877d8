#!/usr/bin/env python3
"""
events.py
--------------------
Typed content-change events delivered to the sync engine.

The host content system raises one of these whenever a tenant mutates
content. Events carry identifiers only; the engine re-reads the current
state from the tenant so that a stale payload can never be mirrored.

Events:
    - PostChanged: a post was created or edited (any status)
    - PostDeleted: a post was removed outright
    - CommentChanged: a comment was created, edited or moderated
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class PostChanged:
    tenant_id: str
    source_post_id: int


@dataclass(frozen=True)
class PostDeleted:
    tenant_id: str
    source_post_id: int


@dataclass(frozen=True)
class CommentChanged:
    """
    A comment changed on a tenant.

    Attributes:
        tenant_id: Tenant the comment lives on
        source_comment_id: Comment id on the tenant
        status: New moderation status if the caller knows it
            ('approved', 'unapproved', 'spam', 'trash', ...); when None the
            engine reads it from the tenant
    """

    tenant_id: str
    source_comment_id: int
    status: Optional[str] = None


ContentEvent = Union[PostChanged, PostDeleted, CommentChanged]


def event_key(event: ContentEvent) -> Tuple[str, str, int]:
    """
    Ordering key of an event.

    Two events with the same key touch the same mirror row and must be
    processed one after the other, in arrival order.
    """
    if isinstance(event, CommentChanged):
        return (event.tenant_id, "comment", event.source_comment_id)
    return (event.tenant_id, "post", event.source_post_id)


def content_id(event: ContentEvent) -> int:
    if isinstance(event, CommentChanged):
        return event.source_comment_id
    return event.source_post_id
