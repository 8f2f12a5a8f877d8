"""
conftest.py
-----------
Shared pytest fixtures for sitewide aggregator tests.

Provides fixtures for:
- Sitewide database setup and teardown
- In-memory tenant content with registered users
- Sync engine wiring (registry, cache, invalidator)
- Post and comment factories
"""
import pytest
from datetime import datetime, timedelta

from sitewide.aggregation import (
    CacheInvalidator,
    InMemoryContentReader,
    MemoryCache,
    SyncEngine,
    TenantRegistry,
)
from sitewide.core.content import SourceComment, SourcePost
from sitewide.database import SitewideDB


REGISTERED = datetime(2020, 1, 1, 12, 0, 0)
TENANTS = ("blog-a", "blog-b")


# ----- Sample Data Factory Functions -----

def create_post(
    post_id,
    author_id=1,
    title=None,
    created=None,
    status="publish",
    post_type="post",
    **overrides,
):
    """Factory for a source post carrying every mirrored column."""
    created = created or datetime(2024, 1, 15, 9, 30) + timedelta(minutes=post_id)
    title = title if title is not None else f"Post {post_id}"
    fields = {
        "ID": post_id,
        "post_date": created,
        "post_date_gmt": created,
        "post_title": title,
        "post_content": f"Content of {title}",
        "post_excerpt": "",
        "post_name": title.lower().replace(" ", "-"),
        "post_parent": 0,
        "guid": f"https://example.test/?p={post_id}",
        "post_mime_type": "",
        "comment_count": 0,
        "post_modified": created,
        "post_modified_gmt": created,
    }
    fields.update(overrides)
    return SourcePost(
        post_id=post_id,
        author_id=author_id,
        status=status,
        post_type=post_type,
        created_at=created,
        fields=fields,
    )


def create_comment(comment_id, post_id, status="1", user_id=0, created=None, **overrides):
    """Factory for a source comment carrying every mirrored column."""
    created = created or datetime(2024, 2, 1, 10, 0) + timedelta(minutes=comment_id)
    fields = {
        "comment_ID": comment_id,
        "comment_author": "Reader",
        "comment_author_email": "reader@example.test",
        "comment_author_url": "",
        "comment_author_IP": "127.0.0.1",
        "comment_date": created,
        "comment_date_gmt": created,
        "comment_content": f"Comment {comment_id}",
        "comment_karma": 0,
        "comment_agent": "pytest",
        "comment_type": "comment",
        "comment_parent": 0,
    }
    fields.update(overrides)
    return SourceComment(
        comment_id=comment_id,
        post_id=post_id,
        status=status,
        user_id=user_id,
        created_at=created,
        fields=fields,
    )


@pytest.fixture
def make_post():
    """Post factory (see ``create_post``)."""
    return create_post


@pytest.fixture
def make_comment():
    """Comment factory (see ``create_comment``)."""
    return create_comment


# ----- Test Database Fixtures -----

@pytest.fixture
def test_db_path(tmp_path):
    """Create temporary test database path."""
    return tmp_path / "sitewide.db"


@pytest.fixture
def raw_db(test_db_path):
    """SitewideDB without mirror tables."""
    db = SitewideDB(test_db_path)
    yield db
    db.dispose()


@pytest.fixture
def test_db(raw_db):
    """
    Create test database instance with schema.

    Returns a SitewideDB whose mirror tables exist and are empty.
    """
    raw_db.ensure_schema()
    return raw_db


@pytest.fixture
def store(test_db):
    """MirrorStore bound to one transaction that commits after the test."""
    with test_db.mirror_scope() as mirror_store:
        yield mirror_store


# ----- Tenant Fixtures -----

@pytest.fixture
def reader():
    """Two empty tenants whose users registered long ago."""
    content = InMemoryContentReader()
    for tenant_id in TENANTS:
        content.add_tenant(tenant_id)
        content.add_user(tenant_id, 1, REGISTERED)
        content.add_user(tenant_id, 2, REGISTERED)
    return content


@pytest.fixture
def excluded():
    """Mutable exclusion set read by the registry on every call."""
    return set()


@pytest.fixture
def registry(reader, excluded):
    return TenantRegistry(reader, lambda: excluded)


@pytest.fixture
def cache():
    return MemoryCache(ttl=300)


@pytest.fixture
def engine(test_db, reader, registry, cache):
    """SyncEngine over the test database with retries that do not sleep."""
    return SyncEngine(
        test_db,
        reader,
        registry,
        CacheInvalidator(cache),
        retry_delay=0,
    )
