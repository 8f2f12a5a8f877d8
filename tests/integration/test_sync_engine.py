#!/usr/bin/env python3
"""
Integration tests for the sync engine.

Runs incremental events and full resyncs against a real SQLite mirror
and checks tag reconciliation, comment moderation, exclusion, placeholder
filtering, failure isolation and resync convergence.
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from sitewide.aggregation import (
    CommentChanged,
    PostChanged,
    PostDeleted,
    SyncEngine,
    SyncState,
)
from sitewide.aggregation.cache import COMMENTS, POSTS, TAGS
from sitewide.core.exceptions import FullResyncInterrupted, TransientStoreError
from sitewide.database.models import MirrorComment, MirrorPost, Tag, TagUsage


def mirror_snapshot(db):
    """Mirror contents keyed by natural keys, so row ids do not matter."""
    with db.session_scope() as session:
        posts = {
            (p.tenant_id, p.source_post_id): (p.post_title, p.post_author)
            for p in session.execute(select(MirrorPost)).scalars()
        }
        comments = {
            (c.tenant_id, c.source_comment_id): (c.comment_post_id, c.comment_content)
            for c in session.execute(select(MirrorComment)).scalars()
        }
        tag_rows = session.execute(select(Tag)).scalars().all()
        tags = {t.slug: t.usage_count for t in tag_rows}
        tag_names = {t.slug: t.name for t in tag_rows}
        usages = {
            tuple(row)
            for row in session.execute(
                select(TagUsage.tenant_id, TagUsage.source_post_id, Tag.slug).join(
                    Tag, Tag.tag_id == TagUsage.tag_id
                )
            )
        }
    return {
        "posts": posts,
        "comments": comments,
        "tags": tags,
        "tag_names": tag_names,
        "usages": usages,
    }


def assert_invariants(db):
    with db.session_scope() as session:
        db.health_monitor.assert_tag_invariants(session)


class TestPostSync:
    """Incremental post events."""

    def test_new_post_creates_tags(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["X", "y"])

        result = engine.handle(PostChanged("blog-a", 1))

        assert result.action == "upserted"
        assert result.tags_added == frozenset({"x", "y"})
        state = mirror_snapshot(test_db)
        assert state["posts"] == {("blog-a", 1): ("Post 1", 1)}
        assert state["tags"] == {"x": 1, "y": 1}
        assert_invariants(test_db)

    def test_tag_edit_swaps_one_tag(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["x", "y"])
        engine.handle(PostChanged("blog-a", 1))

        reader.set_post_tags("blog-a", 1, ["y", "z"])
        result = engine.handle(PostChanged("blog-a", 1))

        assert result.tags_added == frozenset({"z"})
        assert result.tags_removed == frozenset({"x"})
        state = mirror_snapshot(test_db)
        assert state["tags"] == {"y": 1, "z": 1}
        assert state["usages"] == {("blog-a", 1, "y"), ("blog-a", 1, "z")}
        assert_invariants(test_db)

    def test_shared_tag_counts_across_tenants(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["python"])
        reader.put_post("blog-b", make_post(7), tags=["Python"])
        engine.handle(PostChanged("blog-a", 1))
        engine.handle(PostChanged("blog-b", 7))

        assert mirror_snapshot(test_db)["tags"] == {"python": 2}

        reader.remove_post("blog-a", 1)
        engine.handle(PostDeleted("blog-a", 1))
        assert mirror_snapshot(test_db)["tags"] == {"python": 1}

        reader.remove_post("blog-b", 7)
        engine.handle(PostDeleted("blog-b", 7))
        assert mirror_snapshot(test_db)["tags"] == {}
        assert_invariants(test_db)

    def test_replaying_an_event_is_idempotent(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["x", "y"])

        engine.handle(PostChanged("blog-a", 1))
        once = mirror_snapshot(test_db)
        second = engine.handle(PostChanged("blog-a", 1))

        assert second.tags_added == frozenset()
        assert second.tags_removed == frozenset()
        assert mirror_snapshot(test_db) == once

    def test_delete_removes_row_and_usages(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["x"])
        reader.put_post("blog-a", make_post(2), tags=["x"])
        engine.handle_all([PostChanged("blog-a", 1), PostChanged("blog-a", 2)])

        reader.remove_post("blog-a", 1)
        result = engine.handle(PostDeleted("blog-a", 1))

        assert result.action == "deleted"
        assert result.tags_removed == frozenset({"x"})
        state = mirror_snapshot(test_db)
        assert ("blog-a", 1) not in state["posts"]
        assert state["usages"] == {("blog-a", 2, "x")}
        assert state["tags"] == {"x": 1}

    def test_deleting_twice_is_harmless(self, engine, test_db):
        assert engine.handle(PostDeleted("blog-a", 404)).ok
        assert engine.handle(PostDeleted("blog-a", 404)).ok
        assert mirror_snapshot(test_db)["posts"] == {}

    def test_unpublished_post_is_removed(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["x"])
        engine.handle(PostChanged("blog-a", 1))

        reader.put_post("blog-a", make_post(1, status="draft"))
        result = engine.handle(PostChanged("blog-a", 1))

        assert result.action == "deleted"
        assert result.reason == "not public"
        assert mirror_snapshot(test_db)["posts"] == {}
        assert mirror_snapshot(test_db)["tags"] == {}

    def test_pages_are_not_mirrored(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1, post_type="page"))
        assert engine.handle(PostChanged("blog-a", 1)).reason == "not public"
        assert mirror_snapshot(test_db)["posts"] == {}

    def test_revisions_are_ignored(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["x"])
        engine.handle(PostChanged("blog-a", 1))
        before = mirror_snapshot(test_db)

        reader.put_post("blog-a", make_post(2, post_type="revision", post_parent=1))
        result = engine.handle(PostChanged("blog-a", 2))

        assert result.action == "skipped"
        assert result.reason == "revision"
        assert mirror_snapshot(test_db) == before

    def test_vanished_post_is_removed(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1))
        engine.handle(PostChanged("blog-a", 1))
        reader.remove_post("blog-a", 1)

        result = engine.handle(PostChanged("blog-a", 1))

        assert result.reason == "missing"
        assert mirror_snapshot(test_db)["posts"] == {}

    def test_title_edit_overwrites_row(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1, title="Before"))
        engine.handle(PostChanged("blog-a", 1))
        reader.put_post("blog-a", make_post(1, title="After"))
        engine.handle(PostChanged("blog-a", 1))

        assert mirror_snapshot(test_db)["posts"] == {("blog-a", 1): ("After", 1)}


class TestCommentSync:
    """Incremental comment events."""

    def test_approved_comment_is_mirrored(self, engine, reader, test_db, make_post, make_comment):
        reader.put_post("blog-a", make_post(1))
        reader.put_comment("blog-a", make_comment(10, post_id=1))

        result = engine.handle(CommentChanged("blog-a", 10))

        assert result.action == "upserted"
        assert ("blog-a", 10) in mirror_snapshot(test_db)["comments"]

    def test_pending_comment_is_not_mirrored(self, engine, reader, test_db, make_post, make_comment):
        reader.put_post("blog-a", make_post(1))
        reader.put_comment("blog-a", make_comment(10, post_id=1, status="0"))

        result = engine.handle(CommentChanged("blog-a", 10))

        assert result.reason == "not approved"
        assert mirror_snapshot(test_db)["comments"] == {}

    def test_status_transition_overrides_source(
        self, engine, reader, test_db, make_post, make_comment
    ):
        reader.put_post("blog-a", make_post(1))
        reader.put_comment("blog-a", make_comment(10, post_id=1, status="0"))

        engine.handle(CommentChanged("blog-a", 10, status="approved"))
        with test_db.mirror_scope() as store:
            assert store.get_comment("blog-a", 10).comment_approved == "1"

        result = engine.handle(CommentChanged("blog-a", 10, status="spam"))
        assert result.action == "deleted"
        assert mirror_snapshot(test_db)["comments"] == {}

    @pytest.mark.parametrize("status", ["unapproved", "spam", "trash"])
    def test_rejection_removes_comment(
        self, engine, reader, test_db, make_post, make_comment, status
    ):
        reader.put_post("blog-a", make_post(1))
        reader.put_comment("blog-a", make_comment(10, post_id=1))
        engine.handle(CommentChanged("blog-a", 10))

        engine.handle(CommentChanged("blog-a", 10, status=status))

        assert mirror_snapshot(test_db)["comments"] == {}

    def test_deleted_comment(self, engine, reader, test_db, make_post, make_comment):
        reader.put_post("blog-a", make_post(1))
        reader.put_comment("blog-a", make_comment(10, post_id=1))
        engine.handle(CommentChanged("blog-a", 10))
        reader.remove_comment("blog-a", 10)

        result = engine.handle(CommentChanged("blog-a", 10))

        assert result.reason == "missing"
        assert mirror_snapshot(test_db)["comments"] == {}


class TestExclusionAndToggles:
    def test_excluded_tenant_events_are_skipped(
        self, engine, reader, excluded, test_db, make_post
    ):
        excluded.add("blog-b")
        reader.put_post("blog-b", make_post(1), tags=["x"])

        result = engine.handle(PostChanged("blog-b", 1))

        assert result.action == "skipped"
        assert result.reason == "tenant not usable"
        assert mirror_snapshot(test_db)["posts"] == {}

    def test_unknown_tenant_is_skipped(self, engine):
        assert engine.handle(PostChanged("ghost", 1)).reason == "tenant not usable"

    def test_resync_drops_newly_excluded_tenant(
        self, engine, reader, excluded, test_db, make_post
    ):
        reader.put_post("blog-a", make_post(1), tags=["x"])
        reader.put_post("blog-b", make_post(1), tags=["x"])
        engine.full_resync("initial")
        assert len(mirror_snapshot(test_db)["posts"]) == 2

        excluded.add("blog-b")
        stats = engine.full_resync("exclusion changed")

        assert stats.tenants == 1
        state = mirror_snapshot(test_db)
        assert set(state["posts"]) == {("blog-a", 1)}
        assert state["tags"] == {"x": 1}

    def test_disabled_aggregation_skips_events(self, test_db, reader, registry, make_post):
        engine = SyncEngine(test_db, reader, registry, aggregation_enabled=False)
        reader.put_post("blog-a", make_post(1))

        result = engine.handle(PostChanged("blog-a", 1))

        assert result.reason == "aggregation disabled"
        assert mirror_snapshot(test_db)["posts"] == {}

    def test_toggle_is_read_per_event(self, test_db, reader, registry, make_post):
        enabled = {"value": False}
        engine = SyncEngine(
            test_db, reader, registry, aggregation_enabled=lambda: enabled["value"]
        )
        reader.put_post("blog-a", make_post(1))

        assert engine.handle(PostChanged("blog-a", 1)).action == "skipped"
        enabled["value"] = True
        assert engine.handle(PostChanged("blog-a", 1)).action == "upserted"


class TestTagIdentity:
    """Tag slugs and names coming from tenant tags."""

    def test_non_latin_tags_are_mirrored(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["日本語", "Ελληνικά", "python"])

        result = engine.handle(PostChanged("blog-a", 1))

        assert len(result.tags_added) == 3
        names = mirror_snapshot(test_db)["tag_names"]
        assert sorted(names.values()) == ["python", "Ελληνικά", "日本語"]
        assert_invariants(test_db)

    def test_punctuated_tags_stay_apart(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["C#", "C++"])
        reader.put_post("blog-a", make_post(2), tags=["C"])
        engine.handle_all([PostChanged("blog-a", 1), PostChanged("blog-a", 2)])

        assert mirror_snapshot(test_db)["tags"] == {"c%23": 1, "c%2b%2b": 1, "c": 1}

    def test_name_does_not_depend_on_event_order(self, engine, reader, test_db, make_post):
        reader.put_post("blog-b", make_post(1), tags=["Python"])
        reader.put_post("blog-a", make_post(1), tags=["python"])
        engine.handle(PostChanged("blog-b", 1))
        engine.handle(PostChanged("blog-a", 1))
        incremental = mirror_snapshot(test_db)

        engine.full_resync("verify")

        assert incremental["tag_names"] == {"python": "python"}
        assert mirror_snapshot(test_db) == incremental

    def test_owner_renaming_its_tag_renames_the_sitewide_tag(
        self, engine, reader, test_db, make_post
    ):
        reader.put_post("blog-a", make_post(1), tags=["python"])
        reader.put_post("blog-b", make_post(1), tags=["python"])
        engine.handle_all([PostChanged("blog-a", 1), PostChanged("blog-b", 1)])

        reader.set_post_tags("blog-b", 1, ["PYTHON"])
        engine.handle(PostChanged("blog-b", 1))
        assert mirror_snapshot(test_db)["tag_names"] == {"python": "python"}

        reader.set_post_tags("blog-a", 1, ["Python"])
        engine.handle(PostChanged("blog-a", 1))
        assert mirror_snapshot(test_db)["tag_names"] == {"python": "Python"}

    def test_next_owner_names_the_tag_after_removal(
        self, engine, reader, test_db, make_post
    ):
        reader.put_post("blog-a", make_post(1), tags=["python"])
        reader.put_post("blog-b", make_post(1), tags=["Python"])
        engine.handle_all([PostChanged("blog-a", 1), PostChanged("blog-b", 1)])

        reader.remove_post("blog-a", 1)
        engine.handle(PostDeleted("blog-a", 1))
        incremental = mirror_snapshot(test_db)

        engine.full_resync("verify")

        assert incremental["tag_names"] == {"python": "Python"}
        assert mirror_snapshot(test_db) == incremental


class TestPlaceholderContent:
    """Content created with a new account is never aggregated."""

    REGISTERED_AT = datetime(2024, 6, 1, 8, 0, 0)

    @pytest.fixture
    def new_user(self, reader):
        reader.add_user("blog-a", 3, self.REGISTERED_AT)
        return 3

    def test_welcome_post_is_skipped(self, engine, reader, test_db, make_post, new_user):
        reader.put_post(
            "blog-a",
            make_post(1, author_id=new_user, created=self.REGISTERED_AT + timedelta(seconds=2)),
            tags=["uncategorized"],
        )

        result = engine.handle(PostChanged("blog-a", 1))

        assert result.action == "skipped"
        assert result.reason == "placeholder"
        assert mirror_snapshot(test_db)["posts"] == {}
        assert mirror_snapshot(test_db)["tags"] == {}

    def test_post_backdated_into_grace_window_leaves_mirror(
        self, engine, reader, cache, test_db, make_post, new_user
    ):
        reader.put_post(
            "blog-a",
            make_post(1, author_id=new_user, created=self.REGISTERED_AT + timedelta(days=1)),
            tags=["real"],
        )
        engine.handle(PostChanged("blog-a", 1))
        for group in (POSTS, TAGS, COMMENTS):
            cache.set(group, "view", "stale")

        reader.put_post(
            "blog-a",
            make_post(1, author_id=new_user, created=self.REGISTERED_AT + timedelta(seconds=1)),
        )
        result = engine.handle(PostChanged("blog-a", 1))

        assert result.action == "skipped"
        assert result.reason == "placeholder"
        assert result.mirror_changed is True
        assert result.tags_removed == frozenset({"real"})
        assert mirror_snapshot(test_db)["posts"] == {}
        assert len(cache) == 0

    def test_skipped_placeholder_with_nothing_mirrored_keeps_cache(
        self, engine, reader, cache, make_post, new_user
    ):
        reader.put_post(
            "blog-a",
            make_post(1, author_id=new_user, created=self.REGISTERED_AT + timedelta(seconds=1)),
        )
        cache.set(POSTS, "view", "fresh")

        result = engine.handle(PostChanged("blog-a", 1))

        assert result.mirror_changed is False
        assert cache.get(POSTS, "view") == "fresh"

    def test_later_post_is_mirrored(self, engine, reader, test_db, make_post, new_user):
        reader.put_post(
            "blog-a",
            make_post(2, author_id=new_user, created=self.REGISTERED_AT + timedelta(minutes=5)),
        )
        assert engine.handle(PostChanged("blog-a", 2)).action == "upserted"

    def test_grace_boundary_is_inclusive(self, engine, reader, make_post, new_user):
        reader.put_post(
            "blog-a",
            make_post(
                3,
                author_id=new_user,
                created=self.REGISTERED_AT + timedelta(seconds=engine.grace_seconds),
            ),
        )
        assert engine.handle(PostChanged("blog-a", 3)).reason == "placeholder"

    def test_aware_timestamps(self, engine, reader, make_post, new_user):
        created = (self.REGISTERED_AT + timedelta(seconds=1)).replace(tzinfo=timezone.utc)
        reader.put_post("blog-a", make_post(4, author_id=new_user, created=created))
        assert engine.handle(PostChanged("blog-a", 4)).reason == "placeholder"

    def test_welcome_comment_is_skipped(
        self, engine, reader, test_db, make_post, make_comment, new_user
    ):
        reader.put_post(
            "blog-a",
            make_post(1, author_id=new_user, created=self.REGISTERED_AT + timedelta(seconds=1)),
        )
        reader.put_comment(
            "blog-a",
            make_comment(1, post_id=1, created=self.REGISTERED_AT + timedelta(seconds=1)),
        )

        assert engine.handle(CommentChanged("blog-a", 1)).reason == "placeholder"
        assert mirror_snapshot(test_db)["comments"] == {}

    def test_resync_skips_placeholders(
        self, engine, reader, test_db, make_post, make_comment, new_user
    ):
        reader.put_post(
            "blog-a",
            make_post(1, author_id=new_user, created=self.REGISTERED_AT + timedelta(seconds=1)),
            tags=["uncategorized"],
        )
        reader.put_comment(
            "blog-a",
            make_comment(1, post_id=1, created=self.REGISTERED_AT + timedelta(seconds=1)),
        )
        reader.put_post("blog-a", make_post(2), tags=["real"])

        stats = engine.full_resync("test")

        assert stats.posts == 1
        assert stats.comments == 0
        assert stats.skipped == 2
        state = mirror_snapshot(test_db)
        assert set(state["posts"]) == {("blog-a", 2)}
        assert state["tags"] == {"real": 1}


class TestFullResync:
    """Full resync behavior."""

    def _populate(self, reader, make_post, make_comment):
        reader.put_post("blog-a", make_post(1), tags=["python", "web"])
        reader.put_post("blog-a", make_post(2), tags=["python"])
        reader.put_post("blog-a", make_post(3, status="draft"), tags=["secret"])
        reader.put_post("blog-b", make_post(1), tags=["Python", "data"])
        reader.put_comment("blog-a", make_comment(1, post_id=1))
        reader.put_comment("blog-a", make_comment(2, post_id=1, status="spam"))
        reader.put_comment("blog-b", make_comment(1, post_id=1, user_id=2))

    def test_resync_matches_incremental(
        self, engine, reader, test_db, make_post, make_comment
    ):
        self._populate(reader, make_post, make_comment)
        engine.handle_all(
            [
                PostChanged("blog-a", 1),
                PostChanged("blog-a", 2),
                PostChanged("blog-a", 3),
                PostChanged("blog-b", 1),
                CommentChanged("blog-a", 1),
                CommentChanged("blog-a", 2),
                CommentChanged("blog-b", 1),
            ]
        )
        incremental = mirror_snapshot(test_db)

        stats = engine.full_resync("verify")

        assert mirror_snapshot(test_db) == incremental
        assert incremental["tags"] == {"python": 3, "web": 1, "data": 1}
        assert incremental["tag_names"]["python"] == "python"
        assert stats.tenants == 2
        assert stats.posts == 3
        assert stats.comments == 2
        assert stats.tags == 3
        assert_invariants(test_db)

    def test_resync_repairs_a_corrupted_mirror(
        self, engine, reader, test_db, make_post, make_comment
    ):
        self._populate(reader, make_post, make_comment)
        engine.full_resync("initial")
        expected = mirror_snapshot(test_db)

        with test_db.mirror_scope() as store:
            store.delete_post("blog-a", 1)
            tag = store.get_tag_by_slug("python")
            store.adjust_tag_usage_count(tag.tag_id, 5)

        engine.full_resync("repair")

        assert mirror_snapshot(test_db) == expected
        assert_invariants(test_db)

    def test_failed_resync_leaves_mirror_untouched(
        self, engine, reader, test_db, make_post, make_comment, monkeypatch
    ):
        self._populate(reader, make_post, make_comment)
        engine.full_resync("initial")
        before = mirror_snapshot(test_db)

        reader.put_post("blog-a", make_post(9), tags=["new"])

        def offline(tenant_id):
            raise RuntimeError(f"{tenant_id} is offline")

        monkeypatch.setattr(reader, "iter_comments", offline)

        with pytest.raises(FullResyncInterrupted):
            engine.full_resync("doomed")

        assert mirror_snapshot(test_db) == before
        assert engine.state is SyncState.IDLE

    def test_resync_with_no_usable_tenants_empties_mirror(
        self, engine, reader, excluded, test_db, make_post
    ):
        reader.put_post("blog-a", make_post(1), tags=["x"])
        engine.full_resync("initial")

        excluded.update({"blog-a", "blog-b"})
        stats = engine.full_resync("everything excluded")

        assert stats.tenants == 0
        assert mirror_snapshot(test_db) == {
            "posts": {},
            "comments": {},
            "tags": {},
            "tag_names": {},
            "usages": set(),
        }

    def test_resync_invalidates_everything(self, engine, cache, reader, make_post):
        cache.set(POSTS, "k", 1)
        cache.set(COMMENTS, "k", 1)

        engine.full_resync("test")

        assert len(cache) == 0


class TestFailureIsolation:
    """A failing event never blocks the ones after it."""

    def test_transient_failure_is_queued_and_retried(
        self, engine, reader, test_db, make_post, monkeypatch
    ):
        reader.put_post("blog-a", make_post(1), tags=["x"])
        reader.put_post("blog-a", make_post(2), tags=["x"])
        original_get_post = reader.get_post

        def flaky(tenant_id, post_id):
            if post_id == 1:
                raise TransientStoreError("database is locked")
            return original_get_post(tenant_id, post_id)

        monkeypatch.setattr(reader, "get_post", flaky)

        results = engine.handle_all([PostChanged("blog-a", 1), PostChanged("blog-a", 2)])

        assert [r.action for r in results] == ["failed", "upserted"]
        assert isinstance(results[0].error, TransientStoreError)
        assert [u.event for u in engine.unsynced] == [PostChanged("blog-a", 1)]
        assert set(mirror_snapshot(test_db)["posts"]) == {("blog-a", 2)}
        assert_invariants(test_db)

        monkeypatch.setattr(reader, "get_post", original_get_post)
        retried = engine.retry_unsynced()

        assert [r.action for r in retried] == ["upserted"]
        assert engine.unsynced == []
        assert mirror_snapshot(test_db)["tags"] == {"x": 2}

    def test_failed_event_rolls_back_partial_work(
        self, engine, reader, test_db, make_post, monkeypatch
    ):
        reader.put_post("blog-a", make_post(1), tags=["x"])
        engine.handle(PostChanged("blog-a", 1))
        before = mirror_snapshot(test_db)

        reader.set_post_tags("blog-a", 1, ["y"])

        def broken_delta(*args, **kwargs):
            raise TransientStoreError("database is busy")

        monkeypatch.setattr(engine, "_apply_tag_delta", broken_delta)

        result = engine.handle(PostChanged("blog-a", 1))

        assert not result.ok
        assert mirror_snapshot(test_db) == before

    def test_successful_resync_clears_unsynced(
        self, engine, reader, make_post, monkeypatch
    ):
        reader.put_post("blog-a", make_post(1))

        def locked(tenant_id, post_id):
            raise TransientStoreError("database is locked")

        monkeypatch.setattr(reader, "get_post", locked)
        engine.handle(PostChanged("blog-a", 1))
        assert len(engine.unsynced) == 1

        monkeypatch.undo()
        engine.full_resync("catch up")

        assert engine.unsynced == []


class TestCacheInvalidation:
    def test_post_event_clears_post_tag_and_comment_views(
        self, engine, cache, reader, make_post
    ):
        for group in (POSTS, TAGS, COMMENTS):
            cache.set(group, "view", "stale")
        reader.put_post("blog-a", make_post(1))

        engine.handle(PostChanged("blog-a", 1))

        assert cache.get(POSTS, "view") is None
        assert cache.get(TAGS, "view") is None
        assert cache.get(COMMENTS, "view") is None

    def test_comment_event_clears_comment_views(
        self, engine, cache, reader, make_post, make_comment
    ):
        for group in (POSTS, COMMENTS):
            cache.set(group, "view", "stale")
        reader.put_post("blog-a", make_post(1))
        reader.put_comment("blog-a", make_comment(1, post_id=1))

        engine.handle(CommentChanged("blog-a", 1))

        assert cache.get(COMMENTS, "view") is None
        assert cache.get(POSTS, "view") == "stale"

    def test_skipped_event_keeps_cache(self, engine, cache, excluded):
        excluded.add("blog-a")
        cache.set(POSTS, "view", "fresh")
        engine.handle(PostChanged("blog-a", 1))
        assert cache.get(POSTS, "view") == "fresh"


class TestLifecycle:
    """Activation and deactivation."""

    def test_activate_creates_schema_and_resyncs(self, raw_db, reader, registry, make_post):
        reader.put_post("blog-a", make_post(1), tags=["x"])
        engine = SyncEngine(raw_db, reader, registry, retry_delay=0)

        stats = engine.activate()

        assert stats is not None
        assert stats.reason == "schema changed"
        assert stats.posts == 1
        assert engine.activate() is None

    def test_deactivate_drops_tables(self, engine, reader, test_db, make_post):
        reader.put_post("blog-a", make_post(1), tags=["x"])
        engine.handle(PostChanged("blog-a", 1))

        dropped = engine.deactivate()

        assert "sw_posts" in dropped
        assert engine.activate() is not None
        assert set(mirror_snapshot(test_db)["posts"]) == {("blog-a", 1)}

    def test_state_is_idle_between_events(self, engine, reader, make_post):
        reader.put_post("blog-a", make_post(1))
        engine.handle(PostChanged("blog-a", 1))
        assert engine.state is SyncState.IDLE
        assert engine.in_flight == []


class TestConcurrency:
    def test_parallel_events_keep_counts_consistent(self, test_db, reader, registry, make_post):
        engine = SyncEngine(test_db, reader, registry, max_retries=8, retry_delay=0.01)
        for post_id in range(1, 13):
            reader.put_post("blog-a", make_post(post_id), tags=["shared", f"own-{post_id}"])

        def worker(post_ids):
            for post_id in post_ids:
                engine.handle(PostChanged("blog-a", post_id))

        threads = [
            threading.Thread(target=worker, args=(range(start, 13, 4),))
            for start in range(1, 5)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        engine.retry_unsynced()
        state = mirror_snapshot(test_db)
        assert len(state["posts"]) == 12
        assert state["tags"]["shared"] == 12
        assert_invariants(test_db)
