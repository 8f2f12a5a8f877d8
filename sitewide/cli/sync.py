"""
Sync Commands
-------------

Commands that change the sitewide mirror.

Commands:
    - init: Create or extend the mirror tables; resync if they changed
    - resync: Rebuild the whole mirror from every usable tenant
    - sync-post: Mirror the current state of one post
    - delete-post: Remove one post from the mirror
    - sync-comment: Mirror the current state of one comment
"""
import click

from sitewide.core.exceptions import ConfigError, DatabaseError
from sitewide.core.logging_manager import handle_cli_error
from sitewide.aggregation import CommentChanged, PostChanged, PostDeleted
from sitewide.aggregation.sync_engine import SyncResult
from . import get_engine


def _echo_result(result: SyncResult) -> None:
    if not result.ok:
        click.echo(f"\n❌ Sync failed: {result.error}", err=True)
        return

    icon = {"upserted": "✅", "deleted": "🗑️ ", "skipped": "⏭️ "}.get(result.action, "•")
    line = f"\n{icon} {result.action.capitalize()}"
    if result.reason:
        line += f" ({result.reason})"
    click.echo(line)
    if result.tags_added:
        click.echo(f"  Tags added: {', '.join(sorted(result.tags_added))}")
    if result.tags_removed:
        click.echo(f"  Tags removed: {', '.join(sorted(result.tags_removed))}")


@click.command()
@click.pass_context
def init(ctx):
    """Create or extend the mirror tables (resyncs if they changed)."""
    try:
        engine = get_engine(ctx)
        stats = engine.activate()

        if stats is None:
            click.echo("\n✅ Mirror schema is up to date")
        else:
            click.echo("\n✅ Mirror schema created or extended")
            click.echo(
                f"  Resynced {stats.posts} posts, {stats.comments} comments "
                f"and {stats.tags} tags from {stats.tenants} tenants"
            )

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(ctx, e, "init")


@click.command()
@click.option("--reason", default="operator request", help="Reason recorded in the log")
@click.pass_context
def resync(ctx, reason):
    """Rebuild the whole mirror from every usable tenant."""
    try:
        engine = get_engine(ctx)
        engine.db.ensure_schema()
        stats = engine.full_resync(reason)

        click.echo("\n✅ Full resync complete")
        click.echo(f"  Tenants:  {stats.tenants}")
        click.echo(f"  Posts:    {stats.posts}")
        click.echo(f"  Comments: {stats.comments}")
        click.echo(f"  Tags:     {stats.tags}")
        click.echo(f"  Skipped:  {stats.skipped}")
        click.echo(f"  Duration: {stats.duration_seconds:.2f}s")

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(ctx, e, "resync", {"reason": reason})


@click.command("sync-post")
@click.argument("tenant_id")
@click.argument("post_id", type=int)
@click.pass_context
def sync_post(ctx, tenant_id, post_id):
    """Mirror the current state of one post."""
    try:
        result = get_engine(ctx).handle(PostChanged(tenant_id, post_id))
        _echo_result(result)
        if not result.ok:
            ctx.exit(1)

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(ctx, e, "sync_post", {"tenant_id": tenant_id, "post_id": post_id})


@click.command("delete-post")
@click.argument("tenant_id")
@click.argument("post_id", type=int)
@click.pass_context
def delete_post(ctx, tenant_id, post_id):
    """Remove one post and its tag usages from the mirror."""
    try:
        result = get_engine(ctx).handle(PostDeleted(tenant_id, post_id))
        _echo_result(result)
        if not result.ok:
            ctx.exit(1)

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(ctx, e, "delete_post", {"tenant_id": tenant_id, "post_id": post_id})


@click.command("sync-comment")
@click.argument("tenant_id")
@click.argument("comment_id", type=int)
@click.option(
    "--status",
    default=None,
    help="New moderation status (approved, unapproved, spam, trash); read from the tenant if omitted",
)
@click.pass_context
def sync_comment(ctx, tenant_id, comment_id, status):
    """Mirror the current state of one comment."""
    try:
        result = get_engine(ctx).handle(CommentChanged(tenant_id, comment_id, status))
        _echo_result(result)
        if not result.ok:
            ctx.exit(1)

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(
            ctx, e, "sync_comment", {"tenant_id": tenant_id, "comment_id": comment_id}
        )
