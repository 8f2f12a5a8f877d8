"""
Maintenance & Monitoring Commands
----------------------------------

Inspection and upkeep of the sitewide mirror.

Commands:
    - tenants: List tenants and whether they are aggregated
    - tags: List sitewide tags with their usage counts
    - stats: Display mirror statistics
    - health: Check the tag refcount invariant (optionally repair it)
    - drop: Drop the mirror tables
"""
import click

from sitewide.core.exceptions import ConfigError, DatabaseError
from sitewide.core.logging_manager import handle_cli_error
from . import get_db, get_engine


@click.command()
@click.pass_context
def tenants(ctx):
    """List tenants and whether their content is aggregated."""
    try:
        registry = get_engine(ctx).registry
        known = registry.tenants()

        click.echo("\n🏢 Tenants")
        click.echo("=" * 50)
        if not known:
            click.echo("  No tenants found")
            return
        for tenant in known:
            marker = "⛔ excluded" if tenant.excluded else "✅ aggregated"
            click.echo(f"  {tenant.tenant_id:<30} {marker}")

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(ctx, e, "tenants")


@click.command()
@click.option("--min-count", type=int, default=1, help="Only tags used at least this often")
@click.pass_context
def tags(ctx, min_count):
    """List sitewide tags with their usage counts."""
    try:
        db = get_db(ctx)
        with db.mirror_scope() as store:
            rows = [
                (tag.slug, tag.name, tag.usage_count)
                for tag in store.get_all_tags()
                if tag.usage_count >= min_count
            ]

        click.echo("\n🏷️  Sitewide Tags")
        click.echo("=" * 50)
        if not rows:
            click.echo("  No tags found")
            return
        for slug, name, count in rows:
            click.echo(f"  {slug:<30} {count:>5}  {name}")

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(ctx, e, "tags")


@click.command()
@click.pass_context
def stats(ctx):
    """Display mirror statistics."""
    try:
        db = get_db(ctx)
        with db.mirror_scope() as store:
            totals = store.counts()
            per_tenant = store.tenant_counts()

        click.echo("\n📊 Mirror Statistics")
        click.echo("=" * 50)
        click.echo(f"  Posts:       {totals['posts']}")
        click.echo(f"  Comments:    {totals['comments']}")
        click.echo(f"  Tags:        {totals['tags']}")
        click.echo(f"  Tag usages:  {totals['tag_usages']}")

        if per_tenant:
            click.echo("\nBy tenant:")
            for tenant_id, counts in sorted(per_tenant.items()):
                click.echo(
                    f"  • {tenant_id}: {counts.get('posts', 0)} posts, "
                    f"{counts.get('comments', 0)} comments"
                )

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(ctx, e, "stats")


@click.command()
@click.option("--fix", is_flag=True, help="Repair refcount violations in place")
@click.pass_context
def health(ctx, fix):
    """Check the tag refcount invariant and mirror health."""
    try:
        db = get_db(ctx)
        with db.session_scope() as session:
            report = db.health_monitor.health_check(session)

        status = report["status"]
        icon = {"healthy": "✅", "warning": "⚠️ ", "critical": "❌"}.get(status, "•")
        click.echo(f"\n🏥 Mirror Health: {icon} {status.upper()}")
        click.echo("=" * 50)

        for issue in report["issues"]:
            click.echo(f"  • {issue}")
        for recommendation in report["recommendations"]:
            click.echo(f"  → {recommendation}")

        if fix and status != "healthy":
            with db.session_scope() as session:
                repaired = db.health_monitor.repair_tag_invariants(session)
            click.echo("\n🔧 Repair Complete:")
            click.echo(f"  Usages removed:  {repaired['usages_removed']}")
            click.echo(f"  Tags recounted:  {repaired['tags_recounted']}")
            click.echo(f"  Tags deleted:    {repaired['tags_deleted']}")
        elif status == "critical":
            ctx.exit(1)

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(ctx, e, "health")


@click.command()
@click.confirmation_option(prompt="This drops every mirror table. Continue?")
@click.pass_context
def drop(ctx):
    """Drop the mirror tables (tenant content is untouched)."""
    try:
        dropped = get_engine(ctx).deactivate()

        if dropped:
            click.echo(f"\n🗑️  Dropped {len(dropped)} tables:")
            for name in dropped:
                click.echo(f"  • {name}")
        else:
            click.echo("\n  No mirror tables to drop")

    except (DatabaseError, ConfigError) as e:
        handle_cli_error(ctx, e, "drop")
