#!/usr/bin/env python3
"""
sql_reader.py
--------------------
TenantContentReader over each tenant's own SQL database.

Every tenant keeps its content in its own database with these tables:

    posts(ID, post_author, post_date, post_date_gmt, post_status,
          post_type, post_title, post_content, ...)
    comments(comment_ID, comment_post_ID, comment_approved, user_id,
             comment_date_gmt, ...)
    tags(tag_id, name, slug)
    post_tags(post_id, tag_id)
    users(ID, user_registered)

Tables are reflected, not declared: a tenant running an older or newer
schema simply yields rows with a different set of columns, which the
mirror store copies as far as the columns overlap.

Tenants come from an explicit id -> URL mapping, optionally extended by
a ``{tenant_id}`` URL template whose SQLite files are discovered on disk.
"""
from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from sqlalchemy import Engine, MetaData, Table, create_engine, select
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from sitewide.core.content import SourceComment, SourcePost, SourceTag
from sitewide.core.exceptions import DatabaseError, TransientStoreError
from sitewide.core.logging_manager import SitewideLogger, safe_logger
from sitewide.core.validators import DataValidator
from sitewide.database.decorators import is_transient


SQLITE_PREFIX = "sqlite:///"
TENANT_TABLES = ("posts", "comments", "tags", "post_tags", "users")


def discover_sqlite_tenants(template: str) -> Dict[str, str]:
    """
    Find tenant databases matching a SQLite URL template.

    Args:
        template: URL such as ``sqlite:///data/tenants/{tenant_id}.db``

    Returns:
        Tenant id -> URL for every matching file (empty for non-SQLite URLs)
    """
    if not template.startswith(SQLITE_PREFIX):
        return {}

    pattern = template[len(SQLITE_PREFIX):]
    prefix, _, suffix = pattern.partition("{tenant_id}")
    # Split on the last separator so that ".../tenants/{tenant_id}.db" and
    # ".../tenant_{tenant_id}.db" both work
    head, _, name_prefix = prefix.rpartition("/")
    directory = Path(head or ".")
    if not directory.is_dir():
        return {}

    found: Dict[str, str] = {}
    for path in sorted(directory.glob(f"{name_prefix}*{suffix}")):
        tenant_id = path.name[len(name_prefix):]
        if suffix:
            tenant_id = tenant_id[: -len(suffix)]
        if tenant_id:
            found[tenant_id] = template.replace("{tenant_id}", tenant_id)
    return found


class _TenantTables:
    """Reflected tables of one tenant database."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.metadata = MetaData()
        self.tables: Dict[str, Optional[Table]] = {}

    def get(self, name: str) -> Optional[Table]:
        if name not in self.tables:
            try:
                self.tables[name] = Table(name, self.metadata, autoload_with=self.engine)
            except NoSuchTableError:
                self.tables[name] = None
        return self.tables[name]


class SqlTenantReader:
    """
    Read tenant content straight from tenant databases.

    Attributes:
        urls: Tenant id -> SQLAlchemy URL
        logger: Optional logger
    """

    def __init__(
        self,
        urls: Optional[Dict[str, str]] = None,
        url_template: Optional[str] = None,
        logger: Optional[SitewideLogger] = None,
    ) -> None:
        self.urls: Dict[str, str] = dict(urls or {})
        self.url_template = url_template
        self.logger = logger
        self._tenants: Dict[str, _TenantTables] = {}
        self._lock = threading.Lock()

    # ---- Connection plumbing ----
    def _tables(self, tenant_id: str) -> _TenantTables:
        with self._lock:
            if tenant_id not in self._tenants:
                url = self.urls.get(tenant_id)
                if url is None and self.url_template:
                    url = self.url_template.replace("{tenant_id}", tenant_id)
                if url is None:
                    raise DatabaseError(f"Unknown tenant: {tenant_id}")
                self._tenants[tenant_id] = _TenantTables(create_engine(url))
            return self._tenants[tenant_id]

    def _rows(self, tenant_id: str, table_name: str, *criteria) -> List[Dict]:
        tables = self._tables(tenant_id)
        try:
            table = tables.get(table_name)
            if table is None:
                return []
            stmt = select(table)
            for criterion in criteria:
                stmt = stmt.where(criterion(table))
            with tables.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(stmt)]
        except SQLAlchemyError as e:
            safe_logger(self.logger).log_error(
                e, {"operation": "read_tenant", "tenant_id": tenant_id, "table": table_name}
            )
            if is_transient(e):
                raise TransientStoreError(f"Tenant {tenant_id} unavailable: {e}") from e
            raise DatabaseError(f"Cannot read {table_name} of tenant {tenant_id}: {e}") from e

    def dispose(self) -> None:
        with self._lock:
            for tables in self._tenants.values():
                tables.engine.dispose()
            self._tenants.clear()

    # ---- TenantContentReader ----
    def list_tenants(self) -> List[str]:
        urls = dict(self.urls)
        if self.url_template:
            for tenant_id, url in discover_sqlite_tenants(self.url_template).items():
                urls.setdefault(tenant_id, url)
        return sorted(urls)

    def get_post(self, tenant_id: str, post_id: int) -> Optional[SourcePost]:
        rows = self._rows(tenant_id, "posts", lambda t: t.c.ID == post_id)
        return SourcePost.from_row(rows[0]) if rows else None

    def iter_posts(self, tenant_id: str) -> Iterator[SourcePost]:
        for row in self._rows(tenant_id, "posts"):
            yield SourcePost.from_row(row)

    def get_post_tags(self, tenant_id: str, post_id: int) -> List[SourceTag]:
        links = self._rows(tenant_id, "post_tags", lambda t: t.c.post_id == post_id)
        tag_ids = [link["tag_id"] for link in links]
        if not tag_ids:
            return []
        rows = self._rows(tenant_id, "tags", lambda t: t.c.tag_id.in_(tag_ids))
        return [
            SourceTag(name=row.get("name") or "", slug=row.get("slug") or "")
            for row in rows
        ]

    def get_comment(self, tenant_id: str, comment_id: int) -> Optional[SourceComment]:
        rows = self._rows(tenant_id, "comments", lambda t: t.c.comment_ID == comment_id)
        return SourceComment.from_row(rows[0]) if rows else None

    def iter_comments(self, tenant_id: str) -> Iterator[SourceComment]:
        for row in self._rows(tenant_id, "comments"):
            yield SourceComment.from_row(row)

    def get_user_registered(self, tenant_id: str, user_id: int) -> Optional[datetime]:
        rows = self._rows(tenant_id, "users", lambda t: t.c.ID == user_id)
        if not rows:
            return None
        return DataValidator.normalize_datetime(rows[0].get("user_registered"))
