"""
Aggregation layer: events, tenants, tag reconciliation, sync engine,
cache invalidation and sitewide read queries.
"""
from .cache import CacheInvalidator, MemoryCache, SiteCache
from .events import CommentChanged, ContentEvent, PostChanged, PostDeleted
from .queries import SitewideQueries
from .sql_reader import SqlTenantReader
from .sync_engine import ResyncStats, SyncEngine, SyncResult, SyncState
from .tag_reconciler import TagDelta, TagReconciler
from .tenants import InMemoryContentReader, TenantContentReader, TenantRegistry

__all__ = [
    "CacheInvalidator",
    "CommentChanged",
    "ContentEvent",
    "InMemoryContentReader",
    "MemoryCache",
    "PostChanged",
    "PostDeleted",
    "ResyncStats",
    "SiteCache",
    "SitewideQueries",
    "SqlTenantReader",
    "SyncEngine",
    "SyncResult",
    "SyncState",
    "TagDelta",
    "TagReconciler",
    "TenantContentReader",
    "TenantRegistry",
]
