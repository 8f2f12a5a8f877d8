"""
Sitewide content aggregator.

Mirrors posts, comments and tags from many tenant blogs into one set of
sitewide tables, kept in sync incrementally and by full resync.
"""
__version__ = "0.1.0"
