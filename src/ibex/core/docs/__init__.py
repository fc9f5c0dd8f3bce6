"""
Documentation cache kept alongside record data.
"""

from .cache import DocCache, DocCacheError, DocSyncResult

__all__ = ["DocCache", "DocCacheError", "DocSyncResult"]
