"""Storage-layer building blocks: a paged disk buffer pool, an LRU cache, simple transactions and SQL statement structures."""

__version__ = "0.1.0"
__all__ = ["buffer_pool", "lru_cache", "trx", "sql_defs"]