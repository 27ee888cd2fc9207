"""
Redis adapters for the entity store.
"""

from raidforge.core.redis.batch import RedisBatchCommitter

__all__ = ["RedisBatchCommitter"]
