"""
Redis batch committer for the write coalescer.

Purpose
-------
Apply one chunk of coalesced entity writes to Redis as a single atomic
MULTI/EXEC transaction, so a chunk either lands completely or not at all.

Storage Layout
--------------
- Entity document: hash at `<prefix>:<partition>:<entity_id>`; plain field
  values are stored JSON-encoded.
- `Increment` fields: HINCRBY (int) or HINCRBYFLOAT (float) on the same hash,
  so concurrent increments from other processes are not lost.
- `Append` fields: RPUSH of JSON-encoded values onto the sibling list
  `<prefix>:<partition>:<entity_id>:<field>`.
- Plain list values: the same sibling list, replaced (DEL then RPUSH). A list
  field therefore always lives in one place whether it reached the store as
  a plain list, an `Append`, or a plain list merged with an `Append`.

Non-Responsibilities
--------------------
- No retry logic. The coalescer owns the failure policy (log and drop).
- No merging. Writes arrive already merged per entity.

Architecture Notes
------------------
- Uses `client.pipeline(transaction=True)` for MULTI/EXEC.
- Chunk size is bounded by the caller (`write_coalescer.max_ops_per_commit`).
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Sequence

from redis.asyncio import Redis

from raidforge.core.logging.logger import get_logger
from raidforge.core.persistence.coalescer import Append, Increment, PendingWrite

logger = get_logger(__name__)


def _encode(value: Any) -> str:
    return json.dumps(value, default=str, separators=(",", ":"))


class RedisBatchCommitter:
    """
    `BatchCommitter` implementation over `redis.asyncio`.

    Parameters
    ----------
    client : Redis
        The Redis client to use for operations
    key_prefix : str
        Namespace prepended to every key
    """

    def __init__(self, client: Redis, key_prefix: str = "raidforge") -> None:
        self._client = client
        self._prefix = key_prefix

    def entity_key(self, partition: str, entity_id: str) -> str:
        return f"{self._prefix}:{partition}:{entity_id}"

    def list_key(self, partition: str, entity_id: str, field_name: str) -> str:
        return f"{self.entity_key(partition, entity_id)}:{field_name}"

    async def commit_batch(self, partition: str, writes: Sequence[PendingWrite]) -> None:
        """
        Apply all writes in one MULTI/EXEC transaction.

        Raises whatever the client raises; the caller decides what to drop.
        """
        if not writes:
            return

        start_time = time.monotonic()
        command_count = 0

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for write in writes:
                    key = self.entity_key(partition, write.entity_id)
                    mapping: Dict[str, str] = {}

                    for name, value in write.fields.items():
                        if isinstance(value, Increment):
                            if isinstance(value.amount, float):
                                pipe.hincrbyfloat(key, name, value.amount)
                            else:
                                pipe.hincrby(key, name, int(value.amount))
                            command_count += 1
                        elif isinstance(value, Append):
                            if value.values:
                                pipe.rpush(
                                    self.list_key(partition, write.entity_id, name),
                                    *(_encode(v) for v in value.values),
                                )
                                command_count += 1
                        elif isinstance(value, list):
                            list_key = self.list_key(partition, write.entity_id, name)
                            pipe.delete(list_key)
                            command_count += 1
                            if value:
                                pipe.rpush(list_key, *(_encode(v) for v in value))
                                command_count += 1
                        else:
                            mapping[name] = _encode(value)

                    if mapping:
                        pipe.hset(key, mapping=mapping)
                        command_count += 1

                await pipe.execute()

        except Exception as exc:
            logger.error(
                "Redis batch commit failed",
                extra={
                    "partition": partition,
                    "entity_count": len(writes),
                    "command_count": command_count,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise

        logger.debug(
            "Redis batch commit completed",
            extra={
                "partition": partition,
                "entity_count": len(writes),
                "command_count": command_count,
                "latency_ms": round((time.monotonic() - start_time) * 1000, 2),
            },
        )

    async def read_entity(self, partition: str, entity_id: str) -> Dict[str, Any]:
        """Decode the hash document for an entity (scalar and incremented fields; lists via `read_list`)."""
        raw = await self._client.hgetall(self.entity_key(partition, entity_id))
        document: Dict[str, Any] = {}
        for name, value in raw.items():
            if isinstance(name, bytes):
                name = name.decode("utf-8")
            if isinstance(value, bytes):
                value = value.decode("utf-8")
            document[name] = json.loads(value)
        return document

    async def read_list(self, partition: str, entity_id: str, field_name: str) -> list:
        values = await self._client.lrange(
            self.list_key(partition, entity_id, field_name), 0, -1
        )
        return [json.loads(v.decode("utf-8") if isinstance(v, bytes) else v) for v in values]
