"""
Entity-store write path: the WriteCoalescer and its field transforms.
"""

from raidforge.core.persistence.coalescer import (
    Append,
    BatchCommitter,
    FlushReport,
    Increment,
    PendingWrite,
    WriteCoalescer,
    merge_field,
)

__all__ = [
    "Append",
    "BatchCommitter",
    "FlushReport",
    "Increment",
    "PendingWrite",
    "WriteCoalescer",
    "merge_field",
]
