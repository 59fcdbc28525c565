"""Parallel chunk upload utilities."""
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class Chunk:
    """One APPEND segment: bytes [offset, offset + length) of the asset."""
    index: int
    offset: int
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


def get_parallel_count(total_bytes: int) -> int:
    """
    Get concurrent APPEND count based on asset size.

    Small assets have few chunks, so more of them can be in flight.
    Large videos use big chunks, so limit parallelism.
    """
    MB = 1024 * 1024

    if total_bytes < 5 * MB:
        return 4
    elif total_bytes < 50 * MB:
        return 3
    else:
        return 2


def plan_chunks(total_bytes: int, chunk_size: int) -> List[Chunk]:
    """Partition [0, total_bytes) into consecutive indexed chunks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if total_bytes <= 0:
        return []
    return [
        Chunk(index=index, offset=offset, length=min(chunk_size, total_bytes - offset))
        for index, offset in enumerate(range(0, total_bytes, chunk_size))
    ]


def batched(chunks: List[Chunk], size: int) -> List[List[Chunk]]:
    """Split chunks into batches of at most ``size``."""
    return [chunks[i:i + size] for i in range(0, len(chunks), size)]
