"""Partition request sequences into batches."""

from collections import OrderedDict, deque
from itertools import islice
from typing import Callable, Hashable, Iterable, Iterator, TypeVar

T = TypeVar("T")


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """
    Lazily split items into consecutive lists of at most ``size`` elements.

    Order is preserved and every item appears in exactly one chunk; the last
    chunk may be shorter. An empty input yields no chunks.

    Raises:
        ValueError: If size is less than 1
    """
    if size < 1:
        raise ValueError(f"Chunk size must be at least 1, got {size}")

    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def chunked_by_key(
    items: Iterable[T],
    size: int,
    key: Callable[[T], Hashable],
    per_key_limit: int,
) -> Iterator[list[T]]:
    """
    Split items into chunks of at most ``size`` holding at most
    ``per_key_limit`` items with the same key.

    Chunks are filled round-robin across keys in first-seen key order, so
    items sharing a key are spread over several chunks instead of crowding
    one. Items with the same key keep their relative order.

    Raises:
        ValueError: If size or per_key_limit is less than 1
    """
    if size < 1:
        raise ValueError(f"Chunk size must be at least 1, got {size}")
    if per_key_limit < 1:
        raise ValueError(f"Per-key limit must be at least 1, got {per_key_limit}")

    queues: "OrderedDict[Hashable, deque[T]]" = OrderedDict()
    for item in items:
        queues.setdefault(key(item), deque()).append(item)

    while queues:
        chunk: list[T] = []
        taken: dict[Hashable, int] = {}
        # Keep cycling over the keys until the chunk is full or every
        # remaining key has hit its limit for this chunk
        progress = True
        while len(chunk) < size and progress:
            progress = False
            for k in list(queues):
                if len(chunk) >= size:
                    break
                if taken.get(k, 0) >= per_key_limit:
                    continue
                queue = queues[k]
                chunk.append(queue.popleft())
                taken[k] = taken.get(k, 0) + 1
                progress = True
                if not queue:
                    del queues[k]
        yield chunk
