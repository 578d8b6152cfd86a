"""FIFO of inbound requests waiting for a free credential."""

from __future__ import annotations

import bisect
import itertools
from collections import deque
from typing import Optional

from scrape_proxy.core.errors import QueueFull
from scrape_proxy.core.models import PendingRequest, utc_now


class PendingQueue:
    """
    FIFO of PendingRequest, ordered by first arrival.

    Unbounded by default: a queued request has no expiry and waits until a
    credential frees up or the process restarts. With max_size > 0 the
    queue rejects new requests once full instead. A redriven request that
    comes back goes to its original position, and is never rejected.
    """

    def __init__(self, max_size: int = 0) -> None:
        self.max_size = max_size
        self._items: deque[PendingRequest] = deque()
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(self, request: PendingRequest) -> None:
        """
        Append a new request, or put a redriven one back in arrival order.

        Raises:
            QueueFull: The queue is bounded and at capacity (new requests only)
        """
        if request.seq is not None:
            index = bisect.bisect_left(self._items, request.seq, key=lambda r: r.seq)
            self._items.insert(index, request)
            return

        if self.max_size and len(self._items) >= self.max_size:
            raise QueueFull(request.url, self.max_size)

        request.seq = next(self._seq)
        request.enqueued_at = utc_now().isoformat()
        self._items.append(request)

    def discard_done(self) -> int:
        """Drop requests whose caller is gone (future already done or cancelled)."""
        before = len(self._items)
        self._items = deque(r for r in self._items if not r.future.done())
        return before - len(self._items)

    def peek(self) -> Optional[PendingRequest]:
        return self._items[0] if self._items else None

    def pop(self) -> PendingRequest:
        return self._items.popleft()
