"""Tests for the pending queue."""

import asyncio

import pytest

from scrape_proxy.core.errors import QueueFull
from scrape_proxy.core.models import PendingRequest
from scrape_proxy.pipelines.pending_queue import PendingQueue


@pytest.mark.asyncio
async def test_queue_is_fifo() -> None:
    queue = PendingQueue()
    first, second = PendingRequest("https://a.test/"), PendingRequest("https://b.test/")
    queue.enqueue(first)
    queue.enqueue(second)

    assert len(queue) == 2
    assert queue.peek() is first
    assert queue.pop() is first
    assert queue.pop() is second
    assert queue.peek() is None
    assert first.enqueued_at is not None


@pytest.mark.asyncio
async def test_redriven_request_goes_back_to_its_place() -> None:
    queue = PendingQueue()
    older, newer = PendingRequest("https://a.test/"), PendingRequest("https://b.test/")
    queue.enqueue(older)
    queue.enqueue(newer)

    assert queue.pop() is older
    queue.enqueue(older)

    assert queue.pop() is older
    assert queue.pop() is newer


@pytest.mark.asyncio
async def test_concurrent_requeues_keep_arrival_order() -> None:
    queue = PendingQueue()
    first, second, third = (PendingRequest(f"https://{n}.test/") for n in "abc")
    for request in (first, second, third):
        queue.enqueue(request)

    # Two drains pop in order, then hand back in the opposite order.
    popped = [queue.pop(), queue.pop()]
    for request in reversed(popped):
        queue.enqueue(request)

    assert [queue.pop(), queue.pop(), queue.pop()] == [first, second, third]


@pytest.mark.asyncio
async def test_requeue_is_never_rejected_by_the_bound() -> None:
    queue = PendingQueue(max_size=1)
    waiting = PendingRequest("https://a.test/")
    queue.enqueue(waiting)
    redriven = queue.pop()
    queue.enqueue(PendingRequest("https://b.test/"))

    queue.enqueue(redriven)

    assert len(queue) == 2
    assert queue.peek() is waiting


@pytest.mark.asyncio
async def test_bounded_queue_rejects_when_full() -> None:
    queue = PendingQueue(max_size=1)
    queue.enqueue(PendingRequest("https://a.test/"))

    with pytest.raises(QueueFull):
        queue.enqueue(PendingRequest("https://b.test/"))
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_discard_done_drops_abandoned_requests() -> None:
    queue = PendingQueue()
    abandoned, waiting = PendingRequest("https://a.test/"), PendingRequest("https://b.test/")
    queue.enqueue(abandoned)
    queue.enqueue(waiting)

    abandoned.future.cancel()
    await asyncio.sleep(0)

    assert queue.discard_done() == 1
    assert queue.pop() is waiting
