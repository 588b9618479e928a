"""Tests for the async dispatch helpers."""

import asyncio

import pytest

from routeq import GenerationResult, NotFoundError, Status, WorkQueue, drain, process_next


class EchoBackend:
    def __init__(self):
        self.calls = []

    async def generate(self, prompt, model):
        self.calls.append((prompt, model))
        await asyncio.sleep(0)
        return GenerationResult(text=prompt.upper(), tokens_used=len(prompt.split()))


class BrokenBackend:
    def __init__(self, error):
        self.error = error

    async def generate(self, prompt, model):
        raise self.error


@pytest.fixture()
def queue():
    return WorkQueue(clock=lambda: 1000.0)


class TestProcessNext:

    def test_empty_queue(self, queue):
        assert asyncio.run(process_next(queue, {"ollama": EchoBackend()})) is None

    def test_completes_with_backend_result(self, queue):
        backend = EchoBackend()
        rid = queue.enqueue("explain recursion").id
        record = asyncio.run(process_next(queue, {"ollama": backend}))
        assert record.id == rid
        assert record.status is Status.COMPLETED
        assert record.result == GenerationResult("EXPLAIN RECURSION", 2)
        assert backend.calls == [("explain recursion", "llama3.2:3b")]

    def test_backend_exception_stored_verbatim(self, queue):
        error = ConnectionError("ollama is down")
        queue.enqueue("explain recursion")
        record = asyncio.run(process_next(queue, {"ollama": BrokenBackend(error)}))
        assert record.status is Status.FAILED
        assert record.error is error
        assert queue.get_status()["failed_count"] == 1

    def test_unregistered_backend_fails_record(self, queue):
        queue.enqueue("explain recursion")
        record = asyncio.run(process_next(queue, {"gemini": EchoBackend()}))
        assert record.status is Status.FAILED
        assert isinstance(record.error, NotFoundError)


class TestDrain:

    def test_drains_in_priority_order(self, queue):
        backend = EchoBackend()
        queue.enqueue("explain later", priority=4, no_batch=True)
        queue.enqueue("explain first", priority=1)
        queue.enqueue("explain middle", priority=3)
        processed = asyncio.run(drain(queue, {"ollama": backend}))
        assert [p for p, _ in backend.calls] == ["explain first", "explain middle", "explain later"]
        assert all(r.status is Status.COMPLETED for r in processed)
        assert len(queue) == 0
        assert queue.get_status()["completed_count"] == 3

    def test_limit(self, queue):
        for i in range(3):
            queue.enqueue(f"explain item {i}")
        processed = asyncio.run(drain(queue, {"ollama": EchoBackend()}, limit=2))
        assert len(processed) == 2
        assert len(queue) == 1

    def test_failures_do_not_stop_drain(self, queue):
        queue.enqueue("explain recursion")
        queue.enqueue("explain iteration")
        processed = asyncio.run(drain(queue, {"ollama": BrokenBackend(RuntimeError("x"))}))
        assert [r.status for r in processed] == [Status.FAILED, Status.FAILED]


class TestGenerationResult:

    def test_usage_unreported_by_default(self):
        assert GenerationResult("hi").tokens_used is None

    def test_zero_usage_is_distinct(self):
        assert GenerationResult("hi", tokens_used=0).tokens_used == 0
