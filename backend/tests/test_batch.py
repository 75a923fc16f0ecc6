"""Tests for the bounded batch runner."""

import asyncio

import pytest

from app.services.batch import run_batch


class TestRunBatch:
    async def test_never_exceeds_concurrency(self) -> None:
        in_flight = 0
        peak = 0

        async def worker(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return item * 2

        result = await run_batch(range(20), worker, concurrency=3)

        assert peak == 3
        assert result.succeeded == 20
        assert result.results[7] == 14

    async def test_failures_are_per_item(self) -> None:
        async def worker(item):
            if item == "bad":
                raise RuntimeError("boom")

        result = await run_batch(["a", "bad", "c"], worker)

        assert (result.succeeded, result.failed) == (2, 1)
        assert result.errors == {"bad": "boom"}
        assert result.to_dict() == {"succeeded": 2, "failed": 1, "errors": {"bad": "boom"}}

    async def test_empty_batch(self) -> None:
        async def worker(item):
            raise AssertionError("not called")

        result = await run_batch([], worker)
        assert result.total == 0

    async def test_concurrency_must_be_positive(self) -> None:
        async def worker(item):
            return item

        with pytest.raises(ValueError):
            await run_batch([1], worker, concurrency=0)
