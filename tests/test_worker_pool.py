# tests/test_worker_pool.py

"""Tests for the bounded worker pool."""

import asyncio
import unittest

from src.services.worker_pool import run_pool


class TestRunPool(unittest.IsolatedAsyncioTestCase):
    """Concurrency bound, error isolation and exactly-once delivery."""

    async def _track(
        self, items: list[int], concurrency: int,
    ) -> tuple[int, list[int]]:
        in_flight = 0
        peak = 0
        seen: list[int] = []

        async def worker(item: int) -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            seen.append(item)
            in_flight -= 1

        await run_pool(items, concurrency, worker)
        return peak, seen

    async def test_peak_concurrency_is_bounded(self) -> None:
        """Never more than min(concurrency, len(items)) in flight."""
        for concurrency, count in ((1, 5), (2, 10), (4, 3), (8, 8)):
            with self.subTest(concurrency=concurrency, count=count):
                peak, _ = await self._track(list(range(count)), concurrency)
                self.assertEqual(peak, min(concurrency, count))

    async def test_every_item_exactly_once(self) -> None:
        items = list(range(25))
        _, seen = await self._track(items, 3)
        self.assertEqual(sorted(seen), items)

    async def test_errors_collected_not_raised(self) -> None:
        processed: list[int] = []

        async def worker(item: int) -> None:
            if item % 3 == 0:
                raise ValueError(f"bad {item}")
            processed.append(item)

        result = await run_pool(list(range(7)), 2, worker)
        self.assertEqual(result.processed, 7)
        self.assertEqual(sorted(i for i, _ in result.errors), [0, 3, 6])
        self.assertTrue(
            all(isinstance(e, ValueError) for _, e in result.errors)
        )
        self.assertEqual(sorted(processed), [1, 2, 4, 5])

    async def test_empty_items(self) -> None:
        async def worker(item: int) -> None:
            raise AssertionError("should not be called")

        result = await run_pool([], 4, worker)
        self.assertEqual(result.processed, 0)
        self.assertEqual(result.errors, [])

    async def test_should_stop_halts_new_claims(self) -> None:
        started: list[int] = []

        async def worker(item: int) -> None:
            started.append(item)
            await asyncio.sleep(0)

        result = await run_pool(
            list(range(10)), 1, worker, should_stop=lambda: len(started) >= 3,
        )
        self.assertEqual(started, [0, 1, 2])
        self.assertEqual(result.processed, 3)


if __name__ == "__main__":
    unittest.main()
