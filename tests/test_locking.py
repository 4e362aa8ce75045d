"""Per-key async mutual exclusion."""

from __future__ import annotations

import asyncio

import pytest

from agentplan.locking import LockRegistry


class TestLockRegistry:
    def test_same_key_never_interleaves(self):
        locks = LockRegistry()
        events: list[str] = []

        async def op(name: str) -> str:
            events.append(f"{name}:start")
            await asyncio.sleep(0.01)
            events.append(f"{name}:end")
            return name

        async def main() -> list[str]:
            return await asyncio.gather(*(locks.with_lock("k", lambda n=n: op(n)) for n in "abc"))

        assert asyncio.run(main()) == ["a", "b", "c"]
        for i in range(0, len(events), 2):
            name = events[i].split(":")[0]
            assert events[i + 1] == f"{name}:end"

    def test_different_keys_run_concurrently(self):
        locks = LockRegistry()

        async def main() -> bool:
            inside = asyncio.Event()
            count = 0

            async def op() -> None:
                nonlocal count
                count += 1
                if count == 2:
                    inside.set()
                await asyncio.wait_for(inside.wait(), timeout=1)

            await asyncio.gather(locks.with_lock("a", op), locks.with_lock("b", op))
            return inside.is_set()

        assert asyncio.run(main())

    def test_failure_releases_lock_for_next_caller(self):
        locks = LockRegistry()

        async def boom() -> None:
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        async def ok() -> str:
            return "ok"

        async def main() -> list[object]:
            return await asyncio.gather(
                locks.with_lock("k", boom),
                locks.with_lock("k", ok),
                return_exceptions=True,
            )

        first, second = asyncio.run(main())
        assert isinstance(first, RuntimeError)
        assert second == "ok"

    def test_entries_dropped_after_drain(self):
        locks = LockRegistry()

        async def main() -> None:
            async def op() -> None:
                assert locks.is_locked("k")
                assert locks.active_keys() == ["k"]
                await asyncio.sleep(0)

            await asyncio.gather(*(locks.with_lock("k", op) for _ in range(5)))

        asyncio.run(main())
        assert locks.active_keys() == []
        assert not locks.is_locked("k")

    def test_hold_context_manager(self):
        locks = LockRegistry()
        order: list[int] = []

        async def worker(i: int) -> None:
            async with locks.hold("k"):
                order.append(i)
                await asyncio.sleep(0)
                order.append(i)

        async def main() -> None:
            await asyncio.gather(*(worker(i) for i in range(4)))

        asyncio.run(main())
        assert order == [0, 0, 1, 1, 2, 2, 3, 3]

    def test_exception_propagates_unchanged(self):
        locks = LockRegistry()

        async def boom() -> None:
            raise KeyError("x")

        with pytest.raises(KeyError):
            asyncio.run(locks.with_lock("k", boom))
        assert locks.active_keys() == []
