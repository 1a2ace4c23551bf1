import asyncio

import pytest

from account_operator.utils.repeat import repeat_every


class TestRepeatEvery:
    @pytest.mark.asyncio
    async def test_stops_after_max_repetitions(self) -> None:
        calls = 0

        @repeat_every(seconds=0, max_repetitions=3)
        async def tick() -> None:
            nonlocal calls
            calls += 1

        task = await tick()
        await asyncio.wait_for(task, timeout=1)

        assert calls == 3

    @pytest.mark.asyncio
    async def test_errors_are_logged_and_repetition_continues(self) -> None:
        calls = 0

        @repeat_every(seconds=0, max_repetitions=2)
        async def tick() -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("tick failed")

        task = await tick()
        await asyncio.wait_for(task, timeout=1)

        assert calls == 2

    @pytest.mark.asyncio
    async def test_raise_exceptions_stops_the_loop(self) -> None:
        @repeat_every(seconds=0, raise_exceptions=True)
        async def tick() -> None:
            raise RuntimeError("tick failed")

        task = await tick()

        with pytest.raises(RuntimeError, match="tick failed"):
            await asyncio.wait_for(task, timeout=1)
