import asyncio
from datetime import datetime, timezone

from farms_cbt.services.timer import AsyncioTicker, utcnow


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None
    assert abs((datetime.now(timezone.utc).replace(tzinfo=None) - utcnow()).total_seconds()) < 5


def test_asyncio_ticker_fires_until_stopped():
    calls = []

    async def run():
        ticker = AsyncioTicker(interval=0.01)
        ticker.start(lambda: calls.append(1))
        assert ticker.running
        await asyncio.sleep(0.1)
        ticker.stop()
        seen = len(calls)
        await asyncio.sleep(0.05)
        return seen

    seen = asyncio.run(run())
    assert seen >= 1
    assert len(calls) == seen


def test_callback_can_stop_the_ticker():
    calls = []

    async def run():
        ticker = AsyncioTicker(interval=0.01)

        def tick():
            calls.append(1)
            ticker.stop()

        ticker.start(tick)
        await asyncio.sleep(0.08)
        return ticker.running

    assert asyncio.run(run()) is False
    assert calls == [1]
