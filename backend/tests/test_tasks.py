import asyncio

from ychat.tasks import Refresher


class SlowFetch:
    """Fetch whose runs finish only when released, in any order."""

    def __init__(self):
        self.gates = []
        self.runs = 0

    async def __call__(self):
        self.runs += 1
        run = self.runs
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return run


async def test_latest_run_wins():
    fetch = SlowFetch()
    published = []
    refresher = Refresher(fetch, published.append)
    first = refresher.trigger()
    second = refresher.trigger()
    await asyncio.sleep(0)

    fetch.gates[1].set()
    assert await second is True
    fetch.gates[0].set()
    assert await first is False
    assert published == [2]


async def test_dispose_cancels_and_drops_late_results():
    fetch = SlowFetch()
    published = []
    refresher = Refresher(fetch, published.append)
    task = refresher.trigger()
    await asyncio.sleep(0)
    await refresher.dispose()
    assert task.cancelled()
    assert refresher.trigger() is None
    assert not await refresher.run()
    assert published == []


async def test_none_result_is_not_published():
    published = []

    async def fetch():
        return None

    refresher = Refresher(fetch, published.append)
    assert not await refresher.run()
    assert published == []


async def test_failed_run_is_logged_not_raised(caplog):
    async def fetch():
        raise ValueError("bad fetch")

    refresher = Refresher(fetch, lambda result: None, name="broken")
    refresher.trigger()
    await refresher.wait()
    assert refresher.pending() == []
    assert "broken failed" in caplog.text
