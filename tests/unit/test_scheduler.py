"""Timer backend tests."""

import asyncio

import pytest

from payflow.scheduler import AsyncioScheduler, ManualScheduler, get_scheduler


def _recorder(log, label):
    async def _callback():
        log.append(label)

    return _callback


@pytest.mark.asyncio
async def test_manual_scheduler_fires_in_due_order():
    scheduler = ManualScheduler()
    fired = []
    scheduler.schedule("i1", "late", 3, _recorder(fired, "late"))
    scheduler.schedule("i1", "early", 1, _recorder(fired, "early"))
    scheduler.schedule("i2", "tick", 1, _recorder(fired, "tick"), repeat=True)

    assert await scheduler.advance(0.5) == 0
    assert await scheduler.advance(2.5) == 5
    # ties on due time fire in scheduling order
    assert fired == ["early", "tick", "tick", "late", "tick"]
    assert scheduler.now == 3.0
    assert [h.node_id for h in scheduler.pending()] == ["tick"]


@pytest.mark.asyncio
async def test_manual_scheduler_cancel():
    scheduler = ManualScheduler()
    fired = []
    scheduler.schedule("i1", "a", 1, _recorder(fired, "a"), repeat=True)
    scheduler.schedule("i1", "b", 1, _recorder(fired, "b"))
    scheduler.schedule("i2", "a", 1, _recorder(fired, "other"))

    assert scheduler.cancel("i1", "a") == 1
    assert scheduler.cancel("i1", "a") == 0
    assert scheduler.cancel_instance("i1") == 1
    await scheduler.advance(10)
    assert fired == ["other"]


@pytest.mark.asyncio
async def test_callback_may_cancel_its_own_timer():
    scheduler = ManualScheduler()
    fired = []

    async def _once():
        fired.append("x")
        scheduler.cancel("i1", "n")

    scheduler.schedule("i1", "n", 1, _once, repeat=True)
    assert await scheduler.advance(5) == 1
    assert fired == ["x"]


@pytest.mark.asyncio
async def test_zero_interval_repeat_fires_once():
    scheduler = ManualScheduler()
    fired = []
    scheduler.schedule("i1", "n", 0, _recorder(fired, "n"), repeat=True)
    assert await scheduler.run_due() == 1
    assert await scheduler.advance(3) == 0
    assert fired == ["n"]


@pytest.mark.asyncio
async def test_manual_scheduler_propagates_callback_errors():
    scheduler = ManualScheduler()

    async def _boom():
        raise RuntimeError("boom")

    scheduler.schedule("i1", "n", 0, _boom)
    with pytest.raises(RuntimeError):
        await scheduler.run_due()


@pytest.mark.asyncio
async def test_asyncio_scheduler_fires_and_repeats():
    scheduler = AsyncioScheduler(seconds_per_hour=0.01)
    fired = []
    scheduler.schedule("i1", "once", 1, _recorder(fired, "once"))
    scheduler.schedule("i1", "tick", 1, _recorder(fired, "tick"), repeat=True)

    await asyncio.sleep(0.055)
    await scheduler.shutdown()

    assert fired.count("once") == 1
    assert fired.count("tick") >= 2
    assert scheduler.pending() == []


@pytest.mark.asyncio
async def test_asyncio_scheduler_cancel_prevents_firing(caplog):
    scheduler = AsyncioScheduler(seconds_per_hour=0.01)
    fired = []

    async def _boom():
        raise RuntimeError("boom")

    handle = scheduler.schedule("i1", "n", 1, _recorder(fired, "n"))
    scheduler.schedule("i2", "n", 0, _boom)
    assert scheduler.cancel("i1", "n") == 1

    await asyncio.sleep(0.03)

    assert fired == []
    assert handle.cancelled
    assert handle.task.cancelled()
    assert "Timer timer failed for instance=i2" in caplog.text


def test_get_scheduler_backends(monkeypatch, tmp_path):
    monkeypatch.setenv("PAYFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("PAYFLOW_SCHEDULER", raising=False)
    assert isinstance(get_scheduler(), AsyncioScheduler)
    assert isinstance(get_scheduler("manual"), ManualScheduler)
    monkeypatch.setenv("PAYFLOW_SCHEDULER", "manual")
    assert isinstance(get_scheduler(), ManualScheduler)
    with pytest.raises(ValueError):
        get_scheduler("cron")
