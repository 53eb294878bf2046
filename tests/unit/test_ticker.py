import pytest
import asyncio
from price_intel.scheduler.ticker import CancellationToken, Ticker


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        Ticker(0)


def test_first_tick_is_due_immediately():
    clock = FakeClock()
    ticker = Ticker(60, clock=clock)
    ticker.start()

    assert ticker.next_deadline == 1000.0
    assert ticker.seconds_until_next() == 0.0


def test_advance_keeps_fixed_rate():
    clock = FakeClock()
    ticker = Ticker(60, clock=clock)
    ticker.start()

    clock.now += 5  # tick took 5s
    assert ticker.advance() == 0
    assert ticker.next_deadline == 1060.0
    assert ticker.seconds_until_next() == pytest.approx(55.0)


def test_advance_skips_missed_deadlines():
    clock = FakeClock()
    ticker = Ticker(60, clock=clock)
    ticker.start()

    clock.now += 150  # overran 1060 and 1120
    assert ticker.advance() == 2
    assert ticker.next_deadline == 1180.0


def test_advance_requires_start():
    with pytest.raises(RuntimeError):
        Ticker(60).advance()


def test_reschedule_anchors_to_last_tick():
    clock = FakeClock()
    ticker = Ticker(60, clock=clock)
    ticker.start()
    ticker.mark_tick()
    ticker.advance()

    ticker.reschedule(10)

    assert ticker.interval == 10
    assert ticker.next_deadline == 1010.0


def test_reschedule_during_tick_applies_once():
    clock = FakeClock(now=0.0)
    ticker = Ticker(60, clock=clock)
    ticker.start()
    ticker.mark_tick()

    clock.now = 1.0
    ticker.reschedule(10)
    clock.now = 2.0  # tick finishes

    assert ticker.advance() == 0
    assert ticker.next_deadline == 10.0

    ticker.mark_tick()
    clock.now = 11.0
    ticker.advance()
    assert ticker.next_deadline == 20.0


def test_cancellation_token():
    token = CancellationToken()
    assert not token.cancelled
    token.cancel()
    assert token.cancelled


@pytest.mark.asyncio
async def test_wait_returns_false_when_cancelled():
    ticker = Ticker(60)
    ticker.start()
    ticker.advance()
    token = CancellationToken()

    waiter = asyncio.create_task(ticker.wait(token))
    await asyncio.sleep(0.01)
    token.cancel()

    assert await asyncio.wait_for(waiter, timeout=1) is False


@pytest.mark.asyncio
async def test_wait_wakes_on_reschedule():
    ticker = Ticker(60)
    ticker.start()
    ticker.mark_tick()
    ticker.advance()
    token = CancellationToken()

    waiter = asyncio.create_task(ticker.wait(token))
    await asyncio.sleep(0.01)
    ticker.reschedule(0.01)

    assert await asyncio.wait_for(waiter, timeout=1) is True


@pytest.mark.asyncio
async def test_wait_returns_immediately_when_due():
    ticker = Ticker(60)
    assert await ticker.wait(CancellationToken()) is True
