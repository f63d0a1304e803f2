import threading
import time

import numpy as np
import pytest

from syno.engine import ConvolverNode, OfflineContext, RealtimeContext
from syno.processors import RecurringTimer, apply_chop, apply_reverb, chop_period, reverb_impulse


@pytest.mark.parametrize(
    ("rate", "period"),
    [(0.0, 0.1), (4.5, 0.5), (9.0, 0.9), (20.0, 0.9), (-3.0, 0.1)],
)
def test_chop_period_stays_in_range(rate: float, period: float) -> None:
    assert chop_period(rate) == pytest.approx(period)


def test_offline_chop_schedules_every_toggle_up_front() -> None:
    context = OfflineContext(1.0, sample_rate=1000, block_size=100)
    osc = context.create_oscillator("sine", 10.0)

    stage = apply_chop(context, osc, 0.0, 0.0)

    assert stage.timer is None
    assert stage.period == pytest.approx(0.1)
    gate = stage.gain.gain.automation(np.array([0.02, 0.07, 0.12, 0.17, 0.92, 0.97]))
    assert np.allclose(gate, [1.0, 0.0, 1.0, 0.0, 1.0, 0.0])


def test_offline_chop_respects_until() -> None:
    context = OfflineContext(2.0, sample_rate=1000, block_size=100)
    osc = context.create_oscillator("sine", 10.0)

    stage = apply_chop(context, osc, 9.0, 0.5, until=1.0)

    times = [event.time for event in stage.gain.gain.events]
    assert min(times) == pytest.approx(0.5)
    assert max(times) <= 0.5 + 0.9 + 1e-9


def test_realtime_chop_arms_a_timer_until_cancelled() -> None:
    context = RealtimeContext(sample_rate=8000, block_size=64)
    osc = context.create_oscillator("sine", 10.0)

    stage = apply_chop(context, osc, 0.0, 0.0, lookahead=3)

    assert stage.timer is not None
    assert len(stage.gain.gain.events) >= 9
    stage.cancel()
    assert stage.timer is None


def test_recurring_timer_ticks_until_cancelled() -> None:
    ticks: list[int] = []
    done = threading.Event()

    def _tick() -> None:
        ticks.append(1)
        if len(ticks) >= 2:
            done.set()

    timer = RecurringTimer(0.01, _tick)
    timer.start()
    assert done.wait(timeout=2.0)
    timer.cancel()
    assert not timer.active
    count = len(ticks)
    time.sleep(0.05)
    assert len(ticks) == count


def test_recurring_timer_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        RecurringTimer(0.0, lambda: None)


def test_reverb_impulse_decays() -> None:
    impulse = reverb_impulse(1000, 2.0, np.random.default_rng(0))
    assert impulse.shape == (2, 2000)
    assert np.max(np.abs(impulse)) <= 1.0
    head = float(np.mean(np.abs(impulse[:, :200])))
    tail = float(np.mean(np.abs(impulse[:, -200:])))
    assert tail < head * 0.1


def test_zero_decay_impulse_is_a_single_frame() -> None:
    assert reverb_impulse(1000, 0.0, np.random.default_rng(0)).shape == (2, 1)


def test_apply_reverb_returns_connected_convolver() -> None:
    context = OfflineContext(0.5, sample_rate=1000, block_size=100)
    osc = context.create_oscillator("sine", 10.0)

    convolver = apply_reverb(context, osc, 0.3, rng=np.random.default_rng(0))

    assert isinstance(convolver, ConvolverNode)
    assert osc.connected
