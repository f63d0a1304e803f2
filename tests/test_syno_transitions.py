import pytest

from syno.nodes import SynthNode, Transition
from syno.parser import parse
from syno.transitions import TransitionManager


class _RecordingParam:
    def __init__(self) -> None:
        self.value = 0.0
        self.calls: list[tuple[str, float, float]] = []

    def set_value_at_time(self, value: float, time: float) -> None:
        self.calls.append(("set", value, time))

    def linear_ramp_to_value_at_time(self, value: float, time: float) -> None:
        self.calls.append(("ramp", value, time))

    def cancel_scheduled_values(self, time: float) -> None:
        self.calls.append(("cancel", 0.0, time))


def test_two_point_schedule_from_parsed_volume() -> None:
    node = parse("sv2>8'3")[0]
    assert isinstance(node, SynthNode)
    volume = node.volume
    assert isinstance(volume, Transition)

    param = _RecordingParam()
    manager = TransitionManager()
    manager.schedule(param, volume.start / 9, volume.end / 9, volume.duration, 1.0)

    assert param.calls == [
        ("set", pytest.approx(2 / 9), 1.0),
        ("ramp", pytest.approx(8 / 9), 4.0),
    ]
    assert len(manager) == 1


def test_three_point_schedule_splits_duration() -> None:
    param = _RecordingParam()
    TransitionManager().schedule(param, 0.0, 1.0, 4.0, 2.0, middle=0.5)
    assert param.calls == [("set", 0.0, 2.0), ("ramp", 0.5, 4.0), ("ramp", 1.0, 6.0)]


def test_active_timers_prune_finished_entries() -> None:
    manager = TransitionManager()
    manager.schedule(_RecordingParam(), 0, 1, 3.0, 0.0)
    manager.schedule(_RecordingParam(), 0, 1, 2.0, 5.0)

    assert manager.get_active_timers(1.5) == [1, -4]
    assert manager.get_active_timers(3.2) == [-2]
    assert len(manager) == 1
    assert manager.get_active_timers(10.0) == []


def test_clear_drops_everything() -> None:
    manager = TransitionManager()
    manager.schedule(_RecordingParam(), 0, 1, 3.0, 0.0)
    manager.clear()
    assert manager.get_active_timers(0.5) == []


def test_non_positive_duration_is_rejected() -> None:
    with pytest.raises(ValueError):
        TransitionManager().schedule(_RecordingParam(), 0, 1, 0.0, 0.0)
