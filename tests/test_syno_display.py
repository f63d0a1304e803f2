import threading

import pytest

from syno.display import (
    VU_BLANK,
    format_node,
    format_nodes,
    format_ramp,
    format_timers,
    format_vu,
    start_updating,
)
from syno.nodes import MasterNode, Transition
from syno.orchestrator import VuLevels
from syno.parser import parse


def test_format_node_includes_resolved_defaults() -> None:
    assert format_node(parse("s")[0]) == "b0=s440v5p0e0155"
    assert format_node(MasterNode(volume=5)) == "master v5"


def test_format_ramp() -> None:
    assert format_ramp(Transition(start=2, end=8, duration=3)) == "2>8'3"
    assert format_ramp(Transition(start=1, middle=5, end=2, duration=0.5)) == "1>5>2'0.5"
    assert format_ramp(0.25) == "0.25"


@pytest.mark.parametrize(
    "text",
    [
        "{s5v1}a110v2>8'3p-0.5h2r1f4e1234",
        "b2=3q220 b2\\1>0.5'2",
        "{{b4}n3}s?",
    ],
)
def test_formatted_nodes_parse_back_to_the_same_nodes(text: str) -> None:
    nodes = parse(text)
    assert parse(format_nodes(nodes)) == nodes


def test_format_vu_maps_levels_to_block_characters() -> None:
    assert format_vu(VuLevels()) == VU_BLANK
    assert format_vu(VuLevels(left=9.0, right=0.5)) == "█▉"
    assert format_vu(VuLevels(left=36.0, right=0.0)) == "█ "


def test_format_timers_shows_first_six() -> None:
    assert format_timers([1, 2, 3, 4, 5, 6, 7]) == "1 2 3 4 5 6"
    assert format_timers([]) == ""


class _FakeOrchestrator:
    def __init__(self, polls: int) -> None:
        self._polls = polls

    @property
    def active_graph(self) -> tuple[object, ...]:
        self._polls -= 1
        return (object(),) if self._polls >= 0 else ()

    def get_vu_levels(self) -> VuLevels:
        return VuLevels(left=9.0, right=9.0)

    def get_timers(self) -> list[int]:
        return [1]


def test_start_updating_stops_when_the_graph_empties() -> None:
    updates: list[tuple[str, str]] = []
    finished = threading.Event()

    def _on_update(meter: str, timers: str) -> None:
        updates.append((meter, timers))
        if meter == VU_BLANK:
            finished.set()

    cancel = start_updating(_FakeOrchestrator(polls=2), _on_update, interval=0.01)  # type: ignore[arg-type]

    assert finished.wait(timeout=2.0)
    cancel()
    assert updates[0] == ("██", "1")
    assert updates[-1] == (VU_BLANK, "")
    assert len(updates) == 3
