"""Text renderings of parsed nodes and live meters."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING

from .nodes import AstNode, MasterNode, Ramp, SynthNode, Transition

if TYPE_CHECKING:
    from .orchestrator import Orchestrator, VuLevels

_LOGGER = logging.getLogger("syno.display")

VU_CHARS = "▉▆▅▄▃▂▁█"
VU_BLANK = "  "
MAX_TIMERS = 6

UpdateCallback = Callable[[str, str], None]


def _number(value: float) -> str:
    return f"{value:g}"


def format_ramp(value: Ramp) -> str:
    if not isinstance(value, Transition):
        return _number(value)
    points = [value.start, value.end] if value.middle is None else [value.start, value.middle, value.end]
    return ">".join(_number(point) for point in points) + f"'{_number(value.duration)}"


def format_node(node: AstNode) -> str:
    if isinstance(node, MasterNode):
        return f"master v{_number(node.volume)}"
    return _format_synth(node)


def _format_synth(node: SynthNode) -> str:
    parts: list[str] = []
    if node.capture is not None:
        parts.append(f"{node.capture}=")
    if node.start_time:
        parts.append(_number(node.start_time))
    parts.extend(f"{{{_format_synth(child)}}}" for child in node.recursion)
    if node.buffer is not None:
        parts.append(node.buffer)
    else:
        parts.append(node.tag)
        if node.freq is not None:
            parts.append(format_ramp(node.freq))
    parts.append(f"v{format_ramp(node.volume)}")
    parts.append(f"p{format_ramp(node.pan)}")
    if node.chop is not None:
        parts.append(f"h{_number(node.chop)}")
    if node.reverb is not None:
        parts.append(f"r{_number(node.reverb)}")
    if node.filter is not None:
        parts.append(f"f{format_ramp(node.filter)}")
    if node.glissando is not None:
        parts.append(f"\\{format_ramp(node.glissando)}")
    if node.envelope is not None:
        parts.append(f"e{node.envelope}")
    return "".join(parts)


def format_nodes(nodes: Iterable[AstNode]) -> str:
    return " ".join(format_node(node) for node in nodes)


def _vu_char(value: float) -> str:
    if value <= 0:
        return " "
    index = int(value * (len(VU_CHARS) - 1) // 9)
    return VU_CHARS[min(index, len(VU_CHARS) - 1)]


def format_vu(levels: VuLevels) -> str:
    return _vu_char(levels.left) + _vu_char(levels.right)


def format_timers(timers: Sequence[int]) -> str:
    return " ".join(str(timer) for timer in timers[:MAX_TIMERS])


def start_updating(
    orchestrator: Orchestrator,
    on_update: UpdateCallback,
    *,
    interval: float = 0.1,
) -> Callable[[], None]:
    """Poll meters on a daemon thread until the session's graph empties.

    ``on_update(meter, timers)`` receives the rendered strings. The returned
    callable stops polling and blanks the display.
    """
    stop = threading.Event()

    def _run() -> None:
        while not stop.is_set():
            if not orchestrator.active_graph:
                break
            try:
                on_update(format_vu(orchestrator.get_vu_levels()), format_timers(orchestrator.get_timers()))
            except Exception as exc:
                _LOGGER.warning("Meter update failed: %s", exc, exc_info=True)
                break
            stop.wait(interval)
        on_update(VU_BLANK, "")

    thread = threading.Thread(target=_run, name="syno-meter", daemon=True)
    thread.start()

    def cancel() -> None:
        stop.set()
        if thread is not threading.current_thread():
            thread.join(timeout=max(interval * 2, 0.2))

    return cancel
