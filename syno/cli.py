from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from rich.console import Console
from rich.live import Live
from rich.text import Text

from .audio import write_wav
from .config import EngineConfig
from .display import format_node, start_updating
from .errors import InvalidScriptError
from .logging_utils import configure_logging, debug_enabled, log_exception
from .nodes import AstNode
from .orchestrator import Orchestrator, render, session_length
from .parser import parse_script

_LOGGER = logging.getLogger("syno.cli")
_CONSOLE = Console()
_ERR_CONSOLE = Console(stderr=True)


def _read_script(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    try:
        return Path(source).read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidScriptError(f"cannot read script {source!r}: {exc}") from exc


def _load_nodes(source: str) -> list[AstNode]:
    result = parse_script(_read_script(source))
    for error in result.errors:
        _ERR_CONSOLE.print(f"[yellow]skipped:[/yellow] {error}")
    return result.nodes


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="syno", description="Live-coding synth notation.")
    sub = parser.add_subparsers(dest="command", required=True)

    parse_cmd = sub.add_parser("parse", help="Print the canonical form of a script.")
    parse_cmd.add_argument("script", help="Script file, or - for stdin.")

    play = sub.add_parser("play", help="Play a script on the default audio device.")
    play.add_argument("script", help="Script file, or - for stdin.")
    play.add_argument("--seconds", type=float, default=None)

    render_cmd = sub.add_parser("render", help="Render a script to a wav file.")
    render_cmd.add_argument("script", help="Script file, or - for stdin.")
    render_cmd.add_argument("--output", type=str, required=True)
    render_cmd.add_argument("--seconds", type=float, default=None)
    return parser


def _parse(args: argparse.Namespace) -> int:
    result = parse_script(_read_script(args.script))
    for node in result.nodes:
        _CONSOLE.print(format_node(node), markup=False, highlight=False)
    for error in result.errors:
        _ERR_CONSOLE.print(f"[red]error:[/red] {error}")
    return 0 if result.ok else 1


def _play(args: argparse.Namespace, config: EngineConfig) -> int:
    nodes = _load_nodes(args.script)
    seconds = args.seconds if args.seconds is not None else session_length(nodes, config)
    if seconds <= 0:
        _CONSOLE.print("Nothing to play.")
        return 0
    orchestrator = Orchestrator(config=config)
    try:
        with Live(Text(""), console=_CONSOLE, transient=True) as live:

            def _on_update(meter: str, timers: str) -> None:
                live.update(Text(f"{meter} {timers}".rstrip()))

            orchestrator.play(nodes)
            cancel = start_updating(orchestrator, _on_update)
            try:
                deadline = time.monotonic() + seconds
                while time.monotonic() < deadline:
                    time.sleep(0.05)
            except KeyboardInterrupt:
                _LOGGER.info("Interrupted")
            finally:
                orchestrator.stop()
                cancel()
    finally:
        orchestrator.cleanup()
    return 0


def _render(args: argparse.Namespace, config: EngineConfig) -> int:
    nodes = _load_nodes(args.script)
    with _CONSOLE.status("Rendering"):
        audio = render(nodes, args.seconds, config=config)
    if audio.shape[0] == 0:
        _CONSOLE.print("Nothing to render.")
        return 0
    path = write_wav(args.output, audio, sample_rate=config.sample_rate)
    _CONSOLE.print(f"Wrote {audio.shape[0] / config.sample_rate:.2f}s to {path} (sr={config.sample_rate})")
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.command == "parse":
            return _parse(args)

        config = EngineConfig.from_env()
        if args.command == "play":
            return _play(args, config)
        if args.command == "render":
            return _render(args, config)

        parser.print_help()
        return 1
    except Exception as exc:
        _LOGGER.warning("syno CLI failed: %s", exc, exc_info=debug_enabled())
        log_exception("syno CLI", exc)
        _ERR_CONSOLE.print(f"[red]syno failed:[/red] {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
