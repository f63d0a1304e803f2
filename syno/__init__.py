from __future__ import annotations

from .audio import SAMPLE_RATE, write_wav
from .backend import AudioBackend, OfflineBackend
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .defaults import DEFAULT_REGISTRY, Registry
from .display import format_node, format_nodes, format_timers, format_vu, start_updating
from .engine import AudioBuffer, OfflineContext, RealtimeContext
from .errors import (
    BackendStateError,
    BufferNotFoundError,
    GrammarError,
    InvalidConfigError,
    InvalidScriptError,
    PlaybackError,
    SynoError,
    UnknownGeneratorError,
)
from .generators import create_node
from .logging_utils import configure_logging as _configure_logging
from .nodes import AstNode, MasterNode, SynthNode, Transition
from .orchestrator import Orchestrator, VuLevels, render, session_length
from .parser import ParseResult, Parser, parse, parse_script
from .processors import apply_chop, apply_reverb
from .transitions import TransitionManager

__all__ = [
    "SAMPLE_RATE",
    "DEFAULT_ENGINE_CONFIG",
    "DEFAULT_REGISTRY",
    "AstNode",
    "AudioBackend",
    "AudioBuffer",
    "BackendStateError",
    "BufferNotFoundError",
    "EngineConfig",
    "GrammarError",
    "InvalidConfigError",
    "InvalidScriptError",
    "MasterNode",
    "OfflineBackend",
    "OfflineContext",
    "Orchestrator",
    "ParseResult",
    "Parser",
    "PlaybackError",
    "RealtimeContext",
    "Registry",
    "SynoError",
    "SynthNode",
    "Transition",
    "TransitionManager",
    "UnknownGeneratorError",
    "VuLevels",
    "apply_chop",
    "apply_reverb",
    "create_node",
    "format_node",
    "format_nodes",
    "format_timers",
    "format_vu",
    "parse",
    "parse_script",
    "render",
    "session_length",
    "start_updating",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
