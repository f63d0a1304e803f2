from __future__ import annotations


class SynoError(Exception):
    """Base error for the syno library."""


class GrammarError(SynoError):
    """Raised when a token matches none of the notation's shapes."""

    def __init__(self, token: str, position: int, reason: str) -> None:
        super().__init__(f"invalid token {token!r} at {position}: {reason}")
        self.token = token
        self.position = position
        self.reason = reason


class UnknownGeneratorError(SynoError):
    """Raised when a token has a generator shape but an unsupported tag."""

    def __init__(self, tag: str, token: str = "") -> None:
        super().__init__(f"unknown generator {tag!r}" + (f" in {token!r}" if token else ""))
        self.tag = tag
        self.token = token


class BufferNotFoundError(SynoError):
    """Raised when a node reads a buffer slot that was never captured."""

    def __init__(self, slot: str) -> None:
        super().__init__(f"buffer slot {slot!r} has not been captured")
        self.slot = slot


class BackendStateError(SynoError):
    """Raised when the audio backend cannot reach the running state."""


class PlaybackError(BackendStateError):
    """Raised when no audio output device can be opened."""


class InvalidConfigError(SynoError):
    """Raised when engine settings cannot be parsed or validated."""


class InvalidScriptError(SynoError):
    """Raised when a script source cannot be read."""
