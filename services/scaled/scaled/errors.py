from __future__ import annotations
from typing import Optional


class ScaleError(Exception):
    """Base class for scale reader errors."""


class UserCancelled(ScaleError):
    """No serial port was selected; the connect attempt is aborted."""


class OpenFailed(ScaleError):
    """A port could not be opened with a given serial configuration."""


class ProbeExhausted(ScaleError):
    """No candidate configuration produced enough valid readings."""


class DecodeRejected(ScaleError):
    """A line matched no grammar or decoded to an out-of-range weight."""

    def __init__(self, line: str, reason: str, weight: Optional[float] = None) -> None:
        self.line = line
        self.reason = reason
        self.weight = weight
        super().__init__(f"{reason}: {line!r}")


class StreamFault(ScaleError):
    """The transport failed mid-read (framing/parity/break or device loss)."""


class WriteFailed(ScaleError):
    """Writing to the transport failed."""
