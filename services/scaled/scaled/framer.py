from __future__ import annotations
import codecs
import logging
from typing import List

logger = logging.getLogger(__name__)

MAX_BUFFER_CHARS = 500


class LineFramer:
    """
    Turns raw serial chunks into text lines.

    Bytes are decoded leniently (bad sequences become U+FFFD), appended to a
    buffer and split on '\\n'. A buffer that grows past MAX_BUFFER_CHARS
    without a newline is thrown away, which is what a misconfigured link
    tends to produce.
    """

    def __init__(self, max_chars: int = MAX_BUFFER_CHARS) -> None:
        self.max_chars = max_chars
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer += self._decoder.decode(chunk)
        lines: List[str] = []
        idx = self._buffer.find("\n")
        while idx != -1:
            line = self._buffer[:idx]
            self._buffer = self._buffer[idx + 1 :]
            if line.strip():
                lines.append(line)
            idx = self._buffer.find("\n")
        if len(self._buffer) > self.max_chars:
            logger.debug(f"Discarding {len(self._buffer)} unterminated chars")
            self._buffer = ""
        return lines
