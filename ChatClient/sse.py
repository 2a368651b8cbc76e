import codecs
import json
import logging
from typing import AsyncIterator

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "


class SSEDecoder:
    """Incremental framing for a ``text/event-stream`` body.

    Bytes are decoded as UTF-8 (multi-byte characters may straddle chunks) and
    buffered until a newline; each complete ``data: `` line is parsed as JSON.
    One decoder per request: it keeps the partial line between ``feed`` calls.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[dict]:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [event for event in (self._parse_line(line) for line in lines) if event is not None]

    # Flush whatever is left once the byte stream has ended
    def close(self) -> list[dict]:
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        event = self._parse_line(rest)
        return [event] if event is not None else []

    @staticmethod
    def _parse_line(line: str):
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        try:
            event = json.loads(line[len(DATA_PREFIX):])
        except json.JSONDecodeError:
            logger.debug("sse.skip: undecodable line")
            return None
        return event if isinstance(event, dict) else None


async def iter_sse_events(chunks: AsyncIterator[bytes]) -> AsyncIterator[dict]:
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.close():
        yield event
