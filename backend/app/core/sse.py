"""Event-stream framing for the chat relay.

Server side, every record is one of:

    data: <json string>\\n\\n                 token fragment
    event: done\\ndata: [DONE]\\n\\n           terminal record
    event: error\\ndata: <json string>\\n\\n   in-band failure

Fragments are always JSON-encoded, so a fragment containing newlines or the
literal terminator token can never be read as a control record.

Client side, `SSEDecoder` turns arbitrarily chunked bytes back into records.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass

SSE_MEDIA_TYPE = "text/event-stream"
DONE_TOKEN = "[DONE]"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    # Some proxies buffer unless explicitly disabled
    "X-Accel-Buffering": "no",
    "Vary": "Accept",
}

DONE_RECORD = f"event: done\ndata: {DONE_TOKEN}\n\n"


def format_delta(text: str) -> str:
    return f"data: {json.dumps(text, ensure_ascii=False)}\n\n"


def format_error(message: str) -> str:
    return f"event: error\ndata: {json.dumps(message, ensure_ascii=False)}\n\n"


@dataclass(frozen=True)
class SSERecord:
    data: str
    event: str | None = None

    @property
    def is_terminal(self) -> bool:
        # Both the tag and the token are required; a bare "[DONE]" is text.
        return self.event == "done" and self.data == DONE_TOKEN

    @property
    def is_error(self) -> bool:
        return self.event == "error"

    @property
    def text(self) -> str:
        """The JSON-decoded payload, or the raw data if it is not a JSON string."""
        try:
            value = json.loads(self.data)
        except ValueError:
            return self.data
        return value if isinstance(value, str) else self.data


def parse_record(raw: str) -> SSERecord | None:
    """Parse one blank-line-delimited record. Records without data are dropped."""
    event = None
    data_lines: list[str] = []
    for line in raw.split("\n"):
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)

    if not data_lines:
        return None
    return SSERecord(data="\n".join(data_lines), event=event)


class SSEDecoder:
    """Incremental record decoder.

    Complete records are removed from the buffer as soon as their separator
    arrives; a trailing partial record waits for the next chunk. The output
    does not depend on where the transport split the bytes.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[SSERecord]:
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        buffer = self._buffer + text
        # A trailing "\r" may be the first half of "\r\n"; wait for the next chunk
        held = ""
        if buffer.endswith("\r"):
            buffer, held = buffer[:-1], "\r"
        buffer = buffer.replace("\r\n", "\n").replace("\r", "\n")

        *complete, rest = buffer.split("\n\n")
        self._buffer = rest + held
        records = []
        for raw in complete:
            record = parse_record(raw)
            if record is not None:
                records.append(record)
        return records
