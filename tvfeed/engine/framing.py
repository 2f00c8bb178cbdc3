"""Wire framing for the socket.io-derived quote feed protocol.

Every message on the wire is one or more frames laid end to end:

    ~m~<N>~m~<payload>

where N is the exact UTF-8 byte length of <payload>. A payload is either a
compact JSON object like {"m": "quote_add_symbols", "p": [...]} or a keepalive
probe "~h~<token>" which the client must echo back to keep the socket alive.

Nothing here holds state across calls.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Final, NamedTuple

import orjson
from loguru import logger

from tvfeed.engine.errors import FramingError

KEEPALIVE_MARK: Final = b"~h~"

# Only ever matched at the current read offset, never searched for.
HEADER: Final = re.compile(rb"~m~(\d+)~m~")


@dataclass(slots=True)
class Frame:
    """One decoded protocol unit.

    Keepalive frames carry the echo token as a str; data frames carry the
    parsed JSON object.
    """

    isKeepAlive: bool
    payload: str | dict[str, Any]

    @property
    def method(self) -> str | None:
        if self.isKeepAlive:
            return None

        return self.payload.get("m")  # type: ignore

    @property
    def params(self) -> list[Any]:
        if self.isKeepAlive:
            return []

        p = self.payload.get("p")  # type: ignore
        return p if isinstance(p, list) else []


class DecodedBatch(NamedTuple):
    frames: list[Frame]
    errors: list[FramingError]


def wrap(payload: bytes | str) -> bytes:
    """Prefix `payload` with its length header."""
    if isinstance(payload, str):
        payload = payload.encode()

    return b"~m~%d~m~%b" % (len(payload), payload)


def encode(func: str, args: Sequence[Any]) -> bytes:
    """Encode a remote call as a single frame."""
    return wrap(orjson.dumps({"m": func, "p": list(args)}))


def encodeKeepaliveEcho(token: str) -> bytes:
    """Encode the reply to a keepalive probe (not JSON, the raw ~h~ marker)."""
    return wrap(KEEPALIVE_MARK + token.encode())


def parseFrame(payload: bytes) -> Frame:
    """Interpret one already-delimited payload.

    Raises FramingError if the payload is neither a keepalive marker nor a
    JSON object.
    """
    if payload.startswith(KEEPALIVE_MARK):
        try:
            token = payload[len(KEEPALIVE_MARK) :].decode()
        except UnicodeDecodeError as e:
            raise FramingError(f"Keepalive token is not valid UTF-8: {e}", payload) from e

        return Frame(isKeepAlive=True, payload=token)

    try:
        parsed = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise FramingError(f"Unparseable frame payload: {e}", payload) from e

    if not isinstance(parsed, dict):
        raise FramingError(
            f"Frame payload is {type(parsed).__name__}, not a JSON object", payload
        )

    return Frame(isKeepAlive=False, payload=parsed)


def decodeBatch(raw: str | bytes) -> DecodedBatch:
    """Split one inbound message into frames.

    A payload that fails to parse only loses that frame since its header
    already told us where the next one starts. A header that is missing,
    corrupt, or claims more bytes than remain loses the rest of the message
    because there is no way to find the next boundary.
    """
    data = raw.encode() if isinstance(raw, str) else bytes(raw)

    frames: list[Frame] = []
    errors: list[FramingError] = []

    pos = 0
    end = len(data)
    while pos < end:
        header = HEADER.match(data, pos)
        if not header:
            errors.append(
                FramingError(f"Corrupt frame header at offset {pos}", data[pos:])
            )
            break

        start = header.end()
        length = int(header.group(1))
        stop = start + length
        if stop > end:
            errors.append(
                FramingError(
                    f"Frame length {length} overruns message ({end - start} bytes remain)",
                    data[pos:],
                )
            )
            break

        pos = stop
        try:
            frames.append(parseFrame(data[start:stop]))
        except FramingError as e:
            errors.append(e)

    return DecodedBatch(frames, errors)


def decode(raw: str | bytes) -> list[Frame]:
    """Decode a message, logging (and dropping) anything undecodable."""
    frames, errors = decodeBatch(raw)
    for err in errors:
        logger.warning("[Framing] Dropped undecodable data: {} :: {!r}", err, err.raw[:120])

    return frames
