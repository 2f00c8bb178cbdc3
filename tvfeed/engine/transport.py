"""WebSocket transport for the quote feed."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Final

import websockets
from loguru import logger
from pyee import EventEmitter

DEFAULT_URL: Final = "wss://data.tradingview.com/socket.io/websocket"
DEFAULT_ORIGIN: Final = "https://data.tradingview.com"


@dataclass(slots=True)
class WebSocketTransport:
    """Single-use duplex channel over one WebSocket connection.

    open() starts the connection in a background task. Events fire from that
    task: "open" after the WebSocket handshake, "message" (raw) for every
    inbound message in order, "close" exactly once when the connection ends
    for any reason.

    send() never blocks: frames go into an outbox drained in order by a writer
    task, so callers inside event handlers can fire and forget.
    """

    url: str = DEFAULT_URL
    origin: str | None = DEFAULT_ORIGIN

    # upper bound for the WebSocket handshake itself (the feed applies its own, shorter, timeout)
    openTimeout: float = 10

    events: EventEmitter = field(default_factory=EventEmitter)

    # active websocket connection (if any)
    activeWS: Any | None = None

    outbox: asyncio.Queue[bytes] = field(default_factory=asyncio.Queue)
    task: asyncio.Task | None = None

    def open(self) -> None:
        assert self.task is None, "Transport is single-use and was already opened"
        self.task = asyncio.create_task(self.run(), name=f"transport {self.url}")

    def isOpen(self) -> bool:
        return self.activeWS is not None

    def send(self, data: bytes) -> None:
        self.outbox.put_nowait(data)

    async def close(self) -> None:
        task, self.task = self.task, None
        if task is None or task.done():
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        logger.info("[Transport] Connecting to: {}", self.url)

        try:
            async with websockets.connect(
                self.url,
                origin=self.origin,
                open_timeout=self.openTimeout,
                close_timeout=1,
                # the feed runs its own ~h~ keepalive protocol
                ping_interval=None,
                # initial symbol snapshots can be large
                max_size=None,
            ) as ws:
                self.activeWS = ws
                logger.info("[Transport :: {}] Connected!", self.url)
                self.events.emit("open")

                writer = asyncio.create_task(self.writer(ws))
                try:
                    async for msg in ws:
                        try:
                            self.events.emit("message", msg)
                        except Exception:
                            # one bad handler run must not kill the connection
                            logger.exception("[Transport :: {}] Message handler failed", self.url)
                finally:
                    writer.cancel()
                    try:
                        await writer
                    except asyncio.CancelledError:
                        pass

                logger.warning("[Transport :: {}] Server closed the connection", self.url)
        except websockets.ConnectionClosed as e:
            logger.error("[Transport :: {}] Connection dropped: {}", self.url, e)
        except (OSError, TimeoutError, websockets.WebSocketException) as e:
            logger.error("[Transport :: {}] Connection failed: {}", self.url, e)
        finally:
            self.activeWS = None
            self.events.emit("close")

    async def writer(self, ws) -> None:
        while True:
            data = await self.outbox.get()
            try:
                # the feed expects text frames
                await ws.send(data.decode())
            except websockets.ConnectionClosed:
                logger.warning("[Transport :: {}] Send after close dropped", self.url)
                return
            except Exception:
                # without a writer nothing more can go out, so end the connection
                logger.exception("[Transport :: {}] Send failed, closing connection", self.url)
                await ws.close()
                return
