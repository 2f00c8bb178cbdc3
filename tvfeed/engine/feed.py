"""Quote feed session manager.

Owns the transport, runs the handshake (auth, quote session creation, field
selection), keeps the symbol subscription set in sync with the server, echoes
keepalives, and turns `qsd` frames into QuoteUpdate events.

Everything runs on one asyncio loop: inbound frames are dispatched
synchronously from the transport's message event in arrival order, and every
outbound frame is queued on the transport without waiting.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, NamedTuple

from loguru import logger
from pyee.asyncio import AsyncIOEventEmitter

from tvfeed.engine import framing
from tvfeed.engine.defaults import DEFAULT_QUOTE_FIELDS
from tvfeed.engine.errors import (
    ConnectTimeout,
    FeedClosed,
    FeedError,
    SessionTimeout,
)
from tvfeed.engine.protocols import Transport
from tvfeed.engine.session import SessionState, generateQuoteSessionId
from tvfeed.engine.transport import WebSocketTransport

if TYPE_CHECKING:
    from tvfeed.helpers import FeedSettings


DEFAULT_TIMEOUT: Final = 3.0

# extra argument the server wants on every quote_add_symbols call
ADD_SYMBOL_FLAGS: Final = {"flags": ["force_permission"]}

# server-side complaints worth surfacing even though we otherwise ignore them
SERVER_ERRORS: Final = frozenset({"protocol_error", "critical_error"})


class FeedStatus(enum.Enum):
    DISCONNECTED = "disconnected"
    AWAITING_TRANSPORT = "awaiting transport"
    AWAITING_HANDSHAKE = "awaiting handshake"
    READY = "ready"


class QuoteUpdate(NamedTuple):
    symbol: str
    status: str
    values: dict[str, Any]


@dataclass(eq=False)
class QuoteFeed:
    """Client for one quote session over one transport.

    Listen for updates with either:
        @feed.events.on("data")
        def onQuote(symbol, status, values): ...
    or:
        async for update in feed.updates(): ...

    Symbols may be registered at any time. Before the session is ready they
    are only recorded, then sent as part of the handshake.
    """

    # builds a fresh transport for every connect()
    transportFactory: Callable[[], Transport] = WebSocketTransport

    # sent with quote_set_fields on every new session
    fields: Sequence[str] = DEFAULT_QUOTE_FIELDS

    # bound for each of the two connect() wait phases (seconds)
    timeout: float = DEFAULT_TIMEOUT

    state: SessionState = field(default_factory=SessionState)
    status: FeedStatus = FeedStatus.DISCONNECTED
    transport: Transport | None = None

    # "data" (symbol, status, values) per update, "framing_error" (FramingError) per dropped frame
    events: AsyncIOEventEmitter = field(default_factory=AsyncIOEventEmitter)

    # set exactly once per connection by the handshake dispatch
    ready: asyncio.Event = field(default_factory=asyncio.Event)

    # set when the connection goes away so pending connect() waits fail fast
    aborted: asyncio.Event = field(default_factory=asyncio.Event)

    # queues feeding active updates() iterators
    listeners: list[asyncio.Queue] = field(default_factory=list)

    def __post_init__(self) -> None:
        # without an "error" listener the emitter re-raises a failing handler
        # straight into frame dispatch
        self.events.on("error", self.onListenerError)

    @classmethod
    def fromSettings(cls, settings: FeedSettings) -> QuoteFeed:
        feed = cls(
            transportFactory=lambda: WebSocketTransport(
                url=settings.url, origin=settings.origin
            ),
            fields=settings.fields,
            timeout=settings.timeout,
        )
        feed.setAuthToken(settings.authToken)
        return feed

    async def __aenter__(self) -> QuoteFeed:
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.disconnect()

    @property
    def quoteSessionId(self) -> str | None:
        return self.state.quoteSessionId

    @property
    def subscriptions(self) -> set[str]:
        return set(self.state.subscriptions)

    @property
    def isReady(self) -> bool:
        return self.status == FeedStatus.READY

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def connect(self, timeout: float | None = None) -> None:
        """Open the transport and wait until our quote session exists.

        Raises ConnectTimeout if the transport doesn't open in time,
        SessionTimeout if the server never sends its handshake, and FeedClosed
        if disconnect() (or a dropped connection) interrupts the wait.
        """
        if self.status != FeedStatus.DISCONNECTED:
            raise FeedError(f"Can't connect, feed is already {self.status.value}")

        timeout = self.timeout if timeout is None else timeout

        self.state.quoteSessionId = None
        self.ready = asyncio.Event()
        self.aborted = asyncio.Event()

        transport = self.transportFactory()
        self.transport = transport
        transport.events.on("message", self.onMessage)
        transport.events.on("close", self.onTransportClose)
        self.status = FeedStatus.AWAITING_TRANSPORT

        try:
            await self.transportReady(transport, timeout)
            await self.waitFor(
                self.ready,
                timeout,
                SessionTimeout(f"No session handshake within {timeout:,.2f} seconds"),
            )
        except BaseException:
            # after a disconnect() mid-wait, self.transport may belong to a newer connect()
            if self.transport is transport:
                self.reset()

            await transport.close()
            raise

        logger.info("[Feed] Quote session ready: {}", self.state.quoteSessionId)

    async def disconnect(self) -> None:
        """Close the transport and forget the session. Safe to call anytime."""
        if self.transport is None:
            return

        logger.info("[Feed] Disconnecting session {}", self.state.quoteSessionId)
        await self.teardown()

    async def registerSymbol(self, symbol: str) -> None:
        if symbol in self.state.subscriptions:
            return

        self.state.subscriptions.add(symbol)

        if self.isReady:
            self.addQuoteSymbol(symbol)
        else:
            logger.info("[Feed] Holding {} until the quote session is ready", symbol)

    async def unregisterSymbol(self, symbol: str) -> None:
        if symbol not in self.state.subscriptions:
            return

        self.state.subscriptions.discard(symbol)

        if self.isReady:
            self.removeQuoteSymbol(symbol)

    def setAuthToken(self, token: str) -> None:
        """Set the token sent during the handshake (only read at connect time)."""
        if self.status != FeedStatus.DISCONNECTED:
            logger.warning("[Feed] New auth token only applies on the next connect()")

        self.state.authToken = token

    def updates(self) -> AsyncIterator[QuoteUpdate]:
        """Iterate quote updates in arrival order until the feed disconnects.

        Updates are buffered from the moment this is called, not from the
        first read.
        """
        queue: asyncio.Queue[QuoteUpdate | None] = asyncio.Queue()
        self.listeners.append(queue)
        return self.drain(queue)

    async def drain(self, queue: asyncio.Queue) -> AsyncIterator[QuoteUpdate]:
        try:
            while (update := await queue.get()) is not None:
                yield update
        finally:
            # reset() already dropped it if the feed disconnected
            if queue in self.listeners:
                self.listeners.remove(queue)

    # ------------------------------------------------------------------
    # Connection phases
    # ------------------------------------------------------------------

    async def transportReady(self, transport: Transport, timeout: float) -> None:
        opened = asyncio.Event()

        def onOpen():
            # status moves here (not after the await) because the handshake
            # frame can be dispatched before connect() resumes
            if self.status == FeedStatus.AWAITING_TRANSPORT:
                self.status = FeedStatus.AWAITING_HANDSHAKE

            opened.set()

        transport.events.on("open", onOpen)
        try:
            transport.open()
            if transport.isOpen():
                onOpen()

            await self.waitFor(
                opened,
                timeout,
                ConnectTimeout(f"Transport did not open within {timeout:,.2f} seconds"),
            )
        finally:
            transport.events.remove_listener("open", onOpen)

    async def waitFor(
        self, signal: asyncio.Event, timeout: float, timeoutError: FeedError
    ) -> None:
        """Wait for `signal`, failing on timeout or if the feed is torn down."""
        aborted = self.aborted
        waiters = [
            asyncio.ensure_future(signal.wait()),
            asyncio.ensure_future(aborted.wait()),
        ]

        try:
            await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for w in waiters:
                w.cancel()

        if aborted.is_set():
            raise FeedClosed("Feed closed while connecting")

        if not signal.is_set():
            raise timeoutError

    def reset(self) -> Transport | None:
        """Detach from the transport and return to DISCONNECTED."""
        transport, self.transport = self.transport, None
        if transport is not None:
            transport.events.remove_listener("message", self.onMessage)
            transport.events.remove_listener("close", self.onTransportClose)

        self.state.reset()
        self.status = FeedStatus.DISCONNECTED
        self.aborted.set()

        # end every updates() iterator, including ones never read from
        listeners, self.listeners = self.listeners, []
        for queue in listeners:
            queue.put_nowait(None)

        return transport

    async def teardown(self) -> None:
        if transport := self.reset():
            await transport.close()

    def onListenerError(self, err: Exception) -> None:
        logger.opt(exception=err).error("[Feed] Update listener failed: {}", err)

    def onTransportClose(self) -> None:
        logger.warning(
            "[Feed] Transport closed unexpectedly ({})", self.status.value
        )
        self.reset()

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    def onMessage(self, raw: str | bytes) -> None:
        frames, errors = framing.decodeBatch(raw)

        for frame in frames:
            self.dispatch(frame)

        for err in errors:
            logger.warning("[Feed] Dropped undecodable data: {}", err)
            self.events.emit("framing_error", err)

    def dispatch(self, frame: framing.Frame) -> None:
        if frame.isKeepAlive:
            # answered regardless of session state or the server drops us
            self.send(framing.encodeKeepaliveEcho(frame.payload))  # type: ignore
            return

        payload: dict[str, Any] = frame.payload  # type: ignore

        if payload.get("session_id"):
            self.onHandshake(payload)
            return

        method = frame.method
        if method == "qsd":
            self.onQuoteData(frame.params)
        elif method in SERVER_ERRORS:
            logger.error("[Feed] Server reported {}: {}", method, frame.params)
        else:
            logger.trace("[Feed] Ignoring frame: {}", payload)

    def onHandshake(self, payload: dict[str, Any]) -> None:
        if self.state.quoteSessionId is not None:
            logger.warning(
                "[Feed] Ignoring repeated handshake (server session {})",
                payload["session_id"],
            )
            return

        logger.info("[Feed] Handshake received (server session {})", payload["session_id"])

        # the server only accepts session calls after a token is recorded
        self.call("set_auth_token", self.state.authToken)

        quoteSessionId = generateQuoteSessionId()
        self.call("quote_create_session", quoteSessionId)
        self.state.quoteSessionId = quoteSessionId

        self.call("quote_set_fields", quoteSessionId, *self.fields)

        for symbol in sorted(self.state.subscriptions):
            self.addQuoteSymbol(symbol)

        self.status = FeedStatus.READY
        self.ready.set()

    def onQuoteData(self, params: list[Any]) -> None:
        if len(params) < 2 or not isinstance(params[1], dict):
            return

        if self.state.quoteSessionId is None or params[0] != self.state.quoteSessionId:
            logger.trace("[Feed] Dropping data for stale session {}", params[0])
            return

        ticker = params[1]
        update = QuoteUpdate(ticker.get("n"), ticker.get("s"), ticker.get("v", {}))

        for queue in self.listeners:
            queue.put_nowait(update)

        self.events.emit("data", *update)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def addQuoteSymbol(self, symbol: str) -> None:
        self.call("quote_add_symbols", self.state.quoteSessionId, symbol, ADD_SYMBOL_FLAGS)

    def removeQuoteSymbol(self, symbol: str) -> None:
        self.call("quote_remove_symbols", self.state.quoteSessionId, symbol)

    def call(self, func: str, *args: Any) -> None:
        logger.debug("[Feed] -> {}", func)
        self.send(framing.encode(func, args))

    def send(self, data: bytes) -> None:
        if self.transport is None:
            logger.error("[Feed] Not connected, dropping outbound frame: {!r}", data[:80])
            return

        self.transport.send(data)
