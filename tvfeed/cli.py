#!/usr/bin/env python3
"""Interactive quote watcher.

    tvfeed AAPL NASDAQ:MSFT

connects, subscribes the given symbols, prints every update, and accepts
commands (add/remove/list/show/token/quit) at the prompt. When stdin is not
a terminal (tvfeed AAPL < commands.txt) the commands are read one per line
instead.
"""

from __future__ import annotations

import asyncio
import os
import pathlib
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Final, TextIO

import whenever
from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory, ThreadedHistory
from prompt_toolkit.patch_stdout import patch_stdout

from tvfeed.completer import CommandCompleter
from tvfeed.engine.errors import FeedError
from tvfeed.engine.feed import QuoteFeed
from tvfeed.helpers import FeedSettings

HISTORY_FILE: Final = "~/.tvfeed_history"

# printed in this order when present in a symbol's merged quote
SUMMARY_FIELDS = ["lp", "ch", "chp", "bid", "ask", "volume"]


def fmtQuote(values: dict[str, Any]) -> str:
    parts = []
    for key in SUMMARY_FIELDS:
        val = values.get(key)
        if val is None:
            continue

        if key == "chp":
            parts.append(f"{key}={val:+.2f}%")
        elif key == "volume":
            parts.append(f"{key}={val:,.0f}")
        elif isinstance(val, float):
            parts.append(f"{key}={val:,.2f}")
        else:
            parts.append(f"{key}={val}")

    return " ".join(parts) or "(no price fields)"


@dataclass(eq=False)
class QuoteWatcherApp:
    settings: FeedSettings = field(default_factory=FeedSettings.fromConfig)

    # symbols subscribed at startup
    symbols: list[str] = field(default_factory=list)

    feed: QuoteFeed = field(init=False)

    # the server only sends changed fields, so keep the full picture per symbol
    quoteState: dict[str, dict[str, Any]] = field(default_factory=dict)

    # count total quote updates received
    updates: int = 0

    exiting: bool = False

    commands: dict[str, tuple[Callable[[list[str]], Awaitable[None]], str]] = field(
        init=False
    )

    def __post_init__(self) -> None:
        self.feed = QuoteFeed.fromSettings(self.settings)
        self.feed.events.on("data", self.onQuote)

        self.commands = {
            "add": (self.cmdAdd, "Subscribe symbols"),
            "remove": (self.cmdRemove, "Unsubscribe symbols"),
            "rm": (self.cmdRemove, "Unsubscribe symbols"),
            "list": (self.cmdList, "List subscribed symbols"),
            "ls": (self.cmdList, "List subscribed symbols"),
            "show": (self.cmdShow, "Print every field held for symbols"),
            "token": (self.cmdToken, "Set auth token and reconnect"),
            "quit": (self.cmdQuit, "Disconnect and exit"),
            "exit": (self.cmdQuit, "Disconnect and exit"),
        }

    def setupLogging(self) -> None:
        now = whenever.ZonedDateTime.now(self.settings.timezone)
        LOGDIR = pathlib.Path(self.settings.logdir) / f"{now.year}" / f"{now.month:02}"
        LOGDIR.mkdir(exist_ok=True, parents=True)
        LOG_FILE_TEMPLATE = str(
            LOGDIR
            / f"tvfeed-{now.year}-{now.month:02}-{now.day:02}_{now.hour:02}{now.minute:02}{now.second:02}"
        )

        def asink(x):
            # resolve stdout per message so patch_stdout() keeps the prompt intact
            print(x, end="", file=sys.stdout)

        logger.remove()
        logger.add(asink, colorize=True, level=self.settings.loglevel)

        # everything, including raw protocol chatter at TRACE, goes to the file
        logger.add(sink=LOG_FILE_TEMPLATE + "-tvfeed.log", level="TRACE", colorize=False)
        logger.info("Logging session with prefix: {}", LOG_FILE_TEMPLATE)

    def onQuote(self, symbol: str, status: str, values: dict[str, Any]) -> None:
        self.updates += 1

        if status != "ok":
            logger.warning("{} :: status {} :: {}", symbol, status, values)
            return

        merged = self.quoteState.setdefault(symbol, {})
        merged |= values
        logger.info("{:<20} {}", symbol, fmtQuote(merged))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def cmdAdd(self, args: list[str]) -> None:
        for sym in args:
            await self.feed.registerSymbol(sym.upper())

    async def cmdRemove(self, args: list[str]) -> None:
        for sym in args:
            sym = sym.upper()
            await self.feed.unregisterSymbol(sym)
            self.quoteState.pop(sym, None)

    async def cmdList(self, args: list[str]) -> None:
        subs = sorted(self.feed.subscriptions)
        logger.info("Subscribed ({}): {}", len(subs), ", ".join(subs) or "(none)")

    async def cmdShow(self, args: list[str]) -> None:
        for sym in args or sorted(self.quoteState):
            sym = sym.upper()
            logger.info("{}: {}", sym, self.quoteState.get(sym, "(no data)"))

    async def cmdToken(self, args: list[str]) -> None:
        if len(args) != 1:
            logger.error("Usage: token TOKEN")
            return

        # the token is only sent during the handshake, so start a new session
        subs = self.feed.subscriptions
        await self.feed.disconnect()
        self.feed.setAuthToken(args[0])
        await self.feed.connect()
        for sym in sorted(subs):
            await self.feed.registerSymbol(sym)

    async def cmdQuit(self, args: list[str]) -> None:
        self.exiting = True

    async def runCommand(self, text: str) -> None:
        parts = text.split()
        if not parts:
            return

        cmd, *args = parts
        found = self.commands.get(cmd.lower())
        if not found:
            logger.error("Unknown command: {} (try: {})", cmd, ", ".join(sorted(self.commands)))
            return

        run, _ = found
        try:
            await run(args)
        except FeedError as e:
            logger.error("[{}] {}", cmd, e)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def dorepl(self, **sessionArgs) -> None:
        """Interactive prompt; `sessionArgs` override the PromptSession defaults."""
        session: PromptSession = PromptSession(
            **{
                "history": ThreadedHistory(FileHistory(os.path.expanduser(HISTORY_FILE))),
                "auto_suggest": AutoSuggestFromHistory(),
                "completer": CommandCompleter(self),
                **sessionArgs,
            }
        )

        while not self.exiting:
            try:
                text1 = await session.prompt_async(
                    f"{self.feed.status.value}> ",
                    enable_history_search=True,
                    complete_while_typing=True,
                )

                # log user input to our active logfile(s)
                logger.trace("> {}", text1)

                await self.runCommand(text1)
            except KeyboardInterrupt:
                # Control-C pressed. Try again.
                continue
            except EOFError:
                # Control-D pressed
                logger.error("Exiting...")
                self.exiting = True
                break

    async def doscript(self, stream: TextIO | None = None) -> None:
        """Run commands from a non-interactive stdin (file or pipe), one per line."""
        if stream is None:
            stream = sys.stdin

        while not self.exiting:
            # readline blocks on pipes, so keep it off the event loop
            line = await asyncio.to_thread(stream.readline)
            if not line:
                logger.info("End of command input")
                self.exiting = True
                break

            text1 = line.strip()
            logger.trace("> {}", text1)
            await self.runCommand(text1)

    async def run(self) -> None:
        self.setupLogging()

        try:
            await self.feed.connect()
        except FeedError as e:
            logger.error("Connect failed: {}", e)
            return

        try:
            await self.cmdAdd(self.symbols)

            if sys.stdin.isatty():
                with patch_stdout():
                    await self.dorepl()
            else:
                await self.doscript()
        finally:
            await self.feed.disconnect()
            logger.info("Received {:,} quote updates", self.updates)


def main() -> None:
    app = QuoteWatcherApp(symbols=sys.argv[1:])
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
