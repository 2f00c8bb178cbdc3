"""Tests for cli.py — quote formatting, commands, the prompt and script input.

The watcher is built with default settings and a FakeTransport so commands
run against a real QuoteFeed without any network.
"""

from __future__ import annotations

import asyncio
import io
import sys
from unittest.mock import AsyncMock, patch

import pytest
import whenever
from loguru import logger
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from tests.conftest import FakeTransport
from tvfeed.cli import QuoteWatcherApp, fmtQuote
from tvfeed.engine.errors import ConnectTimeout
from tvfeed.engine.feed import QuoteFeed
from tvfeed.helpers import FeedSettings


@pytest.fixture
def app() -> QuoteWatcherApp:
    app = QuoteWatcherApp(settings=FeedSettings())
    transport = FakeTransport()
    app.feed.transportFactory = lambda: transport
    app.feed.timeout = 0.05
    return app


class TestFmtQuote:
    def test_known_fields_in_order(self):
        out = fmtQuote({"volume": 1234567, "chp": 1.234, "lp": 189.5, "ch": 2})
        assert out == "lp=189.50 ch=2 chp=+1.23% volume=1,234,567"

    def test_negative_change_percent(self):
        assert fmtQuote({"chp": -0.5}) == "chp=-0.50%"

    def test_ignores_unknown_and_none(self):
        assert fmtQuote({"description": "Apple", "bid": None}) == "(no price fields)"


class TestConstruction:
    def test_feed_built_from_settings(self):
        app = QuoteWatcherApp(settings=FeedSettings(authToken="tok", fields=("lp",)))

        assert isinstance(app.feed, QuoteFeed)
        assert app.feed.state.authToken == "tok"
        assert tuple(app.feed.fields) == ("lp",)

    def test_every_command_has_help(self, app):
        for name, (run, desc) in app.commands.items():
            assert callable(run)
            assert desc


class TestOnQuote:
    def test_merges_partial_updates(self, app):
        app.onQuote("AAPL", "ok", {"lp": 1.0, "ch": 0.1})
        app.onQuote("AAPL", "ok", {"lp": 1.5})

        assert app.quoteState["AAPL"] == {"lp": 1.5, "ch": 0.1}
        assert app.updates == 2

    def test_error_status_not_merged(self, app, log_capture):
        app.onQuote("BAD", "error", {})

        assert "BAD" not in app.quoteState
        assert app.updates == 1
        assert "status error" in log_capture.getvalue()

    def test_wired_to_feed_data_event(self, app):
        app.feed.events.emit("data", "MSFT", "ok", {"lp": 400.0})
        assert app.quoteState["MSFT"] == {"lp": 400.0}


class TestCommands:
    @pytest.mark.asyncio
    async def test_add_and_remove_uppercase(self, app):
        await app.runCommand("add aapl nasdaq:msft")
        assert app.feed.subscriptions == {"AAPL", "NASDAQ:MSFT"}

        app.quoteState["AAPL"] = {"lp": 1.0}
        await app.runCommand("rm aapl")

        assert app.feed.subscriptions == {"NASDAQ:MSFT"}
        assert "AAPL" not in app.quoteState

    @pytest.mark.asyncio
    async def test_list(self, app, log_capture):
        await app.runCommand("add spy qqq")
        await app.runCommand("ls")

        assert "Subscribed (2): QQQ, SPY" in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_show(self, app, log_capture):
        app.quoteState["SPY"] = {"lp": 500.0}
        await app.runCommand("show spy tsla")

        out = log_capture.getvalue()
        assert "SPY: {'lp': 500.0}" in out
        assert "TSLA: (no data)" in out

    @pytest.mark.asyncio
    async def test_unknown_command(self, app, log_capture):
        await app.runCommand("frobnicate")
        assert "Unknown command: frobnicate" in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_blank_line_ignored(self, app, log_capture):
        await app.runCommand("   ")
        assert log_capture.getvalue() == ""

    @pytest.mark.asyncio
    async def test_quit(self, app):
        await app.runCommand("QUIT")
        assert app.exiting

    @pytest.mark.asyncio
    async def test_token_reconnects_and_resubscribes(self, app):
        await app.feed.connect()
        await app.runCommand("add aapl")

        await app.runCommand("token secret")

        assert app.feed.isReady
        assert app.feed.state.authToken == "secret"
        assert app.feed.subscriptions == {"AAPL"}

    @pytest.mark.asyncio
    async def test_token_usage(self, app, log_capture):
        await app.runCommand("token")
        assert "Usage: token TOKEN" in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_feed_errors_are_reported_not_raised(self, app, log_capture):
        app.feed.connect = AsyncMock(side_effect=ConnectTimeout("too slow"))

        await app.runCommand("token abc")

        assert "[token] too slow" in log_capture.getvalue()


class TestCommandLoop:
    @pytest.mark.asyncio
    async def test_script_reads_until_quit(self, app):
        await app.doscript(io.StringIO("add aapl\nquit\nadd msft\n"))

        assert app.exiting
        assert app.feed.subscriptions == {"AAPL"}

    @pytest.mark.asyncio
    async def test_script_end_of_input_exits(self, app, log_capture):
        await app.doscript(io.StringIO(""))

        assert app.exiting
        assert "End of command input" in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_script_from_regular_file(self, app, tmp_path, log_capture):
        script = tmp_path / "commands.txt"
        script.write_text("add spy\n\nlist\n")

        with script.open() as f:
            await app.doscript(f)

        assert app.exiting
        assert "Subscribed (1): SPY" in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_run_with_file_on_stdin_uses_script(self, app, tmp_path, log_capture):
        script = tmp_path / "commands.txt"
        script.write_text("list\nquit\n")
        app.symbols = ["spy"]

        with (
            script.open() as f,
            patch.object(QuoteWatcherApp, "setupLogging"),
            patch.object(QuoteWatcherApp, "dorepl") as dorepl,
            patch("tvfeed.cli.sys.stdin", f),
        ):
            await app.run()

        dorepl.assert_not_called()
        assert app.exiting
        assert app.feed.transport is None
        out = log_capture.getvalue()
        assert "Subscribed (1): SPY" in out
        assert "Received 0 quote updates" in out

    @pytest.mark.asyncio
    async def test_prompt_runs_commands_until_quit(self, app):
        with create_pipe_input() as inp:
            inp.send_text("add aapl\nquit\n")
            await asyncio.wait_for(
                app.dorepl(input=inp, output=DummyOutput(), history=InMemoryHistory()), 5
            )

        assert app.exiting
        assert app.feed.subscriptions == {"AAPL"}

    @pytest.mark.asyncio
    async def test_prompt_interrupt_continues_and_eof_exits(self, app, log_capture):
        with create_pipe_input() as inp:
            # Control-C, then a command, then Control-D on an empty line
            inp.send_text("\x03")
            inp.send_text("add spy\n")
            inp.send_text("\x04")
            await asyncio.wait_for(
                app.dorepl(input=inp, output=DummyOutput(), history=InMemoryHistory()), 5
            )

        assert app.exiting
        assert app.feed.subscriptions == {"SPY"}
        assert "Exiting..." in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_run_reports_connect_failure(self, app, log_capture):
        app.feed.connect = AsyncMock(side_effect=ConnectTimeout("no route"))

        with patch.object(QuoteWatcherApp, "setupLogging"):
            await app.run()

        assert "Connect failed: no route" in log_capture.getvalue()


class TestSetupLogging:
    def test_log_dir_stamped_in_configured_zone(self, tmp_path):
        app = QuoteWatcherApp(settings=FeedSettings(logdir=str(tmp_path), timezone="Asia/Tokyo"))

        try:
            app.setupLogging()
            now = whenever.ZonedDateTime.now("Asia/Tokyo")
            logdir = tmp_path / f"{now.year}" / f"{now.month:02}"

            assert logdir.is_dir()
            (logfile,) = logdir.glob("tvfeed-*-tvfeed.log")
            assert logfile.name.startswith(f"tvfeed-{now.year}-{now.month:02}-{now.day:02}_")
        finally:
            logger.remove()
            logger.add(sys.stderr)
