"""Command autocompletion for the quote watcher prompt.

Completes command names (with their help text) and, for symbol commands,
symbols the watcher already knows about.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prompt_toolkit.completion import Completer, Completion

if TYPE_CHECKING:
    from tvfeed.cli import QuoteWatcherApp


class CommandCompleter(Completer):
    """Completer for watcher commands and their symbol arguments."""

    # commands whose arguments are symbols
    _SYMBOL_COMMANDS = frozenset({"remove", "rm", "show"})

    def __init__(self, app: QuoteWatcherApp):
        self.app = app

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor

        parts = text.split(None, 1)
        if len(parts) <= 1 and not text.endswith(" "):
            # Still typing the command name
            prefix = parts[0] if parts else ""
            yield from self._complete_command_name(prefix)
        else:
            cmd_name = parts[0].lower()
            if cmd_name not in self._SYMBOL_COMMANDS:
                return

            arg_text = parts[1] if len(parts) > 1 else ""
            words = arg_text.split()
            current_word = words[-1] if words and not arg_text.endswith(" ") else ""
            yield from self._complete_symbols(current_word)

    def _complete_command_name(self, prefix):
        prefix_lower = prefix.lower()
        for cmd_name, (_, desc) in sorted(self.app.commands.items()):
            if cmd_name.startswith(prefix_lower):
                yield Completion(cmd_name, start_position=-len(prefix), display_meta=desc)

    def _complete_symbols(self, prefix):
        symbols = self.app.feed.subscriptions | set(self.app.quoteState)

        prefix_upper = prefix.upper()
        for sym in sorted(symbols):
            if sym.startswith(prefix_upper):
                yield Completion(sym, start_position=-len(prefix))
