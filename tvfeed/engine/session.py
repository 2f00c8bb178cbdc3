"""Per-connection quote session state."""
from __future__ import annotations

import dataclasses
import random
import string
from typing import Final

UNAUTHORIZED_TOKEN: Final = "unauthorized_user_token"


def generateQuoteSessionId() -> str:
    """Client-side quote session id: "qs_" plus 12 random letters."""
    return "qs_" + "".join(random.choices(string.ascii_letters, k=12))


@dataclasses.dataclass
class SessionState:
    """Mutable state for one logical quote subscription context.

    `quoteSessionId` stays None until the server's handshake frame arrives
    and we create our session in reply. `subscriptions` is the source of truth
    for which symbols the server is asked to stream.
    """

    authToken: str = UNAUTHORIZED_TOKEN
    quoteSessionId: str | None = None
    subscriptions: set[str] = dataclasses.field(default_factory=set)

    def reset(self) -> None:
        """Forget the session and its subscriptions (the auth token stays)."""
        self.quoteSessionId = None
        self.subscriptions = set()
