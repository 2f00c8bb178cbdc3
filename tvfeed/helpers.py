"""Configuration shared between the cli and the engine."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from dotenv import dotenv_values
from loguru import logger

from tvfeed.engine.defaults import DEFAULT_QUOTE_FIELDS
from tvfeed.engine.session import UNAUTHORIZED_TOKEN
from tvfeed.engine.transport import DEFAULT_ORIGIN, DEFAULT_URL

TV_DEFAULT: Final = dict(
    TVFEED_URL=DEFAULT_URL,
    TVFEED_ORIGIN=DEFAULT_ORIGIN,
    TVFEED_AUTH_TOKEN=UNAUTHORIZED_TOKEN,
    TVFEED_TIMEOUT="3.0",
    TVFEED_FIELDS="",
    TVFEED_LOGDIR="runlogs",
    TVFEED_LOGLEVEL="INFO",
    # log file directories and names are stamped in this zone
    TVFEED_TIMEZONE="America/New_York",
)


def loadConfig(envfile: str = ".env.tvfeed") -> dict[str, str]:
    """Defaults, overridden by the env file, overridden by the environment."""
    return {**TV_DEFAULT, **dotenv_values(envfile), **os.environ}  # type: ignore


TV_CONFIG = loadConfig()


def parseFields(text: str | None) -> tuple[str, ...]:
    """Parse a comma separated field list, falling back to the defaults if empty."""
    if not text:
        return DEFAULT_QUOTE_FIELDS

    # preserve order but drop duplicates since the server rejects repeated fields
    return tuple(dict.fromkeys(f.strip() for f in text.split(",") if f.strip()))


@dataclass(slots=True, frozen=True)
class FeedSettings:
    url: str = DEFAULT_URL
    origin: str | None = DEFAULT_ORIGIN
    authToken: str = UNAUTHORIZED_TOKEN
    timeout: float = 3.0
    fields: tuple[str, ...] = DEFAULT_QUOTE_FIELDS
    logdir: str = "runlogs"
    loglevel: str = "INFO"
    timezone: str = "America/New_York"

    @classmethod
    def fromConfig(cls, config: Mapping[str, str | None] | None = None) -> FeedSettings:
        config = {**TV_DEFAULT, **(config if config is not None else TV_CONFIG)}

        try:
            timeout = float(config["TVFEED_TIMEOUT"] or 0) or 3.0
        except ValueError:
            logger.error(
                "Invalid TVFEED_TIMEOUT {!r}, using 3 seconds", config["TVFEED_TIMEOUT"]
            )
            timeout = 3.0

        return cls(
            url=config["TVFEED_URL"] or DEFAULT_URL,
            # empty origin means "send no Origin header"
            origin=config["TVFEED_ORIGIN"] or None,
            authToken=config["TVFEED_AUTH_TOKEN"] or UNAUTHORIZED_TOKEN,
            timeout=timeout,
            fields=parseFields(config["TVFEED_FIELDS"]),
            logdir=config["TVFEED_LOGDIR"] or "runlogs",
            loglevel=(config["TVFEED_LOGLEVEL"] or "INFO").upper(),
            timezone=config["TVFEED_TIMEZONE"] or "America/New_York",
        )
