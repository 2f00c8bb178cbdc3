"""Default quote fields requested when no field list is configured.

These are what `quote_set_fields` asks for on every new quote session unless
TVFEED_FIELDS supplies a different list. The server only sends back fields
it has values for, so requesting more than a symbol supports is harmless.
"""

# ── Price ───────────────────────────────────────────────────────────
PRICE_FIELDS = [
    "lp",  # last price
    "lp_time",
    "ch",  # change
    "chp",  # change percent
    "rch",  # regular-session change
    "rchp",
    "rtc",  # real-time change (extended hours)
    "rtc_time",
    "ask",
    "bid",
    "open_price",
    "high_price",
    "low_price",
    "prev_close_price",
    "volume",
]

# ── Symbol metadata ─────────────────────────────────────────────────
META_FIELDS = [
    "current_session",
    "description",
    "local_description",
    "language",
    "exchange",
    "fractional",
    "is_tradable",
    "minmov",
    "minmove2",
    "original_name",
    "pricescale",
    "pro_name",
    "short_name",
    "type",
    "update_mode",
    "currency_code",
    "status",
    "timezone",
]

# ── Fundamentals ────────────────────────────────────────────────────
FUNDAMENTAL_FIELDS = [
    "fundamentals",
    "basic_eps_net_income",
    "beta_1_year",
    "earnings_per_share_basic_ttm",
    "industry",
    "market_cap_basic",
    "price_earnings_ttm",
    "sector",
    "dividends_yield",
]

DEFAULT_QUOTE_FIELDS: tuple[str, ...] = tuple(
    PRICE_FIELDS + META_FIELDS + FUNDAMENTAL_FIELDS
)
