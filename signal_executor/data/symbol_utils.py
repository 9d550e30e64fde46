"""
Shared market-symbol helpers.

Alerts carry markets in underscore form (BTC_USD); the venue uses the
dash form (BTC-USD); ccxt uses unified symbols (BTC/USD:USD).

This module is the **single source of truth** for market normalization.
"""
from __future__ import annotations

from typing import Iterable, List, Optional


def normalize_market(market: str) -> str:
    """
    Venue market id for an alert market.

    BTC_USD -> BTC-USD, eth_usd -> ETH-USD, BTC-USD -> BTC-USD.
    """
    if not market:
        return ""
    return str(market).strip().upper().replace("_", "-")


def market_base_quote(market: str) -> tuple[str, str]:
    """Split a market in any supported form into (base, quote)."""
    s = normalize_market(market).split(":")[0].replace("/", "-")
    if "-" not in s:
        return s, ""
    base, quote = s.split("-", 1)
    return base, quote


def unified_symbol_candidates(market: str, settle: Optional[str] = None) -> List[str]:
    """
    ccxt unified symbols that may represent a venue market, most specific first.

    BTC-USD -> ["BTC/USD:USD", "BTC/USD:USDC", "BTC/USD:USDT", "BTC/USD"];
    a settle currency, when given, is tried first.
    """
    base, quote = market_base_quote(market)
    if not quote:
        return [base]
    settles: List[str] = []
    for s in (settle, quote, "USDC", "USDT"):
        if s and s.upper() not in settles:
            settles.append(s.upper())
    candidates = [f"{base}/{quote}:{s}" for s in settles]
    candidates.append(f"{base}/{quote}")
    return candidates


def same_market(a: str, b: str) -> bool:
    """True when two market strings in any supported form name the same market."""
    return market_base_quote(a) == market_base_quote(b)


def filter_market(records: Iterable, market: str, attr: str = "market") -> list:
    """Keep records whose `attr` names the given market."""
    return [r for r in records if same_market(getattr(r, attr, "") or "", market)]
