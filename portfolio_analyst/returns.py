"""
Holding return lookups using yfinance.

yfinance is synchronous, so price history is fetched inside
asyncio.to_thread to keep the event loop free.
"""

import asyncio
import logging
import re
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

import yfinance as yf

from .schemas import HoldingReturn
from .search import SearchResult

logger = logging.getLogger("uvicorn.error")

PERIOD_RE = re.compile(r"^(.+?)\s+to\s+(.+?)$", re.IGNORECASE)
DMY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
TEXT_DATE_RE = re.compile(r"^(\d{1,2})\s+(\w+)\s+(\d{4})$")
RETURN_RE = re.compile(r"(?:is |: )(-?\d+\.?\d*)%")
TIMEFRAME_RE = re.compile(r"(?:for the period|from) ([^.]+? to [^.]+?)(?:\.|$|Sources)", re.IGNORECASE)

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_FALLBACK_FORMATS = ("%d %b, %Y", "%B %d %Y", "%b %d %Y", "%B %d, %Y", "%b %d, %Y", "%Y/%m/%d")


def parse_flexible_date(value: str) -> date:
    """Accepts ISO dates, DD/MM/YYYY and '1 Jul 2024' style dates."""
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    match = DMY_RE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        return date(year, month, day)
    match = TEXT_DATE_RE.match(text)
    if match and match.group(2).lower() in MONTHS:
        return date(int(match.group(3)), MONTHS[match.group(2).lower()], int(match.group(1)))
    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date: {value}")


def parse_period(timeframe_period: str) -> Tuple[date, date]:
    match = PERIOD_RE.match(timeframe_period.strip())
    if not match:
        raise ValueError(timeframe_period)
    return parse_flexible_date(match.group(1)), parse_flexible_date(match.group(2))


def _fetch_close_prices(ticker: str, start: date, end: date) -> Tuple[Optional[float], Optional[float]]:
    """Synchronous history fetch, runs in a thread."""
    hist = yf.Ticker(ticker).history(start=start.isoformat(), end=end.isoformat(), interval="1d")
    if hist is None or hist.empty:
        return None, None
    closes = hist["Close"].dropna()
    if closes.empty:
        return None, None
    return float(closes.iloc[0]), float(closes.iloc[-1])


async def search_holding_return(holding_name: str, ticker: str, timeframe_period: str) -> SearchResult:
    try:
        start, end = parse_period(timeframe_period)
    except ValueError:
        return SearchResult(
            f"Unable to parse time period: {timeframe_period}. "
            'Expected format like "1 Jul 2024 to 30 Jun 2025"'
        )

    logger.info("Fetching return for %s from %s to %s", ticker, start, end)
    try:
        start_price, end_price = await asyncio.to_thread(_fetch_close_prices, ticker, start, end)
    except Exception as exc:
        logger.error("Failed to fetch history for %s: %s", ticker, exc)
        return SearchResult(
            f"Failed to retrieve return data for {holding_name} ({ticker}): {exc}. "
            "Please ensure the ticker symbol is correct and has the appropriate suffix (e.g., .AX for ASX stocks)."
        )

    if start_price is None or end_price is None:
        return SearchResult(
            f"No historical data found for {ticker} ({holding_name}) on Yahoo Finance for the period "
            f"{timeframe_period}. This ticker may not be available or the date range may be invalid."
        )
    if not start_price:
        return SearchResult(f"Incomplete price data for {ticker} ({holding_name}). Start or end price missing.")

    total_return = (end_price - start_price) / start_price * 100
    return SearchResult(
        f"{holding_name} ({ticker}): Total return over the time period {timeframe_period} is {total_return:.2f}%. "
        f"Start price: ${start_price:.2f}, End price: ${end_price:.2f}. "
        "Data retrieved from Yahoo Finance historical prices.",
        [f"Yahoo Finance - {ticker}"],
    )


def parse_return_text(text: str, tool_input: Dict[str, Any]) -> HoldingReturn:
    """Pull the headline return and period back out of a tool result."""
    total_return: Optional[float] = None
    timeframe: Optional[str] = None
    match = RETURN_RE.search(text)
    if match:
        total_return = float(match.group(1))
    match = TIMEFRAME_RE.search(text)
    if match:
        timeframe = match.group(1).strip()
    elif total_return is not None and tool_input.get("timeframe_period"):
        # the yfinance wording ("over the time period ...") is not matched above
        timeframe = str(tool_input["timeframe_period"])
    return HoldingReturn(
        holdingName=str(tool_input.get("holding_name") or tool_input.get("fund_name") or ""),
        ticker=tool_input.get("ticker"),
        totalReturn=total_return,
        timeframe=timeframe,
    )
