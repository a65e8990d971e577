"""
Ingress adapter: raw platform records -> strict internal records.

**Conceptual**: The hosting platform returns backtest statistics and cycles as
JSON-like mappings with several spellings for the same concept (a span start
may be `from`, `start`, `periodStart`, `dateFrom`, `date_from`, `range.from`,
`period.from` or `period.start`), numbers that may arrive as strings, and
timestamps as ISO strings. This module is the one place that knows about
those variations. Everything it returns is a `data.schemas` type, so the
analytics modules never do defensive optional-field lookups.

**Degradation rules** (no exceptions are raised here):
  - A numeric field that is missing or unparseable becomes NaN (or 0 for counts).
  - A timestamp that cannot be parsed becomes None.
  - Counts are rounded and clamped to >= 0.

Both camelCase (platform) and snake_case spellings are accepted. Inputs that
are already normalized dataclasses pass through untouched.
"""

import math
import re
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import pandas as pd
from loguru import logger

from portfolio_aggregator.data.schemas import BacktestStats, CycleRecord, OrderRecord
from portfolio_aggregator.utils.math import is_finite_number

SPAN_START_KEYS = ("from", "start", "periodStart", "dateFrom", "date_from")
SPAN_END_KEYS = ("to", "end", "periodEnd", "dateTo", "date_to")
SPAN_START_NESTED = (("range", "from"), ("period", "from"), ("period", "start"))
SPAN_END_NESTED = (("range", "to"), ("period", "to"), ("period", "end"))

_LOOSE_NUMBER_STRIP = re.compile(r"[^0-9.,-]+")


def _camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _lookup(raw: Mapping[str, Any], *names: str) -> Any:
    """First non-None value among `names` (each also tried in snake_case)."""
    for name in names:
        for key in (name, _camel_to_snake(name)):
            value = raw.get(key)
            if value is not None:
                return value
    return None


def to_number(value: Any) -> float:
    """
    Strict numeric coercion.

    Finite numbers pass through; strings are parsed with `float()` after
    trimming. Anything else, including non-finite results, becomes NaN.
    """
    if is_finite_number(value):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value.strip())
        except ValueError:
            return math.nan
        return parsed if math.isfinite(parsed) else math.nan
    return math.nan


def coerce_loose_number(value: Any) -> Optional[float]:
    """
    Tolerant numeric coercion for human-formatted values ("2 500,50 USDT").

    Non-numeric characters are stripped. When both ',' and '.' appear, the one
    occurring last is the decimal separator and the other is a thousands
    separator; a lone ',' is a decimal separator.

    Returns:
        The parsed float, or None when nothing numeric remains.
    """
    if is_finite_number(value):
        return float(value)
    if not isinstance(value, str):
        return None

    numeric = _LOOSE_NUMBER_STRIP.sub("", value.strip())
    if not numeric:
        return None

    has_comma = "," in numeric
    has_dot = "." in numeric
    if has_comma and has_dot:
        if numeric.rfind(",") > numeric.rfind("."):
            numeric = numeric.replace(".", "").replace(",", ".")
        else:
            numeric = numeric.replace(",", "")
    elif has_comma:
        numeric = numeric.replace(",", ".")

    try:
        parsed = float(numeric)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def parse_timestamp(value: Any) -> Optional[float]:
    """
    Parse a timestamp into epoch milliseconds (UTC).

    Accepts epoch-millisecond numbers, ISO-8601 strings, `datetime` and
    `pandas.Timestamp` objects. Naive values are interpreted as UTC.

    Returns:
        Epoch milliseconds as float, or None for empty/unparseable input.
    """
    if value is None or isinstance(value, bool):
        return None
    if is_finite_number(value):
        return float(value)
    if isinstance(value, str) and not value.strip():
        return None
    if not isinstance(value, (str, datetime, pd.Timestamp)):
        return None

    try:
        stamp = pd.Timestamp(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if stamp is pd.NaT or pd.isna(stamp):
        return None
    if stamp.tzinfo is None:
        stamp = stamp.tz_localize("UTC")
    return float(stamp.value // 1_000_000)


def _count(value: Any) -> int:
    number = to_number(value)
    if not math.isfinite(number):
        return 0
    return max(0, int(round(number)))


def _first_timestamp(raw: Mapping[str, Any], keys: Sequence[str], nested: Sequence[tuple]) -> Optional[float]:
    for key in keys:
        parsed = parse_timestamp(_lookup(raw, key))
        if parsed is not None:
            return parsed
    for outer, inner in nested:
        container = raw.get(outer)
        if isinstance(container, Mapping):
            parsed = parse_timestamp(container.get(inner))
            if parsed is not None:
                return parsed
    return None


def normalize_order(raw: Any) -> OrderRecord:
    """Map a raw order onto OrderRecord (executedAt, falling back to createdAt)."""
    if isinstance(raw, OrderRecord):
        return raw
    if not isinstance(raw, Mapping):
        return OrderRecord()
    executed_at = parse_timestamp(_lookup(raw, "executedAt"))
    if executed_at is None:
        executed_at = parse_timestamp(_lookup(raw, "createdAt"))
    return OrderRecord(executed_at=executed_at)


def normalize_cycle(raw: Any) -> CycleRecord:
    """
    Map a raw cycle onto CycleRecord.

    Net P&L is read from `netQuote`, then `profitQuote`, then `pnl`.
    """
    if isinstance(raw, CycleRecord):
        return raw
    if not isinstance(raw, Mapping):
        raw = {}

    orders_raw = raw.get("orders")
    orders = tuple(normalize_order(order) for order in orders_raw) if isinstance(orders_raw, (list, tuple)) else ()
    cycle_id = to_number(raw.get("id"))
    status = raw.get("status")

    return CycleRecord(
        id=int(cycle_id) if math.isfinite(cycle_id) else 0,
        status=status.strip().upper() if isinstance(status, str) else "",
        close_time=parse_timestamp(_lookup(raw, "date")),
        duration_sec=to_number(_lookup(raw, "duration")),
        net=to_number(_lookup(raw, "netQuote", "profitQuote", "pnl")),
        mae=to_number(_lookup(raw, "maeAbsolute")),
        mfe=to_number(_lookup(raw, "mfeAbsolute")),
        orders=orders,
    )


def normalize_cycles(raw_cycles: Optional[Iterable[Any]]) -> List[CycleRecord]:
    """Normalize a list of cycles, dropping entries that are not records at all."""
    if raw_cycles is None:
        return []
    cycles: List[CycleRecord] = []
    skipped = 0
    for raw in raw_cycles:
        if isinstance(raw, (CycleRecord, Mapping)):
            cycles.append(normalize_cycle(raw))
        else:
            skipped += 1
    if skipped:
        logger.debug(f"Skipped {skipped} cycle entries that are not mappings")
    return cycles


def normalize_stats(raw: Any) -> BacktestStats:
    """
    Map raw backtest statistics onto BacktestStats.

    **Field resolution**:
      - pnl: `netQuote`, then `profitQuote`.
      - symbol: `symbol`, then "BASE/QUOTE" from `base`/`quote`, then "—".
      - win-rate counters: `winRateProfits`/`winRateLosses`, falling back to
        `profits`/`losses`.
      - deposit: nested `deposit.amount|leverage|currency` parsed loosely;
        currency falls back to `quote`.
      - span: first parseable start/end among the alternate spellings; kept
        only when end > start.
    """
    if isinstance(raw, BacktestStats):
        return raw
    if not isinstance(raw, Mapping):
        raw = {}

    backtest_id = to_number(raw.get("id"))
    pnl = to_number(_lookup(raw, "netQuote", "profitQuote"))
    avg_duration = to_number(_lookup(raw, "avgDuration"))
    avg_net_per_day = to_number(_lookup(raw, "netQuotePerDay"))

    base = raw.get("base") or ""
    quote = raw.get("quote") or ""
    symbol = raw.get("symbol") or f"{base}/{quote}".strip("/") or "—"
    name = raw.get("name") or "—"

    deposit = raw.get("deposit") if isinstance(raw.get("deposit"), Mapping) else {}
    currency = deposit.get("currency")
    if isinstance(currency, str) and currency.strip():
        deposit_currency: Optional[str] = currency.strip()
    else:
        deposit_currency = raw.get("quote") or None

    span_start = _first_timestamp(raw, SPAN_START_KEYS, SPAN_START_NESTED)
    span_end = _first_timestamp(raw, SPAN_END_KEYS, SPAN_END_NESTED)
    if span_start is None or span_end is None or span_end <= span_start:
        span_start = span_end = None

    return BacktestStats(
        id=int(backtest_id) if math.isfinite(backtest_id) else 0,
        name=str(name),
        symbol=str(symbol),
        pnl=pnl if math.isfinite(pnl) else 0.0,
        profits=_count(_lookup(raw, "profits")),
        losses=_count(_lookup(raw, "losses")),
        total_deals=_count(_lookup(raw, "totalDeals")),
        avg_duration_sec=max(0.0, avg_duration) if math.isfinite(avg_duration) else 0.0,
        avg_net_per_day=avg_net_per_day if math.isfinite(avg_net_per_day) else 0.0,
        win_rate_profits=_count(_lookup(raw, "winRateProfits", "profits")),
        win_rate_losses=_count(_lookup(raw, "winRateLosses", "losses")),
        span_start=span_start,
        span_end=span_end,
        deposit_amount=coerce_loose_number(deposit.get("amount")),
        deposit_currency=deposit_currency,
        deposit_leverage=coerce_loose_number(deposit.get("leverage")),
    )
