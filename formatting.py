"""
Display helpers shared by the API responses.

None of these raise on bad input: missing or malformed values render as a
defined fallback string.
"""
import math
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

CURRENCY = "₹"
ZERO_AMOUNT = f"{CURRENCY}0"
CRORE = 10_000_000
LAKH = 100_000

POSTED_FALLBACK = "Recently posted"
DATE_FALLBACK = "Date TBD"

STATUS_COLORS = {
    # projects
    "open": "bg-green-100 text-green-800",
    "in_progress": "bg-blue-100 text-blue-800",
    "completed": "bg-green-100 text-green-800",
    "closed": "bg-gray-100 text-gray-800",
    # bids
    "pending": "bg-yellow-100 text-yellow-800",
    "shortlisted": "bg-blue-100 text-blue-800",
    "accepted": "bg-green-100 text-green-800",
    "rejected": "bg-red-100 text-red-800",
}
DEFAULT_COLOR = "bg-gray-100 text-gray-800"


def _to_number(amount: Any) -> Optional[float]:
    if amount is None or isinstance(amount, bool):
        return None
    if isinstance(amount, (int, float, Decimal)):
        value = float(amount)
    elif isinstance(amount, str):
        try:
            value = float(amount.replace(",", "").strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def group_digits(value: float) -> str:
    """Indian digit grouping with up to three decimals: 1234567.5 -> 12,34,567.5"""
    text = f"{abs(value):.3f}".rstrip("0").rstrip(".")
    whole, _, frac = text.partition(".")
    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])
    sign = "-" if value < 0 and text != "0" else ""
    return sign + whole + (f".{frac}" if frac else "")


def format_currency(amount: Any) -> str:
    value = _to_number(amount)
    if not value:
        return ZERO_AMOUNT
    sign = "-" if value < 0 else ""
    value = abs(value)
    if value >= CRORE:
        return f"{sign}{CURRENCY}{value / CRORE:.1f} Cr"
    if value >= LAKH:
        return f"{sign}{CURRENCY}{value / LAKH:.1f} L"
    return f"{sign}{CURRENCY}{group_digits(value)}"


def format_budget(budget: Any, budget_max: Any = None) -> str:
    """Single amount, or "low - high" when a distinct upper bound is set."""
    low = format_currency(budget)
    high = _to_number(budget_max)
    if high and high != _to_number(budget):
        return f"{low} - {format_currency(high)}"
    return low


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    elif isinstance(value, dict) and "seconds" in value:
        # serialized store timestamp {"seconds": ..., "nanoseconds": ...}
        dt = datetime.fromtimestamp(float(value["seconds"]), tz=timezone.utc)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(float(value), tz=timezone.utc)
    else:
        raise TypeError(f"unsupported timestamp {type(value).__name__}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_relative_time(timestamp: Any, now: Optional[datetime] = None) -> str:
    try:
        posted = _to_datetime(timestamp)
    except (TypeError, ValueError, OverflowError, OSError):
        return POSTED_FALLBACK
    if posted is None:
        return POSTED_FALLBACK
    now = now or datetime.now(timezone.utc)
    days = max((now - posted).days, 0)
    if days == 0:
        return "Posted today"
    if days == 1:
        return "Posted 1 day ago"
    if days > 30:
        return "Posted over a month ago"
    return f"Posted {days} days ago"


def format_date(value: Any) -> str:
    """19 Oct 2026 style; "Date TBD" when missing or unparseable."""
    try:
        dt = _to_datetime(value)
    except (TypeError, ValueError, OverflowError, OSError):
        return DATE_FALLBACK
    if dt is None:
        return DATE_FALLBACK
    return f"{dt.day} {dt.strftime('%b')} {dt.year}"


def status_color(status: Optional[str]) -> str:
    return STATUS_COLORS.get(status or "", DEFAULT_COLOR)


def project_display(project, now: Optional[datetime] = None) -> dict:
    return {
        "budget": format_budget(project.budget, project.budget_max),
        "posted": format_relative_time(project.created_at, now=now),
        "startDate": format_date(project.start_date),
        "statusColor": status_color(project.status),
    }


def bid_display(bid) -> dict:
    return {
        "price": format_currency(bid.price_quoted),
        "submitted": format_date(bid.created_at),
        "statusColor": status_color(bid.status),
    }
