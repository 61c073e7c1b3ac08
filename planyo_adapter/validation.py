"""Query-string validation for both availability handlers."""
from __future__ import annotations

import math
import re
from datetime import date
from typing import Optional

from .errors import InvalidDate, InvalidQuantity, InvalidRange, MissingResourceIds
from .models import DateRange, Quantity, SearchQuery, UsageQuery

_ISO_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def parse_ids(csv: Optional[str]) -> list[str]:
    """Split a comma-separated id list, trimming blanks. Order is kept."""
    if not csv:
        return []
    return [part.strip() for part in str(csv).split(",") if part.strip()]


def parse_date(value: Optional[str]) -> date:
    if not value or not _ISO_DATE.fullmatch(value):
        raise InvalidDate("Invalid or missing start/end. Use YYYY-MM-DD.")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidDate("Invalid or missing start/end. Use YYYY-MM-DD.") from None


def parse_quantity(value: Optional[str]) -> Quantity:
    if value is None or value.strip() == "":
        return 1
    try:
        qty = float(value)
    except ValueError:
        raise InvalidQuantity("Invalid quantity. Use a positive number.") from None
    if not math.isfinite(qty) or qty <= 0:
        raise InvalidQuantity("Invalid quantity. Use a positive number.")
    return int(qty) if qty.is_integer() else qty


def parse_debug(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "1"


def validate_search_query(
    start: Optional[str],
    end: Optional[str],
    quantity: Optional[str] = None,
    resource_ids: Optional[str] = None,
    debug: Optional[str] = None,
) -> SearchQuery:
    """Search mode: an empty id list simply means "no filter"."""
    parse_date(start)
    parse_date(end)
    return SearchQuery(
        start=start,
        end=end,
        quantity=parse_quantity(quantity),
        resource_ids=parse_ids(resource_ids),
        debug=parse_debug(debug),
    )


def validate_usage_query(
    start: Optional[str],
    end: Optional[str],
    resource_ids: Optional[str] = None,
    debug: Optional[str] = None,
) -> UsageQuery:
    """Usage mode needs a non-empty range and explicit ids to probe."""
    span = DateRange(start=parse_date(start), end=parse_date(end))
    if not span.start < span.end:
        raise InvalidRange("Invalid range: start must be before end.")
    ids = parse_ids(resource_ids)
    if not ids:
        raise MissingResourceIds("Missing resourceIds. Use a comma-separated list of resource IDs.")
    return UsageQuery(
        start=start,
        end=end,
        resource_ids=ids,
        debug=parse_debug(debug),
        window=span.to_window(),
    )
