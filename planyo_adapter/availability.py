import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Sequence, TypeVar

import httpx

from . import client as planyo
from .errors import UpstreamApplicationError, UpstreamTransportError
from .extract import extract_busy_intervals, make_raw_preview, safe_keys
from .models import ResourceUsageResult, TimeWindow, UpstreamErrorInfo, UsageQuery

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Max get_resource_usage calls in flight for one incoming request.
USAGE_CONCURRENCY = 6


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    """Half-open intersection test; touching intervals do not overlap."""
    return a.start < b.end and b.start < a.end


def is_available(window: TimeWindow, busy: Iterable[TimeWindow]) -> bool:
    return not any(overlaps(window, block) for block in busy)


def unavailable_ids(requested: Sequence[str], available: Iterable[str]) -> list[str]:
    """Requested ids Planyo did not list as available, in request order."""
    available_set = {str(rid) for rid in available}
    return [str(rid) for rid in requested if str(rid) not in available_set]


async def fan_out(items: Sequence[T], worker: Callable[[T], Awaitable[R]],
                  concurrency: int = USAGE_CONCURRENCY) -> list[R]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` calls in flight.

    Workers pull positions from one shared cursor and write into the matching
    slot, so the output order is the input order whatever the completion
    order. Every worker is awaited before returning.
    """
    slots: list = [None] * len(items)
    cursor = iter(range(len(items)))

    async def run() -> None:
        for index in cursor:
            slots[index] = await worker(items[index])

    outcomes = await asyncio.gather(
        *(run() for _ in range(min(concurrency, len(items)))), return_exceptions=True
    )
    # re-raise only once every worker has stopped
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    return slots


async def check_resource(resource_id: str, query: UsageQuery,
                         client: httpx.AsyncClient | None = None) -> ResourceUsageResult:
    """Probe one resource; upstream failures mark it unavailable instead of raising."""
    try:
        payload = await planyo.get_resource_usage(resource_id, query.start, query.end, client=client)
        planyo.raise_for_response_code(payload, resource_id)
    except UpstreamApplicationError as exc:
        return ResourceUsageResult(
            resource_id=resource_id,
            available=False,
            error=UpstreamErrorInfo(**exc.to_body()),
            top_level_keys=safe_keys(payload),
            raw_preview=make_raw_preview(payload),
        )
    except UpstreamTransportError as exc:
        logger.warning("Usage lookup failed for resource %s: %s", resource_id, exc)
        return ResourceUsageResult(
            resource_id=resource_id,
            available=False,
            error=UpstreamErrorInfo(response_message=str(exc)),
        )

    busy = extract_busy_intervals(payload, resource_id)
    return ResourceUsageResult(
        resource_id=resource_id,
        available=is_available(query.window, busy),
        busy=busy,
        top_level_keys=safe_keys(payload),
        raw_preview=make_raw_preview(payload),
    )


async def check_resources(query: UsageQuery,
                          concurrency: int = USAGE_CONCURRENCY) -> list[ResourceUsageResult]:
    """Bounded fan-out of :func:`check_resource` over every requested id."""
    async with planyo.new_client() as shared:
        return await fan_out(
            query.resource_ids,
            lambda rid: check_resource(rid, query, client=shared),
            concurrency,
        )
