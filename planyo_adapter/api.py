import logging
import os
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import client as planyo
from .availability import USAGE_CONCURRENCY, check_resources, unavailable_ids
from .errors import AdapterError, UpstreamApplicationError
from .extract import (
    deep_scan_resource_ids,
    extract_available_ids,
    extract_reasons,
    make_raw_preview,
    safe_keys,
)
from .models import (
    DebugInfo,
    SearchAvailabilityResponse,
    SearchMeta,
    SearchQuery,
    UpstreamErrorInfo,
    UsageAvailabilityResponse,
    UsageMeta,
    UsageQuery,
)
from .validation import parse_ids, validate_search_query, validate_usage_query

logger = logging.getLogger(__name__)

SEARCH_PATH = "/api/planyo-available"
USAGE_PATH = "/api/planyo-availability"

# CDN caching; safe because the response depends only on the query string
CACHE_CONTROL = "s-maxage=60, stale-while-revalidate=300"

DEFAULT_ALLOWED_ORIGINS = (
    "https://easyrentsuriname.nl",
    "https://www.easyrentsuriname.nl",
    "https://easyrent-suriname-2025.webflow.io",
)
ALLOWED_ORIGINS = tuple(parse_ids(os.getenv("PLANYO_ALLOWED_ORIGINS"))) or DEFAULT_ALLOWED_ORIGINS

app = FastAPI(title="Planyo Adapter Service")


class OriginNotAllowed(Exception):
    def __init__(self, origin: str):
        self.origin = origin
        super().__init__(origin)


def _cors_headers(origin: Optional[str]) -> dict[str, str]:
    if not origin or origin not in ALLOWED_ORIGINS:
        return {}
    return {
        "Access-Control-Allow-Origin": origin,
        "Vary": "Origin",
        "Access-Control-Allow-Methods": "GET, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }


def _json(status: int, data: Any, origin: Optional[str] = None,
          headers: Optional[dict[str, str]] = None) -> JSONResponse:
    """JSON body with the fixed cache directive (and CORS headers when allowed)."""
    out = {"Cache-Control": CACHE_CONTROL, **_cors_headers(origin), **(headers or {})}
    return JSONResponse(data, status_code=status, headers=out)


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def checked_origin(origin: Optional[str] = Header(None)) -> Optional[str]:
    """No Origin (server-to-server) passes; a present but unknown one is refused."""
    if origin and origin not in ALLOWED_ORIGINS:
        raise OriginNotAllowed(origin)
    return origin


@app.exception_handler(OriginNotAllowed)
async def origin_not_allowed(request: Request, exc: OriginNotAllowed):
    logger.warning("Rejected request from origin %s", exc.origin)
    return _json(403, {
        "error": "CORS: Origin not allowed",
        "origin": exc.origin,
        "allowedOrigins": list(ALLOWED_ORIGINS),
    })


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    headers = dict(exc.headers or {})
    # the availability paths also answer OPTIONS preflights
    if exc.status_code == 405 and request.url.path in (SEARCH_PATH, USAGE_PATH):
        headers["Allow"] = "GET, OPTIONS"
    return _json(exc.status_code, {"error": exc.detail}, headers=headers)


async def preflight(origin: Optional[str] = Header(None)):
    """Browsers need a 204 either way; only allowed origins get CORS headers."""
    return Response(status_code=204, headers=_cors_headers(origin))


@app.get("/health")
async def health():
    return {"status": "ok"}


# Search mode -------------------------------------------------------------

async def search_availability(query: SearchQuery) -> SearchAvailabilityResponse:
    """One resource_search call, reshaped into the widget contract."""
    payload = await planyo.search_resources(query.start, query.end, query.quantity, query.resource_ids)
    reasons = extract_reasons(payload)

    error = None
    try:
        planyo.raise_for_response_code(payload)
    except UpstreamApplicationError as exc:
        error = UpstreamErrorInfo(**exc.to_body())

    if error is None:
        available = extract_available_ids(payload)
        unavailable = unavailable_ids(query.resource_ids, available)
    else:
        available, unavailable = [], list(query.resource_ids)

    debug = None
    if query.debug:
        debug = DebugInfo(top_level_keys=safe_keys(payload), raw_preview=make_raw_preview(payload))
        if error is None and not available:
            debug.deep_scan_resource_ids = deep_scan_resource_ids(payload)

    return SearchAvailabilityResponse(
        start=query.start,
        end=query.end,
        quantity=query.quantity,
        available_resource_ids=available,
        unavailable_resource_ids=unavailable,
        reasons_by_resource_id=reasons,
        meta=SearchMeta(
            requested_filter_count=len(query.resource_ids),
            returned_count=len(available),
            reasons_count=len(reasons),
            debug=int(query.debug),
        ),
        error=error,
        debug=debug,
    )


@app.get(SEARCH_PATH)
async def planyo_available(
    start: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD (departure date, exclusive)"),
    quantity: Optional[str] = Query(None, description="Positive number, default 1"),
    resource_ids: Optional[str] = Query(None, alias="resourceIds", description="Comma-separated filter"),
    debug: Optional[str] = Query(None, description="1 echoes Planyo's raw response shape"),
    origin: Optional[str] = Depends(checked_origin),
):
    """Resources Planyo itself reports as available for ``[start, end)``."""
    try:
        planyo.require_api_key()
        query = validate_search_query(start, end, quantity, resource_ids, debug)
        result = await search_availability(query)
    except AdapterError as exc:
        return _json(exc.status_code, exc.to_body(), origin)
    except Exception as exc:
        logger.exception("%s failed", SEARCH_PATH)
        return _json(500, {"error": str(exc) or "Unknown error"}, origin)

    logger.info("%s %s..%s: %d available, %d unavailable", SEARCH_PATH, query.start, query.end,
                len(result.available_resource_ids), len(result.unavailable_resource_ids))
    return _json(200, _dump(result), origin)


# Usage mode --------------------------------------------------------------

async def usage_availability(query: UsageQuery) -> UsageAvailabilityResponse:
    """Per-resource get_resource_usage lookups checked against the requested window."""
    results = await check_resources(query)
    return UsageAvailabilityResponse(
        start=query.start,
        end=query.end,
        available_resource_ids=[r.resource_id for r in results if r.available],
        unavailable_resource_ids=[r.resource_id for r in results if not r.available],
        errors_by_resource_id={r.resource_id: r.error for r in results if r.error is not None},
        meta=UsageMeta(checked=len(results), concurrency=USAGE_CONCURRENCY, debug=int(query.debug)),
        debug_results=results if query.debug else None,
    )


@app.get(USAGE_PATH)
async def planyo_availability(
    start: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD, after start"),
    resource_ids: Optional[str] = Query(None, alias="resourceIds", description="Comma-separated, required"),
    debug: Optional[str] = Query(None),
    origin: Optional[str] = Depends(checked_origin),
):
    """Availability per resource id, derived from its busy periods."""
    try:
        planyo.require_api_key()
        query = validate_usage_query(start, end, resource_ids, debug)
        result = await usage_availability(query)
    except AdapterError as exc:
        return _json(exc.status_code, exc.to_body(), origin)
    except Exception as exc:
        logger.exception("%s failed", USAGE_PATH)
        return _json(500, {"error": str(exc) or "Unknown error"}, origin)

    logger.info("%s %s..%s: checked %d, %d errors", USAGE_PATH, query.start, query.end,
                result.meta.checked, len(result.errors_by_resource_id))
    return _json(200, _dump(result), origin)


app.add_api_route(SEARCH_PATH, preflight, methods=["OPTIONS"])
app.add_api_route(USAGE_PATH, preflight, methods=["OPTIONS"])
