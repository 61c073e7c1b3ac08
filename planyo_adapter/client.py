"""Async Planyo REST client covering the two availability operations.
Credentials are passed through as query parameters; single attempt, no retry.
"""
from __future__ import annotations
import logging
import os
from typing import Any
import httpx
from dotenv import load_dotenv
from .errors import (
    ConfigError,
    UpstreamApplicationError,
    UpstreamConnectionError,
    UpstreamHttpError,
    UpstreamParseError,
)

load_dotenv()

logger = logging.getLogger(__name__)

_BASE_URL = os.getenv("PLANYO_API_BASE", "https://www.planyo.com/rest/")
_API_KEY = os.getenv("PLANYO_API_KEY")
_USERNAME = os.getenv("PLANYO_API_USERNAME", "")
_PASSWORD = os.getenv("PLANYO_API_PASSWORD", "")


def _parse_timeout(raw: str | None) -> float | None:
    """Seconds for the httpx client; unset, empty or "none" means no timeout."""
    if raw is None or raw.strip().lower() in ("", "none"):
        return None
    return float(raw)


_TIMEOUT = _parse_timeout(os.getenv("PLANYO_TIMEOUT"))


def require_api_key() -> str:
    """Fail fast before any outbound call when the key is not configured."""
    if not _API_KEY:
        raise ConfigError("Missing env var: PLANYO_API_KEY")
    return _API_KEY


def new_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(http2=True, timeout=_TIMEOUT)


def _base_params(method: str) -> dict[str, str]:
    params = {"method": method, "api_key": require_api_key()}
    # optional auth, only some accounts need it
    if _USERNAME:
        params["username"] = _USERNAME
    if _PASSWORD:
        params["password"] = _PASSWORD
    return params


async def _call(params: dict[str, str], resource_id: str | None = None,
                client: httpx.AsyncClient | None = None) -> Any:
    """GET the Planyo endpoint and return the parsed JSON body."""
    try:
        if client is None:
            async with new_client() as own:
                resp = await own.get(_BASE_URL, params=params)
        else:
            resp = await client.get(_BASE_URL, params=params)
    except httpx.HTTPError as exc:
        raise UpstreamConnectionError(f"Planyo request failed: {exc}", resource_id) from exc

    if not resp.is_success:
        raise UpstreamHttpError(resp.status_code, resp.text, resource_id)
    try:
        payload = resp.json()
    except ValueError:
        raise UpstreamParseError(resp.text, resource_id) from None
    # null, lists and scalars carry nothing we can read
    if not isinstance(payload, dict):
        raise UpstreamParseError(resp.text, resource_id)
    return payload


async def search_resources(start: str, end: str, quantity: int | float = 1,
                           resource_ids: list[str] | None = None, *,
                           client: httpx.AsyncClient | None = None) -> Any:
    """Call ``resource_search`` for ``[start, end)``, optionally limited to ``resource_ids``."""
    params = _base_params("resource_search")
    params.update(start_time=start, end_time=end, quantity=str(quantity))
    if resource_ids:
        params["ppp_resfilter"] = ",".join(resource_ids)
    logger.info("Planyo resource_search %s..%s (filter=%d ids)", start, end, len(resource_ids or []))
    return await _call(params, client=client)


async def get_resource_usage(resource_id: str, start: str, end: str, *,
                             client: httpx.AsyncClient | None = None) -> Any:
    """Call ``get_resource_usage`` for one resource, one period per booking."""
    params = _base_params("get_resource_usage")
    params.update(resource_id=resource_id, start_time=start, end_time=end, separate_periods="true")
    logger.info("Planyo get_resource_usage resource=%s %s..%s", resource_id, start, end)
    return await _call(params, resource_id=resource_id, client=client)


def raise_for_response_code(payload: Any, resource_id: str | None = None) -> None:
    """Raise ``UpstreamApplicationError`` when Planyo reports a non-zero response_code."""
    if not isinstance(payload, dict):
        return
    code = payload.get("response_code")
    if code in (None, 0, "0", "", False):
        return
    logger.warning("Planyo response_code %s (resource=%s): %s",
                   code, resource_id, payload.get("response_message"))
    raise UpstreamApplicationError(code, payload.get("response_message"), resource_id)
