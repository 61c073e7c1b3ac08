import json, pathlib
import pytest, respx, httpx
from fastapi.testclient import TestClient
from planyo_adapter import client as cl
from planyo_adapter.api import ALLOWED_ORIGINS, CACHE_CONTROL, SEARCH_PATH, USAGE_PATH, app


cl._API_KEY = "dummy"
cl._BASE_URL = "https://www.planyo.com/rest/"

FIX = pathlib.Path(__file__).parent / "fixtures"
BASE = "https://www.planyo.com"

api = TestClient(app)


def _fixture(name):
    return json.loads((FIX / name).read_text())


# Search mode ---------------------------------------------------------------

def test_search_available_and_unavailable():
    with respx.mock(base_url=BASE) as m:
        route = m.get("/rest/").respond(200, json=_fixture("resource_search.json"))
        resp = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04", "resourceIds": "8,9"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/json")
    assert resp.headers["cache-control"] == CACHE_CONTROL
    body = resp.json()
    assert body["availableResourceIds"] == ["8", "18"]
    assert body["unavailableResourceIds"] == ["9"]
    assert body["reasonsByResourceId"] == {"9": "Resource is booked in the selected period"}
    assert body["quantity"] == 1
    assert body["meta"] == {"requestedFilterCount": 2, "returnedCount": 2, "reasonsCount": 1, "debug": 0}
    assert "error" not in body and "debug" not in body
    assert route.calls.last.request.url.params["ppp_resfilter"] == "8,9"


def test_search_is_idempotent():
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/").respond(200, json=_fixture("resource_search.json"))
        params = {"start": "2024-06-01", "end": "2024-06-04", "resourceIds": "9,8,7"}
        first = api.get(SEARCH_PATH, params=params).json()
        second = api.get(SEARCH_PATH, params=params).json()

    assert first["availableResourceIds"] == second["availableResourceIds"] == ["8", "18"]
    assert first["unavailableResourceIds"] == second["unavailableResourceIds"] == ["9", "7"]


def test_search_upstream_response_code_is_embedded():
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/").respond(200, json=_fixture("resource_search_no_results.json"))
        resp = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04",
                                            "resourceIds": "8,9", "debug": "1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["availableResourceIds"] == []
    assert body["unavailableResourceIds"] == ["8", "9"]
    assert body["error"] == {"response_code": 4, "response_message": "No results found"}
    assert body["reasonsByResourceId"]["9"] == "Minimum rental time is 2 days"
    assert body["meta"]["returnedCount"] == 0
    assert body["meta"]["debug"] == 1
    assert body["debug"]["topLevelKeys"] == ["data", "response_code", "response_message"]
    assert "reason_not_listed" in body["debug"]["rawPreview"]


def test_search_debug_reports_deep_scan_when_nothing_found():
    payload = {"data": {"groups": [{"resource": {"resource_id": "31"}}]}, "response_code": 0}
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/").respond(200, json=payload)
        body = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04", "debug": "1"}).json()

    # best effort diagnostics only; the decision itself stays empty
    assert body["availableResourceIds"] == []
    assert body["debug"]["deepScanResourceIds"] == ["31"]


@pytest.mark.parametrize("quantity", ["0", "abc", "-2"])
def test_search_invalid_quantity_makes_no_call(quantity):
    with respx.mock(base_url=BASE, assert_all_called=False) as m:
        route = m.get("/rest/").respond(200, json={})
        resp = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04", "quantity": quantity})

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid quantity. Use a positive number."}
    assert not route.called


def test_search_invalid_date():
    resp = api.get(SEARCH_PATH, params={"start": "01-06-2024", "end": "2024-06-04"})
    assert resp.status_code == 400
    assert "YYYY-MM-DD" in resp.json()["error"]


def test_search_passes_fractional_quantity():
    with respx.mock(base_url=BASE) as m:
        route = m.get("/rest/").respond(200, json=_fixture("resource_search.json"))
        body = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04", "quantity": "2.5"}).json()

    assert body["quantity"] == 2.5
    assert route.calls.last.request.url.params["quantity"] == "2.5"


def test_missing_api_key_is_500_without_call(monkeypatch):
    monkeypatch.setattr(cl, "_API_KEY", None)
    with respx.mock(base_url=BASE, assert_all_called=False) as m:
        route = m.get("/rest/").respond(200, json={})
        search = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04"})
        usage = api.get(USAGE_PATH, params={"start": "2024-06-01", "end": "2024-06-04", "resourceIds": "10"})

    for resp in (search, usage):
        assert resp.status_code == 500
        assert resp.json() == {"error": "Missing env var: PLANYO_API_KEY"}
    assert not route.called


def test_upstream_transport_error_is_500():
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/").respond(500, text="Internal error")
        resp = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04"})

    assert resp.status_code == 500
    assert resp.json()["error"] == "Planyo HTTP 500. Body: Internal error"
    assert resp.headers["cache-control"] == CACHE_CONTROL


def test_unexpected_error_is_500_json(monkeypatch):
    async def explode(*args, **kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(cl, "search_resources", explode)
    resp = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "kaboom"}


# Usage mode ----------------------------------------------------------------

def _usage_handler(request):
    rid = request.url.params["resource_id"]
    if rid == "11":
        return httpx.Response(200, json={"response_code": 5, "response_message": "Resource not found"})
    if rid == "12":
        return httpx.Response(200, json={"data": {"usage": {}}, "response_code": 0})
    return httpx.Response(200, json=_fixture("resource_usage.json"))


@pytest.mark.parametrize("window,available", [
    (("2024-06-02", "2024-06-03"), False),
    (("2024-05-28", "2024-06-02"), False),
    (("2024-06-04", "2024-06-07"), True),
    (("2024-05-28", "2024-06-01"), True),
])
def test_usage_overlap_decides_availability(window, available):
    start, end = window
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/").mock(side_effect=_usage_handler)
        body = api.get(USAGE_PATH, params={"start": start, "end": end, "resourceIds": "10"}).json()

    assert body["availableResourceIds"] == (["10"] if available else [])
    assert body["unavailableResourceIds"] == ([] if available else ["10"])
    assert body["errorsByResourceId"] == {}


def test_usage_error_on_one_resource_does_not_affect_others():
    with respx.mock(base_url=BASE) as m:
        route = m.get("/rest/").mock(side_effect=_usage_handler)
        resp = api.get(USAGE_PATH, params={"start": "2024-06-05", "end": "2024-06-07", "resourceIds": "10,11,12"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["availableResourceIds"] == ["10", "12"]
    assert body["unavailableResourceIds"] == ["11"]
    assert body["errorsByResourceId"] == {"11": {"response_code": 5, "response_message": "Resource not found"}}
    assert body["meta"] == {"checked": 3, "concurrency": 6, "debug": 0}
    assert "debugResults" not in body
    assert route.call_count == 3


def test_usage_debug_results():
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/").mock(side_effect=_usage_handler)
        body = api.get(USAGE_PATH, params={"start": "2024-06-02", "end": "2024-06-03",
                                           "resourceIds": "10", "debug": "1"}).json()

    [result] = body["debugResults"]
    assert result["resourceId"] == "10"
    assert result["available"] is False
    assert result["busy"] == [{"start": "2024-06-01T00:00:00Z", "end": "2024-06-04T00:00:00Z"}]
    assert result["topLevelKeys"] == ["data", "response_code", "response_message"]


@pytest.mark.parametrize("params,message", [
    ({"start": "2024-06-04", "end": "2024-06-01", "resourceIds": "10"}, "Invalid range"),
    ({"start": "2024-06-01", "end": "2024-06-04"}, "Missing resourceIds"),
    ({"start": "2024-06-01", "end": "tomorrow", "resourceIds": "10"}, "YYYY-MM-DD"),
])
def test_usage_validation_errors(params, message):
    resp = api.get(USAGE_PATH, params=params)
    assert resp.status_code == 400
    assert message in resp.json()["error"]


# HTTP surface --------------------------------------------------------------

def test_non_get_is_405_with_allow_header():
    resp = api.post(SEARCH_PATH)
    assert resp.status_code == 405
    assert resp.headers["allow"] == "GET, OPTIONS"
    assert resp.json() == {"error": "Method Not Allowed"}


def test_preflight_is_always_204():
    allowed = api.options(USAGE_PATH, headers={"Origin": ALLOWED_ORIGINS[0]})
    assert allowed.status_code == 204
    assert allowed.headers["access-control-allow-origin"] == ALLOWED_ORIGINS[0]

    other = api.options(USAGE_PATH, headers={"Origin": "https://evil.example"})
    assert other.status_code == 204
    assert "access-control-allow-origin" not in other.headers


def test_disallowed_origin_is_403():
    with respx.mock(base_url=BASE, assert_all_called=False) as m:
        route = m.get("/rest/").respond(200, json={})
        resp = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04"},
                       headers={"Origin": "https://evil.example"})

    assert resp.status_code == 403
    assert resp.json() == {
        "error": "CORS: Origin not allowed",
        "origin": "https://evil.example",
        "allowedOrigins": list(ALLOWED_ORIGINS),
    }
    assert not route.called


def test_allowed_origin_gets_cors_headers():
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/").respond(200, json=_fixture("resource_search.json"))
        resp = api.get(SEARCH_PATH, params={"start": "2024-06-01", "end": "2024-06-04"},
                       headers={"Origin": ALLOWED_ORIGINS[1]})

    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == ALLOWED_ORIGINS[1]
    assert resp.headers["vary"] == "Origin"


def test_health():
    assert api.get("/health").json() == {"status": "ok"}


def test_usage_decoding_error_on_one_resource_does_not_affect_others():
    def handler(request):
        if request.url.params["resource_id"] == "11":
            raise httpx.DecodingError("bad gzip")
        return httpx.Response(200, json={"data": {"usage": {}}, "response_code": 0})

    with respx.mock(base_url=BASE) as m:
        m.get("/rest/").mock(side_effect=handler)
        resp = api.get(USAGE_PATH, params={"start": "2024-06-01", "end": "2024-06-04", "resourceIds": "10,11,12"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["availableResourceIds"] == ["10", "12"]
    assert body["unavailableResourceIds"] == ["11"]
    assert "bad gzip" in body["errorsByResourceId"]["11"]["response_message"]


def test_usage_405_lists_options():
    resp = api.delete(USAGE_PATH)
    assert resp.status_code == 405
    assert resp.headers["allow"] == "GET, OPTIONS"
