from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional

import pytest
from fastapi.testclient import TestClient

from exchange_service.core.config import Settings
from exchange_service.main import create_app
from exchange_service.models.quote import Quote
from exchange_service.routers.exchange import get_service
from exchange_service.services.rate_service import RateService
from exchange_service.services.rates.cache import RateCache
from exchange_service.services.rates.errors import UnavailableError
from exchange_service.services.rates.stores import InMemoryStore
from tests.conftest import make_quote


class _StubFetcher:
    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.calls: List[str] = []

    def protected_fetch(self, currency: str) -> Quote:
        self.calls.append(currency)
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    def circuit_states(self) -> dict:
        return {"EUR": "open"}


def _client(outcome: Any, cached: Optional[Quote] = None) -> tuple:
    cache = RateCache(InMemoryStore())
    if cached is not None:
        cache.set(cached.currency, cached)
    fetcher = _StubFetcher(outcome)
    svc = RateService(cache=cache, fetcher=fetcher)  # type: ignore[arg-type]
    app = create_app(Settings())
    app.dependency_overrides[get_service] = lambda: svc
    return TestClient(app), fetcher


def test_get_rate_returns_public_shape() -> None:
    client, fetcher = _client(make_quote(name="Euro"))

    resp = client.get("/exchange/eur")

    assert resp.status_code == 200
    body = resp.json()
    assert body["currencyCode"] == "EUR"
    assert body["currencyName"] == "Euro"
    assert Decimal(str(body["buyRate"])) == Decimal("6.125")
    assert Decimal(str(body["sellRate"])) == Decimal("6.129")
    assert Decimal(str(body["previousCloseRate"])) == Decimal("6.118")
    assert body["lastUpdate"] == "2026-01-20T14:30:00.000Z"
    assert fetcher.calls == ["EUR"]
    assert "X-Request-ID" in resp.headers


def test_rates_are_exact_decimal_strings() -> None:
    client, _ = _client(make_quote(sell="6.1290000001"))

    body = client.get("/exchange/eur").json()

    assert body["buyRate"] == "6.125"
    assert body["sellRate"] == "6.1290000001"
    assert body["previousCloseRate"] == "6.118"


def test_cached_quote_is_served_unless_no_cache_header() -> None:
    cached = make_quote(buy="6.000")
    client, fetcher = _client(make_quote(buy="6.500"), cached=cached)

    assert Decimal(str(client.get("/exchange/EUR").json()["buyRate"])) == Decimal("6.000")
    assert fetcher.calls == []

    resp = client.get("/exchange/EUR", headers={"no-cache": "TRUE"})
    assert Decimal(str(resp.json()["buyRate"])) == Decimal("6.500")
    assert fetcher.calls == ["EUR"]


def test_absent_rate_maps_to_503() -> None:
    client, _ = _client(UnavailableError("circuit open"))

    resp = client.get("/exchange/usd")

    assert resp.status_code == 503
    assert resp.json() == {
        "error": "Exchange rate service unavailable",
        "message": "Unable to retrieve exchange rates at this time",
    }


def test_unsupported_currency_maps_to_404() -> None:
    client, fetcher = _client(make_quote())

    resp = client.get("/exchange/gbp")

    assert resp.status_code == 404
    assert resp.json()["error"] == "unsupported_currency"
    assert fetcher.calls == []


def test_invalidate_endpoint_forces_refetch() -> None:
    client, fetcher = _client(make_quote(buy="6.500"), cached=make_quote())

    resp = client.delete("/exchange/eur/cache")
    assert resp.status_code == 200
    assert resp.json() == {"status": "invalidated", "currency": "EUR"}

    client.get("/exchange/eur")
    assert fetcher.calls == ["EUR"]


def test_health_reports_circuits() -> None:
    client, _ = _client(make_quote())

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "circuits": {"EUR": "open"}}


def test_unknown_route_uses_json_error() -> None:
    client, _ = _client(make_quote())

    resp = client.get("/nope")

    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_request_id_header_is_echoed() -> None:
    client, _ = _client(make_quote())

    resp = client.get("/health", headers={"X-Request-ID": "abc-123"})

    assert resp.headers["X-Request-ID"] == "abc-123"


def test_create_app_rejects_invalid_settings() -> None:
    with pytest.raises(ValueError):
        create_app(Settings(cache_backend="memcached"))


def test_shutdown_closes_rate_service(monkeypatch: pytest.MonkeyPatch) -> None:
    app = create_app(Settings())
    closed: List[bool] = []
    monkeypatch.setattr(app.state.rate_service, "close", lambda: closed.append(True))

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert closed == []

    assert closed == [True]
