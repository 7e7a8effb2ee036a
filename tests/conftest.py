from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional

import pytest

from exchange_service.models.quote import Quote
from exchange_service.services.rates.resilience import (
    ResiliencePolicy,
    ResilientRateFetcher,
)

EUR_PAYLOAD: Dict[str, Any] = {
    "moeda": "EUR",
    "compra": 6.125,
    "venda": 6.129,
    "fechoAnterior": 6.118,
    "dataAtualizacao": "2026-01-20T14:30:00.000Z",
}

USD_PAYLOAD: Dict[str, Any] = {
    "moeda": "USD",
    "nome": "Dólar",
    "compra": 5.3712,
    "venda": 5.3718,
    "fechoAnterior": 5.3401,
    "dataAtualizacao": "2026-01-20T14:31:02.123Z",
}


def make_quote(
    currency: str = "EUR",
    buy: str = "6.125",
    sell: str = "6.129",
    prev: str = "6.118",
    ts: str = "2026-01-20T14:30:00.000Z",
    name: Optional[str] = None,
) -> Quote:
    return Quote(
        currency=currency,
        name=name,
        buy_rate=Decimal(buy),
        sell_rate=Decimal(sell),
        previous_close_rate=Decimal(prev),
        last_update=ts,
    )


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ScriptedFetch:
    """Fetch callable replaying outcomes in order; the last one repeats."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[str] = []

    def __call__(self, currency: str) -> Quote:
        self.calls.append(currency)
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FailingStore:
    """KeyValueStore whose every operation raises, like an unreachable Redis."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def get(self, key: str) -> Optional[str]:
        self.calls.append("get")
        raise ConnectionError("store down")

    def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self.calls.append("setex")
        raise ConnectionError("store down")

    def delete(self, key: str) -> None:
        self.calls.append("delete")
        raise ConnectionError("store down")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def build_fetcher(clock: FakeClock, sleeper: RecordingSleep) -> Generator[Any, None, None]:
    created: List[ResilientRateFetcher] = []

    def _build(fetch: Any, **policy_kwargs: Any) -> ResilientRateFetcher:
        defaults: Dict[str, Any] = {
            "max_attempts": 3,
            "retry_delay_seconds": 1.0,
            "timeout_seconds": 2.0,
            "request_volume_threshold": 4,
            "failure_ratio": 0.5,
            "delay_seconds": 10.0,
        }
        defaults.update(policy_kwargs)
        fetcher = ResilientRateFetcher(
            fetch, ResiliencePolicy(**defaults), clock=clock, sleep=sleeper
        )
        created.append(fetcher)
        return fetcher

    yield _build
    for fetcher in created:
        fetcher.shutdown()
