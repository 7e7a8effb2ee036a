"""Fetch-through rate service.

Design:
- Cache first, unless the caller asks to bypass it.
- On miss or bypass, fetch through the resilience layer (timeout, breaker,
  retry) and write the fresh quote back to the cache.
- Upstream misbehaviour never raises past this class: NotFound, Unavailable
  and Transient failures all come back as ``None``. Only an unsupported
  currency code raises (UnsupportedCurrencyError).

Concurrent misses for the same currency are not de-duplicated; each caller
makes its own upstream call.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Iterable, Optional

from exchange_service.core.config import Settings, get_settings
from exchange_service.models.quote import Quote
from .rates.cache import RateCache
from .rates.client import UpstreamRateClient
from .rates.errors import (
    NotFoundError,
    RateFetchError,
    UnavailableError,
    UnsupportedCurrencyError,
)
from .rates.resilience import ResiliencePolicy, ResilientRateFetcher
from .rates.stores import make_store

logger = logging.getLogger("exchange_service.rates")


class RateService:
    def __init__(
        self,
        cache: RateCache,
        fetcher: ResilientRateFetcher,
        supported_currencies: Iterable[str] = ("USD", "EUR"),
        client: Optional[UpstreamRateClient] = None,
    ):
        self._cache = cache
        self._fetcher = fetcher
        self._client = client
        self.supported_currencies = frozenset(c.upper() for c in supported_currencies)

    def normalize(self, currency: str) -> str:
        code = (currency or "").strip().upper()
        if code not in self.supported_currencies:
            raise UnsupportedCurrencyError(currency)
        return code

    def get_rate(self, currency: str, bypass_cache: bool = False) -> Optional[Quote]:
        code = self.normalize(currency)

        if not bypass_cache:
            cached = self._cache.get(code)
            if cached is not None:
                return cached
        else:
            logger.debug("cache bypass requested for %s", code)

        try:
            quote = self._fetcher.protected_fetch(code)
        except NotFoundError:
            logger.warning("upstream has no quote for %s", code)
            return None
        except UnavailableError as e:
            logger.error("rate for %s unavailable: %s", code, e)
            return None
        except RateFetchError as e:  # stray TransientError
            logger.error("rate for %s failed: %s", code, e)
            return None

        self._cache.set(code, quote)
        return quote

    def invalidate(self, currency: str) -> None:
        self._cache.invalidate(self.normalize(currency))

    def circuit_states(self) -> Dict[str, str]:
        return self._fetcher.circuit_states()

    def close(self) -> None:
        """Stop the fetch worker pool and release the upstream HTTP client."""
        self._fetcher.shutdown()
        if self._client is not None:
            self._client.close()


def build_rate_service(settings: Settings) -> RateService:
    store = make_store(settings.cache_backend, redis_url=settings.redis_url)
    client = UpstreamRateClient(
        str(settings.upstream_base_url),
        path_template=settings.upstream_path_template,
        timeout=settings.timeout_seconds,
    )
    fetcher = ResilientRateFetcher(client.fetch, ResiliencePolicy.from_settings(settings))
    return RateService(
        cache=RateCache(store, ttl_seconds=settings.rates_cache_ttl_seconds),
        fetcher=fetcher,
        supported_currencies=settings.supported_currencies,
        client=client,
    )


# Singleton dependency helper used by FastAPI DI
@lru_cache
def get_rate_service() -> RateService:
    return build_rate_service(get_settings())


def close_rate_service() -> None:
    """Close the singleton if it was ever built; the next call rebuilds it."""
    if get_rate_service.cache_info().currsize:
        get_rate_service().close()
    get_rate_service.cache_clear()
