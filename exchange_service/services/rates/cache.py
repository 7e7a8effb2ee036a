from __future__ import annotations

"""Rate cache: one JSON-serialized Quote per currency with a fixed TTL.

The cache is a best-effort accelerator. Store outages and corrupt entries are
logged and treated as misses; nothing raised by the backing store ever reaches
the caller.
"""
import logging
from typing import Optional

from exchange_service.models.quote import Quote
from .errors import CacheFault
from .stores import KeyValueStore

logger = logging.getLogger("exchange_service.cache")

KEY_SUFFIX = "exchange-rates"
DEFAULT_TTL_SECONDS = 60


class RateCache:
    def __init__(self, store: KeyValueStore, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key_for(currency: str) -> str:
        return f"{currency.upper()}:{KEY_SUFFIX}"

    def get(self, currency: str) -> Optional[Quote]:
        key = self.key_for(currency)
        try:
            quote = self._read(key)
        except CacheFault:
            logger.warning("cache read failed for %s; treating as miss", key, exc_info=True)
            return None
        if quote is None:
            logger.debug("cache miss %s", key)
        else:
            logger.debug("cache hit %s", key)
        return quote

    def set(self, currency: str, quote: Quote) -> None:
        key = self.key_for(currency)
        try:
            self._write(key, quote)
        except CacheFault:
            logger.warning("cache write failed for %s; continuing without cache", key, exc_info=True)

    def invalidate(self, currency: str) -> None:
        key = self.key_for(currency)
        try:
            self._store.delete(key)
        except Exception:
            logger.warning("cache invalidate failed for %s", key, exc_info=True)
        else:
            logger.debug("cache invalidated %s", key)

    # Internal ---------------------------------------------------
    def _read(self, key: str) -> Optional[Quote]:
        try:
            raw = self._store.get(key)
        except Exception as e:
            raise CacheFault(f"store unavailable reading {key}") from e
        if raw is None:
            return None
        try:
            return Quote.from_json(raw)
        except Exception as e:  # RecursionError on deeply nested junk, among others
            raise CacheFault(f"corrupt entry at {key}") from e

    def _write(self, key: str, quote: Quote) -> None:
        try:
            raw = quote.to_json()
        except Exception as e:
            raise CacheFault(f"cannot serialize quote for {key}") from e
        try:
            self._store.setex(key, self.ttl_seconds, raw)
        except Exception as e:
            raise CacheFault(f"store unavailable writing {key}") from e
