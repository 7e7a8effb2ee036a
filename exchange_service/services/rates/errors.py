from __future__ import annotations

"""Error taxonomy for fetching rates.

UpstreamError is raised by the HTTP client for a single failed call. The
resilience layer translates it into NotFoundError / TransientError and, once
retries are exhausted or the circuit is open, into UnavailableError. The rate
service turns all three into an absent result. CacheFault never leaves the
cache.
"""
from typing import Optional


class RateFetchError(Exception):
    """Base class for failures surfaced by the resilience layer."""

    def __init__(self, message: str, *, currency: Optional[str] = None) -> None:
        super().__init__(message)
        self.currency = currency


class NotFoundError(RateFetchError):
    """Upstream has no data for the currency. Never retried."""


class UnavailableError(RateFetchError):
    """Circuit open or retries exhausted."""


class TransientError(RateFetchError):
    """Single-attempt network, timeout or payload fault. Eligible for retry."""


class UpstreamError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.cause = cause

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class CacheFault(Exception):
    """Serialization or storage failure inside the rate cache."""


class UnsupportedCurrencyError(ValueError):
    def __init__(self, currency: str) -> None:
        super().__init__(f"Unsupported currency '{currency}'")
        self.currency = currency
