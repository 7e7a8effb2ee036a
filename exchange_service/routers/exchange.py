from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from starlette import status

from exchange_service.models.quote import ErrorResponse, QuoteResponse
from exchange_service.services.rate_service import RateService, get_rate_service

"""Exchange router: current quote per currency and cache invalidation.

Endpoints:
    - GET /exchange/{currency}           -> quote (header `no-cache: true` bypasses the cache)
    - DELETE /exchange/{currency}/cache  -> drop the cached quote

Endpoints are plain `def` so FastAPI runs the blocking upstream call in its
threadpool.
"""

router = APIRouter(prefix="/exchange", tags=["exchange"])
logger = logging.getLogger("exchange_service.routers.exchange")

UNAVAILABLE = ErrorResponse(
    error="Exchange rate service unavailable",
    message="Unable to retrieve exchange rates at this time",
)


def get_service() -> RateService:
    return get_rate_service()


@router.get(
    "/{currency}",
    summary="Current exchange rate for a currency",
    response_model=QuoteResponse,
    responses={503: {"model": ErrorResponse}},
)
def get_exchange_rate(
    currency: str,
    no_cache: Optional[str] = Header(None, description="'true' bypasses the cache"),
    svc: RateService = Depends(get_service),
):
    bypass = (no_cache or "").strip().lower() == "true"
    quote = svc.get_rate(currency, bypass_cache=bypass)
    if quote is None:
        logger.error("unable to retrieve %s exchange rate", currency.upper())
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=UNAVAILABLE.model_dump(),
        )
    return QuoteResponse.from_quote(quote)


@router.delete("/{currency}/cache", summary="Invalidate the cached quote")
def invalidate_exchange_rate(
    currency: str,
    svc: RateService = Depends(get_service),
):
    svc.invalidate(currency)
    return {"status": "invalidated", "currency": currency.upper()}
