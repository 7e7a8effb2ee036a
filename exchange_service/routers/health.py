from fastapi import APIRouter, Depends

from exchange_service.routers.exchange import get_service
from exchange_service.services.rate_service import RateService

router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness plus per-currency circuit state")
def health(svc: RateService = Depends(get_service)):
    return {"status": "ok", "circuits": svc.circuit_states()}
