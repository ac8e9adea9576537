from fastapi import APIRouter

from app.api import auth
from app.schemas.common import HealthResponse

api_router = APIRouter()


@api_router.get("/health", tags=["health"], response_model=HealthResponse)
def api_health_check() -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    return HealthResponse(status="ok", service="api")


api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(auth.gate_router, prefix="/auth/gate", tags=["abuse-gate"])
