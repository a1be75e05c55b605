"""GET /health – liveness check."""

from fastapi import APIRouter, Depends

from rabbitmq_admin.clients.pool import ClientPool
from rabbitmq_admin.deps import get_client_pool
from rabbitmq_admin.models import HealthResponse

router = APIRouter(tags=["ops"])


@router.get("/health", response_model=HealthResponse)
async def health(pool: ClientPool = Depends(get_client_pool)) -> HealthResponse:
    """Return service liveness status and the number of pooled cluster clients."""
    return HealthResponse(pooled_clients=pool.size)
