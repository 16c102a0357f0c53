"""
Admin / observability endpoints
===============================

GET /api/v1/admin/open-requests -- SEARCHING requests per vehicle type
GET /api/v1/admin/health        -- simple health check
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.dependencies import get_db
from marketplace.api.middleware import limiter
from marketplace.api.schemas import HealthResponse, OpenRequestsResponse
from marketplace.infrastructure.repositories import RequestRepository

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/open-requests",
    response_model=OpenRequestsResponse,
    summary="Count open requests by vehicle type",
)
@limiter.limit("100/minute")
async def get_open_requests(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    counts = await RequestRepository(db).count_open_by_vehicle()
    return OpenRequestsResponse(total=sum(counts.values()), by_vehicle_type=counts)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
