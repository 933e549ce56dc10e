"""
API endpoints for health checks.
"""

from fastapi import APIRouter, Request

from models.responses import HealthResponse
from .params import get_gateway

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    return HealthResponse(**get_gateway(request).stats())
