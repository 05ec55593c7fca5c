"""
API v1 Router Module

All v1 endpoints are prefixed with /api/v1/

- POST /api/v1/background-removal
- POST /api/v1/upscale
- GET  /api/v1/metrics
"""

from fastapi import APIRouter

from pixelcore.api.v1.process import router as process_router
from pixelcore.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(process_router, tags=["processing"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
