"""
PixelCore HTTP Service

Serves the background removal and upscaling pipelines over FastAPI.
One ResourceGovernor lives on app.state for the life of the process;
its periodic sweep starts with the app and is stopped, with every
surface released, on shutdown.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from pixelcore.core.config import settings
from pixelcore.core.logging import setup_logging, get_logger
from pixelcore.core.exceptions import register_exception_handlers
from pixelcore.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from pixelcore.api.v1 import api_v1_router
from pixelcore.api.dependencies import build_governor

setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)

# Provenance headers set by the processing endpoints
RESULT_HEADERS = [
    "X-Job-Id",
    "X-Algorithms-Used",
    "X-Processing-Time-Ms",
    "X-Quality-Metrics",
    "X-Scale-Factor",
    "X-Confidence",
    "X-Image-Dimensions",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the governor: build and start it on startup, drain it on shutdown."""
    started = time.perf_counter()
    set_app_info(version=settings.APP_VERSION, environment=settings.ENVIRONMENT)

    governor = build_governor()
    governor.start()
    app.state.governor = governor

    logger.info(
        "service_ready",
        app_name=settings.APP_NAME,
        environment=settings.ENVIRONMENT,
        max_active_operations=governor.max_active_operations,
        startup_ms=int((time.perf_counter() - started) * 1000)
    )

    try:
        yield
    finally:
        await governor.stop()
        logger.info("service_stopped")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Heuristic image processing without ML models:

    - **Background Removal**: object, edge, color and position masks fused into alpha
    - **Upscaling**: up to 3x with content-aware strategy selection and enhancement
    - **Safety**: dimension clamping, admission control and surface sweeps

    Results come back as the encoded image; provenance travels in `X-*` headers.
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=RESULT_HEADERS,
)


@app.middleware("http")
async def observe_request(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    path = request.url.path
    http_request_duration_seconds.labels(method=request.method, endpoint=path).observe(elapsed)
    http_requests_total.labels(method=request.method, endpoint=path, status=response.status_code).inc()
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    return response


register_exception_handlers(app)
app.include_router(api_v1_router)


@app.get("/", tags=["root"])
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "endpoints": ["/api/v1/background-removal", "/api/v1/upscale", "/api/v1/metrics"]
    }


@app.get("/health", tags=["health"])
async def health(request: Request):
    """Liveness plus the governor's current load."""
    governor = request.app.state.governor
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "active_operations": governor.active_operations,
        "active_handles": governor.active_handles,
        "max_active_operations": governor.max_active_operations
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pixelcore.main:app", host="0.0.0.0", port=8000, log_level="info")
