"""
Platform Manifest API - Main Application
HTTP interface over the platform_manifest worker.
"""
import logging
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import settings
from app.routers import platform_manifest

_log = logging.getLogger(__name__)


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title=settings.API_TITLE,
    description="Inspect managed assemblies and produce shared-framework platform manifests",
    version=settings.API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return 422 with structured error details."""
    body = await request.body()
    _log.warning(
        "422 on %s %s  body[:200]=%s  errors=%s",
        request.method, request.url.path, body[:200], exc.errors()[:3],
    )
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "platform-manifest-api",
        "version": settings.API_VERSION
    }


# =============================================================================
# Register Routers
# =============================================================================

app.include_router(platform_manifest.router, prefix="/platform-manifest", tags=["platform-manifest"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True  # For development
    )
