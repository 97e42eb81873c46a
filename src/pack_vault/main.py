# src/pack_vault/main.py
"""Main entry point for the Pack Vault application."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pack_vault.api.v1 import content_router, system_router
from pack_vault.core.settings import settings
from pack_vault.services.container import ServiceContainer, build_services
from pack_vault.services.errors import PackAccessError, RateLimited

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Gated, watermarked delivery of purchased pack content",
    version=settings.app_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Range"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Length", "Retry-After"],
)

# Include API routers
app.include_router(content_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.exception_handler(PackAccessError)
async def pack_access_error_handler(request: Request, exc: PackAccessError) -> JSONResponse:
    headers: dict[str, str] = {"Cache-Control": "no-store"}
    if isinstance(exc, RateLimited) and exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.reason}, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected malformed request to %s", request.url.path)
    return JSONResponse(status_code=400, content={"error": "invalid_request"})


@app.on_event("startup")
async def on_startup() -> None:
    services = build_services(settings)
    await services.start()
    app.state.services = services
    logger.info("Pack Vault started (renderer configured: %s)", services.delivery.renderer.enabled)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    services: ServiceContainer | None = getattr(app.state, "services", None)
    if services:
        await services.close()
        app.state.services = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pack_vault.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
