# src/activitypub_stage/main.py
"""Main entry point for the ActivityPub federation service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from activitypub_stage import __version__
from activitypub_stage.api.v1 import (
    actors_router,
    admin_router,
    inbox_router,
    notes_router,
    settings_router,
    webfinger_router,
)
from activitypub_stage.core.errors import FederationError
from activitypub_stage.core.logging import configure_logging
from activitypub_stage.core.settings import settings
from activitypub_stage.db.session import SessionLocal
from activitypub_stage.services import get_services
from activitypub_stage.services.delivery import DeliveryWorker

logger = logging.getLogger(__name__)

configure_logging()

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="ActivityPub federation for users, subs and posts",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Federation surface lives at the root; the settings and admin APIs are versioned
app.include_router(webfinger_router)
app.include_router(actors_router)
app.include_router(notes_router)
app.include_router(inbox_router)
app.include_router(settings_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.exception_handler(FederationError)
async def federation_error_handler(request: Request, exc: FederationError) -> JSONResponse:
    """Report federation failures with a generic message; details stay in the logs."""
    if exc.status_code >= 500:
        logger.error("Federation error on %s %s: %s", request.method, request.url.path, exc)
    else:
        logger.debug("Federation error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.on_event("startup")
async def on_startup() -> None:
    services = get_services()
    if services.config.enabled and settings.provision_instance_on_startup:
        with SessionLocal() as db:
            actor = services.directory.provision_instance(db)
            db.commit()
        logger.info("Instance actor ready at %s", actor.actor_uri)
    if services.config.enabled and settings.delivery_worker_enabled:
        worker = DeliveryWorker(services.delivery, SessionLocal)
        await worker.start()
        app.state.delivery_worker = worker
        logger.info("Delivery worker started")
    else:
        app.state.delivery_worker = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: DeliveryWorker | None = getattr(app.state, "delivery_worker", None)
    if worker:
        await worker.stop()
    await get_services().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("activitypub_stage.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
