"""
FastAPI application factory for SchemaBridge.

This module creates the HTTP surface with:
- CORS configuration
- Batch conversion and ConversionReview endpoints
- Read-only kind listing
- Migration bookkeeping endpoints (when a MigrationManager is wired in)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .._version import __version__
from ..conversion.registry import ConversionRegistry
from ..errors import (
    BatchTooLargeError,
    MalformedObjectError,
    MigrationInProgressError,
    UnknownKindError,
    UnknownMigrationError,
)
from ..migration.manager import MigrationManager
from .service import ConversionRequest, ConversionService
from .settings import HttpSettings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["SchemaBridge"])


# --- Request/Response Models ---


class MigrationStartRequest(BaseModel):
    """Request to migrate a kind to its storage version."""

    kind: str = Field(..., description="Resource kind to migrate")


class MigrationStateResponse(BaseModel):
    """Handle and state of a migration run."""

    handle: str
    state: str


# --- Dependencies ---


def get_service(request: Request) -> ConversionService:
    """Get the conversion service from app state."""
    return request.app.state.service


def get_registry(request: Request) -> ConversionRegistry:
    """Get the conversion registry from app state."""
    return request.app.state.registry


def get_manager(request: Request) -> MigrationManager:
    """Get the migration manager from app state."""
    manager = request.app.state.manager
    if manager is None:
        raise HTTPException(status_code=503, detail="Migrations are not enabled")
    return manager


def _error_body(error: Any) -> dict[str, Any]:
    return {"code": error.code, "message": error.message, "details": error.details}


# --- Conversion Routes ---


@router.post("/convert")
def convert(
    body: ConversionRequest,
    service: ConversionService = Depends(get_service),
):
    """
    Convert a batch of objects to one API version.

    Results are positionally aligned with the request's objects; item
    failures are reported inline and never fail the request.
    """
    try:
        response = service.convert(body)
    except BatchTooLargeError as e:
        raise HTTPException(status_code=413, detail=_error_body(e))
    return JSONResponse(content=response.to_wire())


@router.post("/conversionreview")
def conversion_review(
    review: dict[str, Any],
    service: ConversionService = Depends(get_service),
):
    """Kubernetes-style ConversionReview webhook."""
    try:
        return JSONResponse(content=service.review(review))
    except (MalformedObjectError, BatchTooLargeError) as e:
        raise HTTPException(status_code=400, detail=_error_body(e))


@router.get("/kinds")
async def list_kinds(registry: ConversionRegistry = Depends(get_registry)):
    """List registered kinds with versions in priority order."""
    kinds = []
    for resource in registry.kinds():
        version_set = resource.version_set
        kinds.append(
            {
                "kind": resource.kind,
                "group": resource.group,
                "versions": version_set.names,
                "served": version_set.served,
                "storage_version": version_set.storage_version,
                "fingerprint": resource.graph.fingerprint,
            }
        )
    return {"kinds": kinds, "fingerprint": registry.fingerprint}


# --- Migration Routes ---


@router.post("/migrations", response_model=MigrationStateResponse, status_code=202)
async def start_migration(
    body: MigrationStartRequest,
    manager: MigrationManager = Depends(get_manager),
):
    """Start migrating a kind's persisted objects to its storage version."""
    try:
        handle = await manager.start_migration(body.kind)
    except UnknownKindError as e:
        raise HTTPException(status_code=404, detail=_error_body(e))
    except MigrationInProgressError as e:
        raise HTTPException(status_code=409, detail=_error_body(e))
    state = await manager.status(handle)
    return MigrationStateResponse(handle=handle, state=state.value)


@router.get("/migrations/{handle}")
async def get_migration(handle: str, manager: MigrationManager = Depends(get_manager)):
    """Status and progress summary of a migration."""
    try:
        cursor = await manager.cursor(handle)
    except UnknownMigrationError as e:
        raise HTTPException(status_code=404, detail=_error_body(e))
    return cursor.summary()


@router.post("/migrations/{handle}/resume", response_model=MigrationStateResponse)
async def resume_migration(handle: str, manager: MigrationManager = Depends(get_manager)):
    """Resume a failed or interrupted migration from its checkpoint."""
    try:
        state = await manager.resume(handle)
    except UnknownMigrationError as e:
        raise HTTPException(status_code=404, detail=_error_body(e))
    except UnknownKindError as e:
        raise HTTPException(status_code=404, detail=_error_body(e))
    except MigrationInProgressError as e:
        raise HTTPException(status_code=409, detail=_error_body(e))
    return MigrationStateResponse(handle=handle, state=state.value)


@router.post("/migrations/{handle}/cancel", response_model=MigrationStateResponse)
async def cancel_migration(handle: str, manager: MigrationManager = Depends(get_manager)):
    """Request cancellation; the run stops before its next object."""
    try:
        manager.cancel(handle)
    except UnknownMigrationError as e:
        raise HTTPException(status_code=404, detail=_error_body(e))
    state = await manager.status(handle)
    return MigrationStateResponse(handle=handle, state=state.value)


def create_http_app(
    service: ConversionService,
    manager: MigrationManager | None = None,
    registry: ConversionRegistry | None = None,
    settings: HttpSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Conversion service handling /v1/convert
        manager: Migration manager (migration routes answer 503 without one)
        registry: Registry listed by /v1/kinds (defaults to the service's)
        settings: HTTP settings (loaded from the environment if omitted)
    """
    settings = settings or HttpSettings()

    app = FastAPI(
        title="SchemaBridge",
        description="Version conversion and storage migration for versioned resources.",
        version=__version__,
    )
    app.state.service = service
    app.state.manager = manager
    app.state.registry = registry or service.registry
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/v1")

    # Health endpoint at root
    @app.get("/health")
    async def health():
        registry = app.state.registry
        return {
            "status": "healthy",
            "service": "schemabridge",
            "frozen": registry.frozen,
            "fingerprint": registry.fingerprint,
        }

    return app
