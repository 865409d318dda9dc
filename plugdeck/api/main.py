"""
plugdeck FastAPI application.

Host-facing HTTP surface of the plugin runtime: manifest listing, settings
validation and display, capability-filtered menus, event payload previews and
Prometheus metrics.
"""

import os
import time
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response

from plugdeck.config import RuntimeSettings
from plugdeck.observability.logging import api_logger, generate_request_id, set_request_context
from plugdeck.observability.metrics import runtime_metrics
from plugdeck.plugins.errors import (
    ManifestMalformed, ManifestNotFound, SchemaProgrammerError,
)
from plugdeck.plugins.loader import ManifestLoader
from plugdeck.plugins.manifest import Manifest
from plugdeck.plugins.menu import MenuComposer, parse_capabilities
from plugdeck.plugins.validator import apply_defaults, validate
from plugdeck.security.sanitizer import mask_config, sanitize

from .schemas import (
    ConfigDisplayResponse, ConfigSubmission, ConfigValidationResponse, ErrorResponse,
    HealthResponse, MenuResponse, PluginSummary, SanitizeRequest, SanitizeResponse,
)

VERSION = os.getenv("VERSION", "0.1.0")

logger = api_logger


async def _load_or_raise(loader: ManifestLoader, plugin_key: str) -> Manifest:
    try:
        return await loader.load(plugin_key)
    except ManifestNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict())
    except ManifestMalformed as e:
        raise HTTPException(status_code=422, detail=e.to_dict())


def create_app(settings: Optional[RuntimeSettings] = None) -> FastAPI:
    settings = settings or RuntimeSettings.from_environment()
    loader = settings.make_loader()
    composer = MenuComposer(
        loader,
        mount_root=settings.mount_root,
        generated_items=settings.menu_generated_items,
    )

    app = FastAPI(
        title="plugdeck",
        description="Plugin extensibility runtime: manifests, settings validation, menus and jobs.",
        version=VERSION,
        openapi_tags=[
            {"name": "plugins", "description": "Manifest listing and settings validation"},
            {"name": "menus", "description": "Capability-filtered navigation"},
            {"name": "events", "description": "Event payload sanitization"},
            {"name": "health", "description": "System health and monitoring endpoints"},
        ],
    )
    app.state.settings = settings
    app.state.loader = loader
    app.state.composer = composer

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception("Unhandled exception in API request")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="InternalServerError",
                message="An unexpected error occurred. Please try again later.",
                request_id=getattr(request.state, 'request_id', None),
                timestamp=datetime.now(timezone.utc),
            ).model_dump(mode="json"),
        )

    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        """Add request ID and request logging."""
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        logger.info(
            f"{request.method} {request.url.path}",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=round(duration_ms, 2),
            event_type="api_request",
        )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health():
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc),
            version=VERSION,
            plugins_dir=str(loader.plugins_dir),
            plugins_discovered=len(loader.discover()),
        )

    @app.get("/metrics", tags=["health"])
    async def metrics():
        return Response(content=runtime_metrics.export(), media_type=runtime_metrics.content_type)

    @app.get("/plugins", response_model=List[PluginSummary], tags=["plugins"])
    async def list_plugins():
        """List enabled plugins; broken manifests are reported, not fatal."""
        summaries = []
        for outcome in await loader.load_many(settings.plugin_keys(loader)):
            if outcome.ok:
                m = outcome.manifest
                summaries.append(PluginSummary(
                    key=outcome.plugin_key, ok=True, name=m.name, version=m.version,
                    description=m.description, jobs=len(m.jobs),
                ))
            else:
                summaries.append(PluginSummary(key=outcome.plugin_key, ok=False, error=outcome.error.to_dict()))
        return summaries

    @app.get("/plugins/{plugin_key}", tags=["plugins"])
    async def get_plugin(plugin_key: str):
        manifest = await _load_or_raise(loader, plugin_key)
        return manifest.summary()

    @app.post("/plugins/{plugin_key}/config/validate", response_model=ConfigValidationResponse, tags=["plugins"])
    async def validate_config(plugin_key: str, submission: ConfigSubmission):
        manifest = await _load_or_raise(loader, plugin_key)
        values = submission.config
        if submission.apply_defaults:
            values = apply_defaults(manifest, values)
        try:
            errors = validate(manifest, values)
        except SchemaProgrammerError as e:
            e.plugin_key = plugin_key
            logger.error(f"Plugin settings schema defect: {e}", plugin_key=plugin_key, field=e.field)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.to_dict())

        runtime_metrics.record_config_validation(plugin_key, not errors)
        if errors:
            raise HTTPException(
                status_code=422,
                detail={"errors": [e.to_dict() for e in errors]},
            )
        return ConfigValidationResponse(valid=True, config=mask_config(manifest.settings_schema, values))

    @app.post("/plugins/{plugin_key}/config/display", response_model=ConfigDisplayResponse, tags=["plugins"])
    async def display_config(plugin_key: str, submission: ConfigSubmission):
        manifest = await _load_or_raise(loader, plugin_key)
        return ConfigDisplayResponse(
            plugin_key=plugin_key,
            config=mask_config(manifest.settings_schema, submission.config),
        )

    @app.get("/menus", response_model=MenuResponse, tags=["menus"])
    async def menus(plugin: Optional[List[str]] = Query(None),
                    x_scopes: Optional[str] = Header(None)):
        """Compose menus for the requested plugins, filtered by the caller's scopes."""
        keys = plugin or settings.plugin_keys(loader)
        composition = await composer.compose_and_filter(keys, parse_capabilities(x_scopes))
        return composition.to_dict()

    @app.post("/events/sanitize", response_model=SanitizeResponse, tags=["events"])
    async def sanitize_event(request: SanitizeRequest):
        return SanitizeResponse(payload=sanitize(request.payload, extra_keys=request.extra_keys))

    return app


app = create_app()
