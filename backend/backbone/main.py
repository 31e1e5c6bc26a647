"""Backbone API — FastAPI application exposing data-layer health and diagnostics.

Invariants:
    - Routes registered explicitly (no auto-discovery — ExMA anti-pattern)
    - Global error handlers map BackboneError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Data layer built and started in the lifespan, stored on app.state, stopped on shutdown

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Data layer on app.state instead of a module singleton: tests swap in a fake layer
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backbone.api.error_handlers import register_error_handlers
from backbone.api.routes import health
from backbone.config import get_settings
from backbone.infrastructure.observability import setup_logging
from backbone.services.data_layer import build_data_layer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    layer = build_data_layer(settings)
    app.state.data_layer = layer
    await layer.start()
    logger.info("Backbone API started")
    yield
    logger.info("Backbone API shutting down")
    await layer.stop()
    app.state.data_layer = None


app = FastAPI(
    title="Backbone API", version="1.0.0", lifespan=lifespan,
)

# CORS — configured from settings, not hardcoded
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes — explicit registration (ExMA: no convention-over-config)
app.include_router(health.router)

register_error_handlers(app)
