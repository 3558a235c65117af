import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from studyhub.core.config import Settings, settings as default_settings, validate_config
from studyhub.core.logging import configure_logging
from studyhub.core.middleware.metrics import MetricsMiddleware
from studyhub.core.middleware.request_id import RequestIdMiddleware
from studyhub.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from studyhub.core.services import Services, build_services
from studyhub.api import account, billing, generate, health, metrics, realtime


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the API application.

    When services is given it is used as-is (tests); otherwise the lifespan
    hook constructs them from settings at startup and closes them at shutdown.
    """
    cfg = settings or (services.settings if services else default_settings)
    configure_logging(cfg.ENV)
    validate_config(settings_obj=cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("studyhub")
        logger.info("Starting StudyHub backend...")
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = build_services(cfg)
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()
            logger.info("Stopping StudyHub backend...")

    app = FastAPI(title="StudyHub - Backend", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(generate.router)
    app.include_router(billing.router)
    app.include_router(account.router)
    app.include_router(realtime.router)
    app.include_router(health.router)
    app.include_router(metrics.router)

    return app


app = create_app()
