import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from kite.api.router import api_router
from kite.config import get_settings
from kite.core.request_context import request_id_var
from kite.dependencies import shutdown_clients
from kite.exceptions import register_exception_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "Starting Kite API: env=%s cache=%s rate_limit=%s/min",
        settings.app_env,
        "off" if settings.disable_cache else f"{settings.cache_ttl_seconds}s",
        settings.rate_limit_requests_per_minute,
    )
    yield
    shutdown_clients()
    logger.info("Kite API stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Kite API",
        description="REST backend for the Kite Kubernetes dashboard",
        version="0.1.0",
        debug=settings.is_debug,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/")
    async def root():
        return {"message": "Kite API"}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()
