"""
Main FastAPI application for the gotichat proxy.

The proxy holds no user state: every request carries the caller's Gotify
credentials and is forwarded through one shared MessageGateway.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from gotichat import __version__
from gotichat.gotify.errors import GotifyError
from gotichat.gotify.gateway import MessageGateway, build_gateway
from gotichat.web.api.auth import register_auth_router
from gotichat.web.api.gotify import register_gotify_router
from gotichat.web.api.health import router as health_router

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str, details=None) -> JSONResponse:
    content = {"error": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway: MessageGateway = app.state.gateway
    await gateway.request_cache.start()
    logger.info(f"gotichat proxy started (gotify={gateway.client.base_url or 'unset'})")
    try:
        yield
    finally:
        await gateway.aclose()
        logger.info("gotichat proxy stopped")


def create_app(gateway: Optional[MessageGateway] = None, loader=None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        gateway: Gateway to serve requests with; built from config when omitted
        loader: ConfigLoader to read settings from; defaults to the singleton

    Returns:
        FastAPI: The configured FastAPI application
    """
    if loader is None:
        from gotichat.config.config_loader import config_loader as loader

    if gateway is None:
        gateway = build_gateway(loader)

    app = FastAPI(
        title="gotichat",
        description="Credential-forwarding proxy in front of a Gotify server",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.gateway = gateway
    app.state.settings = {
        "gotify": loader.get_gotify_config(),
        "gateway": loader.get_gateway_config(),
        "server": loader.get_server_config(),
    }

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app.state.settings["server"].get("cors_origins", ["*"]),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GotifyError)
    async def gotify_error_handler(request: Request, exc: GotifyError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return _error_response(exc.status_code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # Pydantic echoes the offending input; keep passwords out of the reply.
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(400, "Invalid request", {"errors": errors})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return _error_response(500, "Internal server error")

    register_auth_router(app)
    register_gotify_router(app)
    app.include_router(health_router)
    logger.debug("API routers registered during app initialization")

    return app


# Create the FastAPI app instance
app = create_app()


def start_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """Start the FastAPI server.

    Args:
        host: Host to bind to
        port: Port to bind to
        reload: Whether to reload on code changes
    """
    logger.info(f"Starting gotichat proxy on {host}:{port}")
    uvicorn.run("gotichat.web.app:app", host=host, port=port, reload=reload, log_config=None)
