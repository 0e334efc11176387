import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mcp_installer.api import health, registry
from mcp_installer.core.config import Settings
from mcp_installer.core.context import InstallerContext
from mcp_installer.core.errors import MCPRegistryError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    context: InstallerContext = app.state.context
    logger.info("MCP Registry Installer starting up...")
    await context.start()
    logger.info(f"Using MCP configuration at {context.store.path}")
    yield
    logger.info("MCP Registry Installer shutting down...")
    await context.aclose()


def create_app(settings: Optional[Settings] = None, context: Optional[InstallerContext] = None) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Installs MCP servers from an MCP registry into a shared configuration document",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.context = context or InstallerContext.from_settings(settings)

    @app.exception_handler(MCPRegistryError)
    async def registry_exception_handler(request: Request, exc: MCPRegistryError):
        if exc.status_code >= 500:
            logger.error(f"[{type(exc).__name__}] on {request.url}: {exc.message}")
        else:
            logger.warning(f"[{type(exc).__name__}] on {request.url}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # Add validation error handler to log 422 errors
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.error(f"[VALIDATION ERROR] on {request.url}: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    app.include_router(health.router, prefix=f"{settings.API_V1_STR}/health", tags=["health"])
    app.include_router(registry.router, prefix=f"{settings.API_V1_STR}/registry", tags=["registry"])

    return app


app = create_app()
