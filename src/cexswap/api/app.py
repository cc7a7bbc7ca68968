"""FastAPI application factory."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cexswap.api.dependencies import close_dependencies
from cexswap.api.middleware import RequestLoggingMiddleware
from cexswap.config import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    yield
    # Shutdown
    await close_dependencies()


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies as 400 with the field errors."""
    return JSONResponse(
        status_code=400,
        content={"success": False, "errors": jsonable_encoder(exc.errors())},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="cexswap API",
        description="Cross-asset swaps through a centralized exchange",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Register routes
    from cexswap.api.routers import exchange, symbols, tokens
    from cexswap.api.routes import health

    app.include_router(health.router, tags=["Health"])
    app.include_router(exchange.router, tags=["Exchange"])
    app.include_router(symbols.router, tags=["Symbols"])
    app.include_router(tokens.router, tags=["Tokens"])

    return app


# Default app instance
app = create_app()
