"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from coinfolio.config.settings import get_settings
from coinfolio.config.logging_config import setup_logging
from coinfolio.repositories.sqlalchemy.database import init_db
from coinfolio.api.routers import portfolio_router, market_router
from coinfolio.app_context import get_app_context
from coinfolio.core.exceptions import AppError, NoDataAvailableError, NotFoundError


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    setup_logging(log_to_file=get_settings().log_to_file)
    init_db()
    yield
    get_app_context().close()


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description="Crypto portfolio tracking with resilient market data",
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(portfolio_router)
app.include_router(market_router)


def status_for(exc: AppError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, NoDataAvailableError):
        return 503
    return 400


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Global handler for application errors."""
    return JSONResponse(
        status_code=status_for(exc),
        content={"error": exc.code, "message": exc.message},
    )


@app.get("/health")
def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
