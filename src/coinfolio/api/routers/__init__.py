"""API routers package."""

from coinfolio.api.routers.portfolio import router as portfolio_router
from coinfolio.api.routers.market import router as market_router

__all__ = [
    "portfolio_router",
    "market_router",
]
