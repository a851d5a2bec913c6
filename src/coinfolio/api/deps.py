"""Dependency injection for FastAPI."""

from fastapi import Depends

from coinfolio.app_context import AppContext, get_app_context
from coinfolio.services import PortfolioService


def get_context() -> AppContext:
    """Provide the process-wide AppContext."""
    return get_app_context()


def get_portfolio_service(context: AppContext = Depends(get_context)) -> PortfolioService:
    """Provide the PortfolioService instance."""
    return context.portfolio
