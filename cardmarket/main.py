"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from cardmarket import __version__
from cardmarket.api import EmailClient, PushClient
from cardmarket.config import Settings, get_settings
from cardmarket.database import Database
from cardmarket.errors import register_error_handlers
from cardmarket.rate_limit import RateLimiter
from cardmarket.routes.admin import router as admin_router
from cardmarket.routes.favorites import router as favorites_router
from cardmarket.routes.listings import router as listings_router
from cardmarket.routes.offers import router as offers_router
from cardmarket.routes.orders import router as orders_router
from cardmarket.routes.users import router as users_router
from cardmarket.routes.wanted import router as wanted_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    email_client: Optional[EmailClient] = None,
    push_client: Optional[PushClient] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Build the app. Anything not injected is constructed from settings at startup."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Starting CardMarket API...")
        logger.info(f"Environment: {settings.environment}")

        owns_database = app.state.database is None
        if owns_database:
            app.state.database = Database(settings.database_url)

        # Create tables (for development; use Alembic migrations in production)
        if settings.environment == "development":
            app.state.database.create_all()

        if app.state.rate_limiter is None:
            app.state.rate_limiter = RateLimiter.from_url(settings.redis_url, enabled=settings.rate_limit_enabled)

        yield

        # Shutdown
        logger.info("Shutting down CardMarket API...")
        if owns_database:
            app.state.database.dispose()

    app = FastAPI(
        title="CardMarket",
        description="Trading card marketplace: listings, offers and orders",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.rate_limiter = rate_limiter
    app.state.email_client = email_client or EmailClient(
        settings.email_api_url, settings.email_api_key, settings.email_from
    )
    app.state.push_client = push_client or PushClient(settings.push_api_url, settings.push_api_key)

    register_error_handlers(app)

    # Include routes
    app.include_router(listings_router, prefix="/api/listings", tags=["listings"])
    app.include_router(offers_router, prefix="/api/offers", tags=["offers"])
    app.include_router(orders_router, prefix="/api/orders", tags=["orders"])
    app.include_router(wanted_router, prefix="/api/wanted", tags=["wanted"])
    app.include_router(favorites_router, prefix="/api/favorites", tags=["favorites"])
    app.include_router(users_router, prefix="/api/users", tags=["users"])
    app.include_router(admin_router, prefix="/api/admin", tags=["admin"])

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "app": "CardMarket",
            "version": __version__,
        }

    @app.get("/health")
    async def health_check():
        """Detailed health check."""
        return {
            "status": "healthy",
            "environment": settings.environment,
            "schedulerEnabled": settings.scheduler_enabled,
            "emailConfigured": app.state.email_client.configured,
        }

    return app


app = create_app()
