"""consent-engine service entry point.

Builds the FastAPI application with:
- The configured data adapter (in-memory or SQLAlchemy)
- A ServiceRegistry handing out one service instance per adapter
- Exception handlers mapping consent engine errors to HTTP statuses

Run with ``uvicorn consent_engine.main:app``.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from consent_engine.adapters.memory import InMemoryDataAdapter
from consent_engine.adapters.repositories import SqlAlchemyDataAdapter
from consent_engine.api.errors import register_exception_handlers
from consent_engine.api.router import router
from consent_engine.core.services import ServiceRegistry
from consent_engine.observability import configure_logging, get_logger
from consent_engine.settings import Settings

logger = get_logger(__name__)


def create_data_adapter(settings: Settings) -> Any:
    """Build the data adapter selected by ``settings.data_adapter``.

    Args:
        settings: Service settings.

    Returns:
        An object implementing IDataAdapter.
    """
    if settings.data_adapter == "sqlalchemy":
        return SqlAlchemyDataAdapter.from_url(settings.database_url, echo=settings.database_echo)
    return InMemoryDataAdapter()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    Configures logging and initializes the data adapter on startup; closes the
    adapter on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    settings: Settings = app.state.settings
    configure_logging(settings.log_level, json_output=settings.log_json)

    adapter = app.state.data_adapter
    logger.info(
        "Initializing data adapter",
        service=settings.service_name,
        data_adapter=type(adapter).__name__,
    )
    await adapter.initialize()
    logger.info("Consent engine startup complete")

    yield

    logger.info("Shutting down consent engine")
    await adapter.close()
    logger.info("Consent engine shutdown complete")


def create_app(settings: Settings | None = None, data_adapter: Any | None = None) -> FastAPI:
    """Create the consent engine FastAPI application.

    Args:
        settings: Service settings; read from the environment when omitted.
        data_adapter: Adapter to use instead of the one ``settings`` selects.

    Returns:
        The configured FastAPI application.
    """
    settings = settings or Settings()
    application = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)

    application.state.settings = settings
    application.state.data_adapter = data_adapter if data_adapter is not None else create_data_adapter(settings)
    application.state.registry = ServiceRegistry()

    register_exception_handlers(application)
    application.include_router(router, prefix=settings.api_prefix)
    return application


app: FastAPI = create_app()
