from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from .core.config import get_settings, Settings
from .core.logging import init_logging, request_context_middleware
from .core import errors
from .routers import exchange, health
from .services.rate_service import build_rate_service, close_rate_service
from .services.rates.errors import UnsupportedCurrencyError


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Release the HTTP client and fetch worker pool on shutdown
    service = getattr(app.state, "rate_service", None)
    if service is not None:
        service.close()
    else:
        close_rate_service()


def create_app(settings_override: Settings | None = None) -> FastAPI:
    """Application factory.

    settings_override: pass an already constructed Settings instance for tests
    to isolate environment. Falls back to cached get_settings().
    """
    settings = settings_override or get_settings()
    if settings_override is not None:
        settings.init_post_load()
    # Initialize logging early
    init_logging(debug=settings.debug)

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        version=settings.version,
        lifespan=lifespan,
    )

    # Middleware (request id / structured logging)
    app.middleware("http")(request_context_middleware)

    # Error handlers
    app.add_exception_handler(StarletteHTTPException, errors.http_error_handler)
    app.add_exception_handler(UnsupportedCurrencyError, errors.unsupported_currency_handler)
    app.add_exception_handler(RequestValidationError, errors.validation_error_handler)
    app.add_exception_handler(Exception, errors.server_error_handler)

    # Routers
    app.include_router(health.router)
    app.include_router(exchange.router)

    if settings_override is not None:
        service = build_rate_service(settings)
        app.state.rate_service = service
        app.dependency_overrides[exchange.get_service] = lambda: service

    @app.get("/")
    async def root():
        return {"message": "Exchange Rate API", "version": settings.version}

    return app


app = create_app()
