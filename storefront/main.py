# storefront/main.py
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.core.config import Settings, get_settings
from storefront.core.errors import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from storefront.database import create_db_and_tables, create_db_engine
from storefront.repositories.cart_repo import CartRepository
from storefront.repositories.order_repo import OrderRepository
from storefront.repositories.product_repo import ProductRepository
from storefront.schemas.common import ErrorBody, ErrorResponse
from storefront.services.cart_service import CartService
from storefront.services.order_service import OrderService

# Routers
from storefront.routers.cart import router as cart_router
from storefront.routers.health import router as health_router
from storefront.routers.orders import router as orders_router

logger = logging.getLogger("storefront")

# Error codes for framework-raised HTTP errors (unknown route, bad method...)
HTTP_ERROR_CODES = {
    cls.status_code: cls.code
    for cls in (ValidationError, UnauthorizedError, ForbiddenError, NotFoundError, ConflictError)
}


def _error_response(status_code: int, message: str, code: str, details=None) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(message=message, code=code, details=details))
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body, exclude_none=True),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Render every failure as {"success": false, "error": {...}}.
    """

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(exc.status_code, exc.message, exc.code, exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error_response(
            400,
            "Validation error",
            "VALIDATION_ERROR",
            [
                {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                for err in exc.errors()
            ],
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        return _error_response(exc.status_code, str(exc.detail), code)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(500, "Internal server error", "INTERNAL_ERROR")


def create_app(settings: Settings | None = None, engine: Engine | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    `engine` may be injected (tests); otherwise one is created from
    DATABASE_URL during startup and disposed on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Startup:
          - Build the engine, verify DB connectivity and create tables.
          - Sweep expired carts (SWEEP_EXPIRED_CARTS_ON_STARTUP).

        Shutdown:
          - Dispose the engine if we created it.
        """
        owns_engine = engine is None
        app.state.engine = engine or create_db_engine(
            settings.DATABASE_URL,
            echo=settings.DATABASE_ECHO,
            ssl_required=settings.DATABASE_SSL_REQUIRED,
        )

        logger.info("Startup: connecting to database...")
        try:
            create_db_and_tables(app.state.engine)
            logger.info("Startup: DB connection OK, tables verified.")
        except Exception as e:
            logger.error("Startup: DB connection FAILED: %s", e)
            raise

        if settings.SWEEP_EXPIRED_CARTS_ON_STARTUP:
            with Session(app.state.engine) as session:
                deleted = app.state.cart_service.cleanup_expired_carts(session)
            logger.info("Startup: removed %d expired cart(s).", deleted)

        yield

        if owns_engine:
            app.state.engine.dispose()
            logger.info("Shutdown: database engine disposed.")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version="0.1.0",
        lifespan=lifespan,
    )

    # Services and settings for this app instance
    app.state.settings = settings
    product_repo = ProductRepository()
    cart_repo = CartRepository()
    app.state.cart_service = CartService(cart_repo, product_repo, settings)
    app.state.order_service = OrderService(
        OrderRepository(), cart_repo, product_repo, settings
    )

    # --- CORS configuration ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Versioned API prefix, e.g. /api/v1
    app.include_router(health_router, prefix=settings.API_V1_STR)
    app.include_router(cart_router, prefix=settings.API_V1_STR)
    app.include_router(orders_router, prefix=settings.API_V1_STR)

    @app.get("/")
    def root():
        """Root endpoint."""
        return {"status": "ok", "service": "storefront"}

    return app


logging.basicConfig(level=get_settings().LOG_LEVEL)

app = create_app()
