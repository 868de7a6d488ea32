# storefront/database.py
from fastapi import Request
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

# ---------------------------------------------------------
# Engine lifecycle
#
# The engine is built once by the application lifespan
# (see storefront.main) and stored on app.state. Nothing in
# this module holds a connection at import time.
#
# - pool_pre_ping=True: validate connections before using them
# - sslmode=require   : appended for PostgreSQL when
#                       DATABASE_SSL_REQUIRED is set
# ---------------------------------------------------------


def _with_sslmode(db_url: str) -> str:
    if "sslmode=" in db_url:
        return db_url
    if "?" in db_url:
        return db_url + "&sslmode=require"
    return db_url + "?sslmode=require"


def create_db_engine(
    db_url: str,
    *,
    echo: bool = False,
    ssl_required: bool = False,
) -> Engine:
    """
    Build the SQLAlchemy engine for the given URL.

    SQLite URLs get `check_same_thread=False` because FastAPI runs sync
    endpoints in a threadpool.
    """
    if db_url.startswith("sqlite"):
        return create_engine(
            db_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

    if ssl_required and db_url.startswith("postgresql"):
        db_url = _with_sslmode(db_url)

    return create_engine(db_url, echo=echo, pool_pre_ping=True)


def create_db_and_tables(engine: Engine) -> None:
    """
    Create all tables defined in SQLModel metadata if they do not exist.

    This is called once on application startup.
    """
    # Import models so SQLModel metadata is populated before create_all()
    from storefront.models import cart as _cart_models  # noqa: F401
    from storefront.models import order as _order_models  # noqa: F401
    from storefront.models import product as _product_models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session(request: Request):
    """
    FastAPI dependency that yields a SQLModel Session bound to the
    application's engine.

    Usage:

        from fastapi import Depends

        @router.get("/example")
        def example_endpoint(session: Session = Depends(get_session)):
            ...
    """
    with Session(request.app.state.engine) as session:
        yield session
