# db.py
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .settings import settings

# --- Configuration & Setup ---
logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """Rewrites plain PostgreSQL URLs (as handed out by hosting providers) to the asyncpg driver."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_engine(url: str) -> AsyncEngine:
    """
    Creates the async engine for `url`.

    Pool sizing only applies to PostgreSQL; SQLite (development and tests)
    uses SQLAlchemy's default pool for the driver.
    """
    url = normalize_database_url(url)
    if url.startswith("postgresql+asyncpg://"):
        logger.info("Connecting to PostgreSQL database.")
        # `pool_recycle` stops idle connections being dropped by the network
        # infrastructure between webhook bursts.
        return create_async_engine(
            url,
            echo=False,
            pool_size=10,
            max_overflow=5,
            pool_timeout=30,
            pool_recycle=1800,
        )
    logger.info("Using local SQLite database for development.")
    return create_async_engine(url, echo=False)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    # expire_on_commit=False keeps committed rows readable after the session closes.
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# --- SQLAlchemy Engine & Session ---
engine = build_engine(settings.DATABASE_URL)
async_session_maker = build_session_maker(engine)

# Base class for declarative models. All models in `models.py` inherit from this.
Base = declarative_base()


async def init_models(bind: AsyncEngine) -> None:
    """Create database tables if they do not exist yet."""
    # Import registers the models on Base.metadata.
    from . import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# --- FastAPI Dependencies ---

def get_session_factory() -> async_sessionmaker:
    """
    Provides the session factory used by the fulfillment workflow.

    The workflow opens one short session per stage instead of holding a
    request-wide session across slow vendor calls.
    """
    return async_session_maker

