from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from storyforge.core.config import settings
from storyforge.models import story  # noqa: F401  registers the tables on SQLModel.metadata

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def build_engine(url: str = settings.DATABASE_URL) -> AsyncEngine:
    """
    Creates the async engine for a database URL.

    SQLite connections wait on a locked database instead of failing at once,
    so overlapping requests serialize their writes.
    """
    connect_args = {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS} if url.startswith("sqlite") else {}
    return create_async_engine(url, echo=False, future=True, connect_args=connect_args)


def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    # Records are read into immutable schemas right after each commit, so nothing needs expiring.
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async_engine = build_engine()
AsyncSessionLocal = build_session_factory(async_engine)


async def init_db(engine: AsyncEngine = None):
    """
    Creates the stories, story_contents and story_choices tables if they are missing.
    """
    async with (engine or async_engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_db():
    await async_engine.dispose()


async def get_session() -> AsyncSession:
    """
    Dependency yielding one session per request.
    """
    async with AsyncSessionLocal() as session:
        yield session
