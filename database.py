from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool
from config import DATABASE_URL_ASYNC, SQL_ECHO


def build_engine(url: str = DATABASE_URL_ASYNC):
    if url.startswith("sqlite"):
        # aiosqlite connections are not shared across event loops
        return create_async_engine(url, echo=SQL_ECHO, future=True, poolclass=NullPool,
                                   connect_args={"check_same_thread": False})
    return create_async_engine(url, echo=SQL_ECHO, future=True)


async_engine = build_engine()
async_session_maker = sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()

async def init_models():
    import models  # noqa: F401
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def dispose_engine():
    await async_engine.dispose()

async def get_db():
    async with async_session_maker() as session:
        yield session
