from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from telequeue.core.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO, future=True)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def init_db(bind=None):
    # Import models so they are registered on the metadata
    from telequeue.db import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session
