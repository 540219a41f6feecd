from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.orm import sessionmaker

from .core.config import DATABASE_URL, SQL_ECHO


def build_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO) -> AsyncEngine:
    return create_async_engine(url, echo=echo, future=True)


def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit everything done in the block at once, or roll all of it back.

    The session autobegins, so reads made before entering (the principal
    lookup, for instance) belong to the same transaction.
    """
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
