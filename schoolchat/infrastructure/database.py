# schoolchat/infrastructure/database.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class Database:
    """The chat store: one engine, sessions that keep loaded state after commit.

    Interactors hand ORM rows to the event dispatcher after committing, so
    sessions never expire on commit.
    """

    def __init__(self, engine: AsyncEngine, logger: logging.Logger):
        self.engine = engine
        self.logger = logger
        self.session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    @classmethod
    def from_url(cls, url: str, logger: logging.Logger, echo: bool = False) -> "Database":
        return cls(create_async_engine(url, echo=echo), logger)

    @property
    def location(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    async def create_schema(self) -> None:
        import schoolchat.infrastructure.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logger.info(f"Chat schema ready on {self.location}")

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            self.logger.warning(f"Database {self.location} unreachable: {e!s}")
            return False
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()
        self.logger.info(f"Closed connections to {self.location}")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self.session_factory() as session:
            yield session
