from loguru import logger
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from db.models import Base


class DatabasePool:
    def __init__(self, db_url: str):
        kwargs = {"pool_pre_ping": True}
        if not db_url.startswith("sqlite"):
            kwargs.update(pool_size=20, max_overflow=50, pool_timeout=30, pool_recycle=1800)
        self.engine: AsyncEngine = create_async_engine(db_url, **kwargs)
        self.get_session = async_sessionmaker(self.engine, expire_on_commit=False)
        self.pool_connections = 0

        @event.listens_for(self.engine.sync_engine, 'connect')
        def connect(dbapi_connection, connection_record):
            self.pool_connections += 1
            logger.debug(f"New DB connection, {self.pool_connections} open")

        @event.listens_for(self.engine.sync_engine, 'close')
        def close(dbapi_connection, connection_record):
            self.pool_connections -= 1
            logger.debug(f"DB connection closed, {self.pool_connections} open")

    async def create_all(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()
