from typing import Optional

from core.interfaces.repositories import IPendingTransferRepository, IRepositoryFactory
from db.db_pool import DatabasePool
from infrastructure.persistence.memory_pending_transfer_repository import InMemoryPendingTransferRepository
from infrastructure.persistence.sqlalchemy_pending_transfer_repository import SqlAlchemyPendingTransferRepository


class SqlAlchemyRepositoryFactory(IRepositoryFactory):
    """
    Factory for creating SQLAlchemy implementations of repositories.
    """

    def __init__(self, db_pool: DatabasePool, timeout: float = 10.0):
        self.db_pool = db_pool
        self.timeout = timeout

    def get_pending_transfer_repository(self) -> IPendingTransferRepository:
        return SqlAlchemyPendingTransferRepository(self.db_pool.get_session, timeout=self.timeout)


class InMemoryRepositoryFactory(IRepositoryFactory):
    def __init__(self):
        self._repository = InMemoryPendingTransferRepository()

    def get_pending_transfer_repository(self) -> IPendingTransferRepository:
        return self._repository


def build_repository_factory(storage_backend: str, db_pool: Optional[DatabasePool] = None,
                             timeout: float = 10.0) -> IRepositoryFactory:
    if storage_backend == "memory":
        return InMemoryRepositoryFactory()
    if storage_backend == "sqlalchemy":
        if db_pool is None:
            raise ValueError("sqlalchemy storage backend requires a DatabasePool")
        return SqlAlchemyRepositoryFactory(db_pool, timeout=timeout)
    raise ValueError(f"Unknown storage backend: {storage_backend}")
