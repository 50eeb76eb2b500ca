"""Repository layer exports."""

from .base import NewsSyncRepository, StoreWriteError
from .memory_repo import InMemoryNewsRepository
from .sql_repo import SqlAlchemyNewsRepository

__all__ = [
    "InMemoryNewsRepository",
    "NewsSyncRepository",
    "SqlAlchemyNewsRepository",
    "StoreWriteError",
]
