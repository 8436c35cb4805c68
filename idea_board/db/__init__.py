"""
Database package for the Idea Board.
"""

from .base import Base, get_db, get_engine, init_database
from .models import BoardModel, ItemModel
from .repository import BoardRepository, SqlItemRepository

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "init_database",
    "BoardModel",
    "ItemModel",
    "BoardRepository",
    "SqlItemRepository",
]
