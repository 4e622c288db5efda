"""
Core module containing configuration, errors, storage and utilities
"""

from .config import config
from .database import get_db_manager, DatabaseManager, FileDatabase, MongoDatabase

__all__ = [
    "config",
    "get_db_manager",
    "DatabaseManager",
    "FileDatabase",
    "MongoDatabase"
]
