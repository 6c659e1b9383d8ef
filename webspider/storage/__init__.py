"""
Storage layer for crawl results.
"""

from .database import (
    DatabaseManager, StorageBackend, SQLiteStorageBackend,
    FileStorageBackend, CassandraStorageBackend
)

__all__ = [
    'DatabaseManager', 'StorageBackend', 'SQLiteStorageBackend',
    'FileStorageBackend', 'CassandraStorageBackend'
]
