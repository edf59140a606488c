"""
aiosqlite 기반 SQLite 저장소 (커넥션 풀 + 트랜잭션)
"""

from database.sqlite3.connection import SQLiteDatabase, TransactionContext
from database.sqlite3.pool import ConnectionPool, PoolSettings

__all__ = [
    'SQLiteDatabase',
    'TransactionContext',
    'ConnectionPool',
    'PoolSettings',
]
