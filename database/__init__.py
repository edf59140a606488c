"""Database 모듈 - 스케줄 태스크 저장소"""

from database.base import BaseDatabase
from database.exception import (
    DatabaseError,
    ConnectionPoolExhaustedError,
    DatabaseUnavailableError,
    TransactionError,
    ReadOnlyTransactionError,
    QueryExecutionError,
)
from database.sqlite3 import SQLiteDatabase, TransactionContext

__all__ = [
    "BaseDatabase",
    "SQLiteDatabase",
    "TransactionContext",
    "DatabaseError",
    "ConnectionPoolExhaustedError",
    "DatabaseUnavailableError",
    "TransactionError",
    "ReadOnlyTransactionError",
    "QueryExecutionError",
]
