"""
SQLite3 데이터베이스

ConnectionPool 위에서 트랜잭션 단위로 연결을 빌려 씁니다.
scheduled_tasks 스키마는 create() 시 init.sql로 생성됩니다.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosql
import aiosqlite

from database.base import BaseDatabase
from database.exception import QueryExecutionError, ReadOnlyTransactionError, TransactionError
from database.sqlite3.pool import ConnectionPool, PoolSettings

logger = logging.getLogger(__name__)

INIT_SQL_PATH = Path(__file__).parent / "sql" / "init.sql"


class TransactionContext:
    """
    트랜잭션 하나에 묶인 연결

    readonly 트랜잭션은 PRAGMA query_only로 연결 자체를 읽기 전용으로 만들기 때문에
    execute()뿐 아니라 connection을 직접 쓰는 aiosql 쿼리도 쓰기가 막힙니다.
    """

    def __init__(self, connection: aiosqlite.Connection, readonly: bool = False):
        self._connection = connection
        self._readonly = readonly
        self._active = False

    @property
    def connection(self) -> aiosqlite.Connection:
        return self._connection

    @property
    def readonly(self) -> bool:
        return self._readonly

    @property
    def in_transaction(self) -> bool:
        return self._active

    async def begin(self) -> None:
        # 쓰기는 IMMEDIATE: 조회 후 갱신 사이에 다른 writer가 끼어들지 못함
        mode = "DEFERRED" if self._readonly else "IMMEDIATE"
        try:
            if self._readonly:
                await self._connection.execute("PRAGMA query_only = ON")
            await self._connection.execute(f"BEGIN {mode}")
        except aiosqlite.Error as e:
            raise TransactionError(f"Failed to begin {mode} transaction: {e}") from e
        self._active = True

    async def commit(self) -> None:
        if not self._active:
            return
        self._active = False
        try:
            await self._connection.commit()
        except aiosqlite.Error as e:
            raise TransactionError(f"Commit failed: {e}") from e

    async def rollback(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._connection.rollback()

    async def reset(self) -> None:
        """풀 반환 전 연결 상태 복구"""
        if self._readonly:
            await self._connection.execute("PRAGMA query_only = OFF")

    async def execute(self, sql: str, parameters: Any = ()) -> aiosqlite.Cursor:
        logger.debug(f"[SQL] {' '.join(sql.split())} | params: {parameters}")
        return await self._connection.execute(sql, parameters or ())

    async def fetch_one(self, sql: str, parameters: Any = ()) -> aiosqlite.Row | None:
        cursor = await self.execute(sql, parameters)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, parameters: Any = ()) -> list[aiosqlite.Row]:
        cursor = await self.execute(sql, parameters)
        return list(await cursor.fetchall())


def _is_readonly_violation(error: aiosqlite.Error) -> bool:
    """query_only 연결에서 쓰기 시도 (SQLITE_READONLY)"""
    return "readonly database" in str(error)


class SQLiteDatabase(BaseDatabase):
    """
    SQLite 데이터베이스

    config 키:
        path, pool_size, pool_timeout, busy_timeout, journal_mode, synchronous

    사용 예시:
        db = await SQLiteDatabase.create('default', {'path': './data/cronq.db'})

        async with db.transaction() as ctx:
            await ctx.execute(...)

    블록이 정상 종료되면 커밋, 예외가 발생하면 롤백합니다.
    aiosqlite 에러는 QueryExecutionError(name, message)로 바뀌어 전달됩니다.
    """

    def __init__(self, name: str, path: str | Path, settings: PoolSettings | None = None):
        super().__init__(name)
        self._path = Path(path)
        self._pool = ConnectionPool(self._path, settings)

    @classmethod
    async def create(cls, name: str, config: dict[str, Any]) -> "SQLiteDatabase":
        settings = PoolSettings(
            size=config.get("pool_size", 3),
            timeout=config.get("pool_timeout", 30.0),
            busy_timeout_ms=config.get("busy_timeout", 5000),
            journal_mode=config.get("journal_mode", "WAL"),
            synchronous=config.get("synchronous", "NORMAL"),
        )
        db = cls(name, config.get("path", f"./data/{name}.db"), settings)
        await db._pool.open()
        try:
            await db._create_schema()
        except aiosqlite.Error as e:
            await db.close()
            raise QueryExecutionError(name, f"Schema initialization failed: {e}") from e

        logger.info(f"SQLiteDatabase '{name}' ready at {db._path}")
        return db

    async def _create_schema(self) -> None:
        queries = aiosql.from_path(str(INIT_SQL_PATH), "aiosqlite")
        conn = await self._pool.acquire()
        try:
            await queries.create_scheduled_tasks_table(conn)
            await queries.create_scheduled_tasks_indexes(conn)
            await conn.commit()
        finally:
            await self._pool.release(conn)

    @asynccontextmanager
    async def transaction(self, readonly: bool = False) -> AsyncIterator[TransactionContext]:
        conn = await self._pool.acquire()
        ctx = TransactionContext(conn, readonly)
        try:
            await ctx.begin()
            try:
                yield ctx
            except aiosqlite.Error as e:
                await self._rollback_quietly(ctx)
                if ctx.readonly and _is_readonly_violation(e):
                    raise ReadOnlyTransactionError(
                        f"Cannot execute write query in readonly transaction: {e}"
                    ) from e
                raise QueryExecutionError(self.name, str(e)) from e
            except BaseException:
                await self._rollback_quietly(ctx)
                raise
            await ctx.commit()
        finally:
            try:
                await ctx.reset()
            except aiosqlite.Error as e:
                logger.error(f"Could not reset connection state on '{self.name}': {e}")
            await self._pool.release(conn)

    async def _rollback_quietly(self, ctx: TransactionContext) -> None:
        """블록 예외를 가리지 않도록 롤백 실패는 로그만 남김"""
        try:
            await ctx.rollback()
        except aiosqlite.Error as e:
            logger.error(f"Rollback failed on '{self.name}': {e}")

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    async def close(self) -> None:
        await self._pool.close()
        logger.info(f"SQLiteDatabase '{self.name}' closed")
