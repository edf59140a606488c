"""
aiosqlite 커넥션 풀

풀 크기만큼 연결을 미리 열어 두고 유휴 연결 큐에서 꺼내 씁니다.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import aiosqlite

from database.exception import ConnectionPoolExhaustedError, DatabaseUnavailableError

logger = logging.getLogger(__name__)

JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}
SYNCHRONOUS_MODES = {"OFF", "NORMAL", "FULL", "EXTRA"}


@dataclass
class PoolSettings:
    """커넥션 풀 / PRAGMA 설정"""
    size: int = 3
    timeout: float = 30.0
    busy_timeout_ms: int = 5000
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"

    def __post_init__(self):
        if self.size < 1:
            raise ValueError(f"pool size must be positive, got {self.size}")
        self.journal_mode = self.journal_mode.upper()
        self.synchronous = self.synchronous.upper()
        if self.journal_mode not in JOURNAL_MODES:
            raise ValueError(f"Unsupported journal_mode: {self.journal_mode}")
        if self.synchronous not in SYNCHRONOUS_MODES:
            raise ValueError(f"Unsupported synchronous mode: {self.synchronous}")


class ConnectionPool:
    """고정 크기 aiosqlite 커넥션 풀"""

    def __init__(self, path: str | Path, settings: PoolSettings | None = None):
        self._path = Path(path)
        self._settings = settings or PoolSettings()
        self._connections: list[aiosqlite.Connection] = []
        self._idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        self._closed = False

    async def open(self) -> None:
        """연결 생성 (DB 파일의 상위 디렉토리가 없으면 생성)"""
        if self._connections:
            logger.warning(f"Connection pool for {self._path} already open")
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(self._settings.size):
            conn = await self._connect()
            self._connections.append(conn)
            self._idle.put_nowait(conn)

        logger.info(
            f"Connection pool opened: {self._path} "
            f"(size={self._settings.size}, timeout={self._settings.timeout}s, "
            f"journal_mode={self._settings.journal_mode})"
        )

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self._path, timeout=self._settings.busy_timeout_ms / 1000)
        conn.row_factory = aiosqlite.Row
        await conn.execute(f"PRAGMA busy_timeout={int(self._settings.busy_timeout_ms)}")
        await conn.execute(f"PRAGMA journal_mode={self._settings.journal_mode}")
        await conn.execute(f"PRAGMA synchronous={self._settings.synchronous}")
        return conn

    async def acquire(self, timeout: float | None = None) -> aiosqlite.Connection:
        """
        유휴 연결 획득

        Raises:
            DatabaseUnavailableError: 풀이 열리지 않았거나 이미 닫힘
            ConnectionPoolExhaustedError: timeout 안에 반환된 연결이 없음
        """
        if self._closed or not self._connections:
            raise DatabaseUnavailableError(f"Connection pool for {self._path} is not open")

        timeout = timeout or self._settings.timeout
        try:
            return await asyncio.wait_for(self._idle.get(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ConnectionPoolExhaustedError(
                f"Connection pool exhausted ({self._settings.size} in use), timeout after {timeout}s"
            )

    async def release(self, conn: aiosqlite.Connection) -> None:
        """연결 반환 (종료된 풀이면 닫기만 함)"""
        if self._closed:
            await conn.close()
            return
        self._idle.put_nowait(conn)

    async def close(self) -> None:
        self._closed = True
        for conn in self._connections:
            try:
                await conn.close()
            except aiosqlite.Error as e:
                logger.error(f"Error closing connection to {self._path}: {e}")
        self._connections.clear()
        logger.info(f"Connection pool closed: {self._path}")

    @property
    def size(self) -> int:
        return len(self._connections)

    @property
    def available(self) -> int:
        return self._idle.qsize()
