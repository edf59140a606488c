"""
공통 테스트 fixture

- clock: 수동으로 진행시키는 가짜 시계 (call_later 타이머 포함)
- database: tmp_path 아래 SQLite 파일
- registry: 가짜 시계를 사용하는 TaskRegistry
"""

import asyncio
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
import pytest_asyncio

# 프로젝트 루트 경로 추가
sys.path.insert(0, str(Path(__file__).parent.parent))

from common.clock import Clock
from database import SQLiteDatabase
from dispatcher.registry import TaskRegistry

# 테스트용 로깅 설정
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

START_TIME = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)


class FakeTimer:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock(Clock):
    """advance() 호출 시에만 시간이 흐르는 시계"""

    def __init__(self, start: datetime = START_TIME):
        self._now = start
        self._monotonic = 0.0
        self._timers: list[FakeTimer] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self._monotonic + delay, callback)
        self._timers.append(timer)
        return timer

    def set(self, value: datetime) -> None:
        """벽시계 시각만 변경 (타이머는 그대로)"""
        self._now = value

    def advance(self, seconds: float) -> None:
        """seconds만큼 진행하며 만기된 타이머를 시각 순서대로 실행"""
        target = self._monotonic + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self._tick(timer.when - self._monotonic)
            timer.callback()
        self._tick(target - self._monotonic)

    def _tick(self, delta: float) -> None:
        self._monotonic += delta
        self._now += timedelta(seconds=delta)

    @property
    def active_timers(self) -> list[FakeTimer]:
        return [t for t in self._timers if not t.cancelled]


async def settle(rounds: int = 10) -> None:
    """이벤트 루프에 예약된 콜백/태스크가 진행되도록 양보"""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def database(tmp_path):
    """테스트용 SQLiteDatabase (테스트마다 새 파일)"""
    db = await SQLiteDatabase.create("test", {"path": str(tmp_path / "cronq_test.db"), "pool_size": 2})
    yield db
    await db.close()


@pytest_asyncio.fixture
async def registry(database, clock):
    return TaskRegistry(database, clock=clock)
