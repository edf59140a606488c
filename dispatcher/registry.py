"""
TaskRegistry: scheduled_tasks 테이블 기반 태스크 카탈로그

- register: 멱등 등록 (크론 변경 시에만 갱신)
- record_run: 실행 상태 기록 및 다음 실행 시각 재계산

모든 쓰기는 단일 트랜잭션(BEGIN IMMEDIATE) 안에서 read-then-write로 처리됩니다.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiosql

from common.clock import Clock, SystemClock
from database import DatabaseError, SQLiteDatabase
from dispatcher.cron import next_trigger_or_fallback
from dispatcher.cron.expression import DEFAULT_FALLBACK
from dispatcher.model.dispatcher import ScheduledTask, TaskStatus

logger = logging.getLogger(__name__)

SQL_PATH = Path(__file__).parent / "sql" / "registry.sql"


def _to_db_time(value: datetime) -> str:
    """timezone-aware UTC ISO-8601 문자열로 변환"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _to_task(row: Any) -> ScheduledTask:
    return ScheduledTask(**dict(row))


class TaskRegistry:
    """스케줄 태스크 저장소"""

    def __init__(
        self,
        db: SQLiteDatabase,
        clock: Clock | None = None,
        tz: str = "UTC",
        fallback: timedelta = DEFAULT_FALLBACK,
    ):
        """
        Args:
            db: 초기화된 SQLiteDatabase
            clock: 현재 시각 제공자 (테스트에서 가짜 시계 주입)
            tz: 크론 표현식 해석 타임존
            fallback: 크론 표현식이 잘못된 경우 사용할 다음 실행 간격
        """
        self._db = db
        self._clock = clock or SystemClock()
        self._tz = tz
        self._fallback = fallback
        self._queries = aiosql.from_path(str(SQL_PATH), "aiosqlite")

    def next_run_time(self, cron_expression: str, from_time: datetime) -> datetime:
        """CronClock 적용 (잘못된 표현식이면 fallback)"""
        return next_trigger_or_fallback(cron_expression, from_time, self._fallback, self._tz)

    async def register(
        self,
        name: str,
        cron_expression: str,
        description: str | None = None,
    ) -> ScheduledTask:
        """
        태스크 등록 (멱등)

        - 미등록: next_run_at = CronClock(now), 상태 never로 생성
        - 크론 변경: 표현식 갱신 후 next_run_at을 now 기준으로 재계산
        - 변경 없음: 쓰기 없음

        Raises:
            DatabaseError: 저장소 읽기/쓰기 실패
        """
        now = self._clock.now()
        action = None

        try:
            async with self._db.transaction() as ctx:
                row = await self._queries.get_task(ctx.connection, name=name)

                if row is None:
                    await self._queries.insert_task(
                        ctx.connection,
                        name=name,
                        description=description,
                        cron_expression=cron_expression,
                        next_run_at=_to_db_time(self.next_run_time(cron_expression, now)),
                        now=_to_db_time(now),
                    )
                    action = "Registered"
                elif row["cron_expression"] != cron_expression:
                    await self._queries.update_schedule(
                        ctx.connection,
                        name=name,
                        description=description,
                        cron_expression=cron_expression,
                        next_run_at=_to_db_time(self.next_run_time(cron_expression, now)),
                        now=_to_db_time(now),
                    )
                    action = "Updated"

                if action:
                    row = await self._queries.get_task(ctx.connection, name=name)
        except DatabaseError as e:
            logger.error(f"Failed to register task '{name}': {e}")
            raise

        task = _to_task(row)
        if action:
            logger.info(
                f"{action} task: {name} ({cron_expression}), "
                f"next_run_at={task.next_run_at.isoformat() if task.next_run_at else None}"
            )
        else:
            logger.debug(f"Task unchanged: {name} ({cron_expression})")
        return task

    async def record_run(
        self,
        name: str,
        status: TaskStatus | str,
        error: str | None = None,
    ) -> ScheduledTask | None:
        """
        실행 상태 기록

        - running: 상태만 기록 (실행 중 프로세스가 죽으면 catch-up 대상으로 남음)
        - success/failed: last_run_at = now, next_run_at = CronClock(now)

        Returns:
            갱신된 태스크 (등록되지 않은 이름이면 None)

        Raises:
            ValueError: never 상태로 기록하려는 경우
            DatabaseError: 저장소 읽기/쓰기 실패
        """
        status = TaskStatus(status)
        if status is TaskStatus.NEVER:
            raise ValueError("Cannot record a run with status 'never'")

        now = self._clock.now()

        try:
            async with self._db.transaction() as ctx:
                row = await self._queries.get_task(ctx.connection, name=name)
                if row is None:
                    logger.warning(f"Task {name} not found in registry")
                    return None

                if status is TaskStatus.RUNNING:
                    await self._queries.mark_running(ctx.connection, name=name, now=_to_db_time(now))
                else:
                    next_run_at = self.next_run_time(row["cron_expression"], now)
                    await self._queries.mark_finished(
                        ctx.connection,
                        name=name,
                        status=status.value,
                        error=error if status is TaskStatus.FAILED else None,
                        next_run_at=_to_db_time(next_run_at),
                        now=_to_db_time(now),
                    )

                row = await self._queries.get_task(ctx.connection, name=name)
        except DatabaseError as e:
            logger.error(f"Failed to record task run for {name} ({status.value}): {e}")
            raise

        if status is TaskStatus.SUCCESS:
            logger.info(f"{name} completed at {now.isoformat()}")
        elif status is TaskStatus.FAILED:
            logger.error(f"{name} failed: {error}")

        return _to_task(row)

    async def get(self, name: str) -> ScheduledTask | None:
        """이름으로 태스크 조회"""
        async with self._db.transaction(readonly=True) as ctx:
            row = await self._queries.get_task(ctx.connection, name=name)
        return _to_task(row) if row is not None else None

    async def list_tasks(self, enabled_only: bool = False) -> list[ScheduledTask]:
        """태스크 목록 조회"""
        query = self._queries.get_enabled_tasks if enabled_only else self._queries.get_all_tasks
        async with self._db.transaction(readonly=True) as ctx:
            # 다건 select는 async generator
            return [_to_task(row) async for row in query(ctx.connection)]

    async def set_enabled(self, name: str, enabled: bool) -> bool:
        """
        태스크 활성화/비활성화 (운영자 조작)

        Returns:
            True: 변경됨, False: 등록되지 않은 태스크
        """
        now = self._clock.now()
        async with self._db.transaction() as ctx:
            row = await self._queries.get_task(ctx.connection, name=name)
            if row is None:
                return False
            await self._queries.set_enabled(
                ctx.connection,
                name=name,
                enabled=1 if enabled else 0,
                now=_to_db_time(now),
            )

        logger.info(f"Task {name} {'enabled' if enabled else 'disabled'}")
        return True

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def timezone(self) -> str:
        return self._tz
