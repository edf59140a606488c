"""
Scheduler: 크론 기반 태스크 트리거 모듈

scheduled_tasks 테이블을 주기적으로 폴링하여 next_run_at에 도달한 태스크를
TaskRunner로 실행합니다. 시작 시 1회 catch-up을 백그라운드로 수행하여
프로세스가 내려가 있던 동안 놓친 실행을 복구합니다.

실행 방법:
    python main.py
    cronq run
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable

from common.clock import Clock
from database import ConnectionPoolExhaustedError, DatabaseError
from dispatcher.catchup import CatchUpDetector
from dispatcher.exception import DuplicateJobError, JobNotFoundError
from dispatcher.model.dispatcher import (
    JobDescriptor,
    MissedTask,
    ScheduledTask,
    SchedulerConfig,
    TaskStatus,
)
from dispatcher.registry import TaskRegistry
from dispatcher.runner import TaskRunner

logger = logging.getLogger(__name__)


class Scheduler:
    """
    크론 기반 태스크 스케줄러

    의존성(저장소, 실행기, 시계, 설정)을 생성 시 주입받는 명시적 인스턴스입니다.
    같은 태스크의 중복 실행은 TaskRunner의 single-flight로 막습니다.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        registry: TaskRegistry,
        runner: TaskRunner | None = None,
        detector: CatchUpDetector | None = None,
        clock: Clock | None = None,
    ):
        """
        Args:
            config: Scheduler 설정
            registry: 태스크 저장소
            runner: 태스크 실행기 (미지정 시 registry로 생성)
            detector: catch-up 탐지기 (미지정 시 registry로 생성)
            clock: 시계 (미지정 시 registry의 시계 사용)
        """
        self._config = config
        self._registry = registry
        self._runner = runner or TaskRunner(registry)
        self._detector = detector or CatchUpDetector(registry)
        self._clock = clock or registry.clock
        self._jobs: dict[str, JobDescriptor] = {}
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._running_tasks: set[asyncio.Task] = set()
        # 실행 종료 순번 (조회 결과가 그 이후에 끝난 실행을 반영하지 못한 경우 판별)
        self._finish_counter = 0
        self._finish_marks: dict[str, int] = {}

    def add_job(self, descriptor: JobDescriptor) -> None:
        """
        잡 추가 (start 전후 모두 가능, start 이후 추가분은 다음 start에서 등록됨)

        Raises:
            DuplicateJobError: 같은 이름이 이미 추가된 경우
        """
        if descriptor.name in self._jobs:
            raise DuplicateJobError(descriptor.name)
        self._jobs[descriptor.name] = descriptor
        logger.debug(f"Job added: {descriptor.name} ({descriptor.cron_expression})")

    async def start(self) -> None:
        """Scheduler 메인 루프 시작 (stop() 호출 시까지 반환하지 않음)"""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()

        logger.info(
            f"Scheduler started (jobs={len(self._jobs)}, timezone={self._config.timezone}, "
            f"max_sleep={self._config.max_sleep_seconds}s)"
        )

        try:
            await self._register_jobs()

            if self._config.catch_up_on_start:
                # catch-up은 시작을 막지 않도록 백그라운드로 실행
                self._spawn(self.run_catch_up())

            await self._main_loop()
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
        except Exception as e:
            logger.error(f"Scheduler error: {e}", exc_info=True)
            raise
        finally:
            await self._wait_running_tasks()
            self._running = False
            logger.info("Scheduler stopped")

    async def stop(self) -> None:
        """Scheduler graceful shutdown"""
        if not self._running:
            return

        logger.info("Stopping scheduler...")
        self._running = False
        if self._stop_event:
            self._stop_event.set()

    async def _register_jobs(self) -> None:
        """모든 잡을 저장소에 등록 (개별 실패는 격리)"""
        for descriptor in self._jobs.values():
            try:
                await self._registry.register(
                    descriptor.name,
                    descriptor.cron_expression,
                    descriptor.description,
                )
            except DatabaseError as e:
                logger.error(f"Failed to register job '{descriptor.name}': {e}")

    async def run_catch_up(self) -> list[MissedTask]:
        """
        놓친 태스크를 찾아 실행

        Returns:
            탐지된 놓친 태스크 목록 (잡이 없는 태스크 포함)
        """
        mark = self._finish_counter
        try:
            missed = await self._detector.find_missed(self._clock.now())
        except DatabaseError as e:
            logger.error(f"Catch-up detection failed: {e}")
            return []

        runs = []
        for task in missed:
            descriptor = self._jobs.get(task.name)
            if descriptor is None:
                logger.warning(f"Missed task {task.name} has no job in this process, skipping catch-up")
                continue
            if self._is_stale(task.name, mark):
                logger.debug(f"Task {task.name} finished a run during catch-up detection, skipping")
                continue
            logger.info(
                f"Catching up task {task.name} "
                f"(last_run_at={task.last_run_at.isoformat() if task.last_run_at else 'never'})"
            )
            runs.append(self._run(descriptor))

        if runs:
            await asyncio.gather(*runs)
        return missed

    async def trigger_now(self, name: str) -> TaskStatus | None:
        """
        잡 즉시 실행 (수동 트리거)

        Raises:
            JobNotFoundError: 추가되지 않은 잡
        """
        descriptor = self._jobs.get(name)
        if descriptor is None:
            raise JobNotFoundError(name)
        logger.info(f"Manual trigger: {name}")
        return await self._run(descriptor)

    async def _run(self, descriptor: JobDescriptor) -> TaskStatus | None:
        try:
            return await self._runner.run(descriptor)
        finally:
            self._finish_counter += 1
            self._finish_marks[descriptor.name] = self._finish_counter

    def _is_stale(self, name: str, mark: int) -> bool:
        """mark 이후에 실행이 끝났으면 그 전에 읽은 태스크 행은 오래된 값"""
        return self._finish_marks.get(name, 0) > mark

    async def _main_loop(self) -> None:
        """메인 루프: 태스크 폴링 및 실행"""
        while self._running:
            try:
                mark = self._finish_counter
                tasks = await self._registry.list_tasks(enabled_only=True)
                now = self._clock.now()

                for task in tasks:
                    self._process_task(task, now, mark)

                sleep_seconds = self._calculate_next_sleep(tasks, now)

            except ConnectionPoolExhaustedError as e:
                logger.warning(
                    f"Connection pool exhausted: {e}. Retrying in {self._config.error_retry_seconds}s..."
                )
                sleep_seconds = self._config.error_retry_seconds

            except DatabaseError as e:
                logger.error(f"Database error: {e}. Continuing...")
                sleep_seconds = self._config.error_retry_seconds

            except Exception as e:
                logger.error(f"Unexpected error in main loop: {e}", exc_info=True)
                sleep_seconds = self._config.error_retry_seconds

            await self._sleep(sleep_seconds)

    def _process_task(self, task: ScheduledTask, now: datetime, mark: int) -> None:
        """실행 시점에 도달한 태스크를 백그라운드로 실행"""
        descriptor = self._jobs.get(task.name)
        if descriptor is None:
            logger.debug(f"Task {task.name} has no job in this process")
            return

        if task.next_run_at is None or task.next_run_at > now:
            return

        if self._runner.is_running(task.name):
            logger.debug(f"Task {task.name} is due but still running")
            return

        if self._is_stale(task.name, mark):
            # 다음 폴링에서 갱신된 next_run_at으로 다시 판단
            return

        logger.info(f"Triggering task {task.name} (scheduled for {task.next_run_at.isoformat()})")
        self._spawn(self._run(descriptor))

    def _calculate_next_sleep(self, tasks: list[ScheduledTask], now: datetime) -> float:
        """
        다음 실행까지의 대기 시간 계산

        가장 빠른 next_run_at까지의 간격을 min_sleep ~ max_sleep 범위로 제한합니다.
        실행 중인 태스크는 완료 후 next_run_at이 갱신되므로 제외합니다.
        """
        min_wait = self._config.max_sleep_seconds

        for task in tasks:
            if task.name not in self._jobs or task.next_run_at is None:
                continue
            if self._runner.is_running(task.name):
                continue
            wait_seconds = (task.next_run_at - now).total_seconds()
            min_wait = min(min_wait, wait_seconds)

        sleep_time = max(self._config.min_sleep_seconds, min(min_wait, self._config.max_sleep_seconds))
        logger.debug(f"Next sleep: {sleep_time:.1f}s")
        return sleep_time

    async def _sleep(self, seconds: float) -> None:
        """인터럽트 가능한 sleep"""
        if self._stop_event:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._running_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        """태스크 완료 콜백"""
        self._running_tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error(f"Task exception: {task.exception()}")

    async def _wait_running_tasks(self) -> None:
        """실행 중인 태스크 완료 대기 (graceful shutdown)"""
        if not self._running_tasks:
            return

        logger.info(f"Waiting for {len(self._running_tasks)} running tasks...")

        try:
            await asyncio.wait_for(
                asyncio.gather(*self._running_tasks, return_exceptions=True),
                timeout=self._config.shutdown_timeout_seconds
            )
            logger.info("All tasks completed")
        except asyncio.TimeoutError:
            # 취소된 태스크는 running 상태로 남아 다음 시작 시 catch-up 대상이 됨
            logger.warning(
                f"Shutdown timeout ({self._config.shutdown_timeout_seconds}s), "
                f"{len(self._running_tasks)} tasks cancelled"
            )

    @property
    def jobs(self) -> dict[str, JobDescriptor]:
        return dict(self._jobs)

    @property
    def is_running(self) -> bool:
        """실행 중 여부"""
        return self._running

    @property
    def running_task_count(self) -> int:
        """실행 중인 백그라운드 태스크 수"""
        return len(self._running_tasks)
