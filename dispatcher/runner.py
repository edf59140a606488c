"""
TaskRunner: 잡 바디 실행과 실행 상태 기록

running → success / failed 전이를 기록하고 다음 실행 시각을 갱신합니다.
잡 바디의 예외는 호출자(스케줄 루프)로 전파되지 않으며 저장된 상태로만 드러납니다.
"""

import asyncio
import logging

from database import DatabaseError
from dispatcher.model.dispatcher import JobDescriptor, TaskStatus
from dispatcher.registry import TaskRegistry

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    태스크 실행기

    같은 이름의 태스크는 프로세스 내에서 동시에 한 번만 실행됩니다(single-flight).
    실행 중에 다시 트리거되면 건너뜁니다.
    """

    def __init__(self, registry: TaskRegistry):
        self._registry = registry
        self._in_flight: set[str] = set()

    async def run(self, descriptor: JobDescriptor) -> TaskStatus | None:
        """
        태스크 1회 실행

        Returns:
            TaskStatus.SUCCESS / TaskStatus.FAILED, 이미 실행 중이어서 건너뛰면 None
        """
        name = descriptor.name
        if name in self._in_flight:
            logger.info(f"Skipping task {name}: previous run still in progress", extra={"task": name})
            return None

        self._in_flight.add(name)
        try:
            logger.info(f"Running task: {name}", extra={"task": name})
            await self._record(name, TaskStatus.RUNNING)

            error = await self._invoke(descriptor)
            if error is None:
                await self._record(name, TaskStatus.SUCCESS)
                return TaskStatus.SUCCESS

            await self._record(name, TaskStatus.FAILED, error)
            return TaskStatus.FAILED
        finally:
            self._in_flight.discard(name)

    async def _invoke(self, descriptor: JobDescriptor) -> str | None:
        """잡 바디 실행, 실패 시 에러 메시지 반환"""
        try:
            if descriptor.timeout_seconds:
                await asyncio.wait_for(descriptor.run(), timeout=descriptor.timeout_seconds)
            else:
                await descriptor.run()
            return None

        except asyncio.TimeoutError as e:
            if not descriptor.timeout_seconds:
                logger.error(f"Task {descriptor.name} raised: {e!r}", exc_info=True)
                return str(e) or e.__class__.__name__
            logger.error(
                f"Task {descriptor.name} timed out after {descriptor.timeout_seconds}s",
                extra={"task": descriptor.name},
            )
            return f"Timed out after {descriptor.timeout_seconds}s"

        except Exception as e:
            logger.error(f"Task {descriptor.name} raised: {e}", exc_info=True, extra={"task": descriptor.name})
            return str(e) or e.__class__.__name__

    async def _record(self, name: str, status: TaskStatus, error: str | None = None) -> None:
        """상태 기록 (저장소 실패는 로그만 남기고 실행 흐름은 유지)"""
        try:
            await self._registry.record_run(name, status, error)
        except DatabaseError as e:
            logger.error(f"Could not record {status.value} for task {name}: {e}", extra={"task": name})

    def is_running(self, name: str) -> bool:
        return name in self._in_flight

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)
