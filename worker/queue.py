"""
DispatchQueue: 동시 실행 수가 제한된 작업 큐

하나의 스케줄 트리거를 엔티티(사용자 등)별 작업으로 펼칠 때 사용합니다.
동시에 실행되는 작업은 언제나 concurrency 이하이며, 작업은 제출 순서(FIFO)로 시작됩니다.
개별 작업의 실패는 작업 경계에서 격리되어 다른 작업이나 큐에 영향을 주지 않습니다.
"""

import asyncio
import functools
import itertools
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Iterable

from common.clock import Clock, SystemClock
from worker.exception import WorkerError
from worker.model import FanOutResult, WorkItem

logger = logging.getLogger(__name__)


class DispatchQueue:
    """
    고정 동시성 작업 큐

    사용 예시:
        queue = DispatchQueue(concurrency=5)
        for user_id in user_ids:
            queue.enqueue(functools.partial(sync_mailbox, user_id), entity_id=user_id)
        await queue.join()
    """

    def __init__(self, concurrency: int = 5, name: str = "dispatch", clock: Clock | None = None):
        """
        Args:
            concurrency: 동시 실행 작업 수 상한 (양의 정수)
            name: 로그 식별용 이름
            clock: 작업 시각 기록용 시계
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency}")

        self._concurrency = concurrency
        self._name = name
        self._clock = clock or SystemClock()
        self._pending: deque[WorkItem] = deque()
        self._running_tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._ids = itertools.count(1)
        self._completed = 0
        self._failed = 0

    def enqueue(
        self,
        work: Callable[[], Awaitable[Any]],
        entity_id: str | None = None,
    ) -> WorkItem:
        """
        작업 추가 (빈 슬롯이 있으면 즉시 시작, 없으면 대기)

        작업 실패는 이 메서드 밖으로 전파되지 않습니다.
        """
        loop = asyncio.get_running_loop()
        item = WorkItem(
            item_id=next(self._ids),
            work=work,
            entity_id=entity_id,
            enqueued_at=self._clock.now(),
            done=loop.create_future(),
        )
        self._pending.append(item)
        self._idle.clear()
        self._fill_slots()
        return item

    def _fill_slots(self) -> None:
        """빈 슬롯만큼 대기 작업을 FIFO로 시작"""
        while self._pending and len(self._running_tasks) < self._concurrency:
            item = self._pending.popleft()
            task = asyncio.create_task(self._execute(item))
            self._running_tasks.add(task)
            task.add_done_callback(self._on_task_done)

    async def _execute(self, item: WorkItem) -> None:
        """작업 실행 (슬롯 1개 점유)"""
        item.started_at = self._clock.now()
        try:
            await item.work()
            self._completed += 1
        except Exception as e:
            item.error = e
            self._failed += 1
            logger.error(
                f"[{self._name}] Work item {item.item_id} failed "
                f"(entity={item.entity_id}): {e}"
            )
        finally:
            item.finished_at = self._clock.now()
            if not item.done.done():
                item.done.set_result(item)

    def _on_task_done(self, task: asyncio.Task) -> None:
        """슬롯 반환 후 다음 대기 작업 시작"""
        self._running_tasks.discard(task)
        self._fill_slots()
        if not self._pending and not self._running_tasks:
            self._idle.set()

    async def join(self) -> None:
        """대기/실행 중인 작업이 모두 끝날 때까지 대기"""
        await self._idle.wait()

    async def fan_out(
        self,
        entities: Iterable[Any],
        work: Callable[[Any], Awaitable[Any]],
    ) -> FanOutResult:
        """
        엔티티마다 작업 1개씩 추가하고 해당 작업들의 완료만 대기

        같은 큐를 공유하는 다른 잡의 작업은 기다리지 않습니다.

        Returns:
            성공/실패 건수와 엔티티별 에러 메시지
        """
        items = [
            self.enqueue(functools.partial(work, entity), entity_id=str(entity))
            for entity in entities
        ]
        if items:
            await asyncio.gather(*(item.done for item in items))

        result = FanOutResult(total=len(items))
        for item in items:
            if item.error is None:
                result.succeeded += 1
            else:
                result.failed += 1
                result.errors.append((item.entity_id, str(item.error) or item.error.__class__.__name__))

        logger.info(
            f"[{self._name}] Fan-out complete: {result.succeeded} successful, {result.failed} errors"
        )
        return result

    def clear(self) -> int:
        """
        아직 시작하지 않은 작업 제거 (실행 중인 작업은 유지)

        Returns:
            제거된 작업 수
        """
        dropped = 0
        while self._pending:
            item = self._pending.popleft()
            item.error = WorkerError("Dropped from queue before start")
            item.finished_at = self._clock.now()
            if not item.done.done():
                item.done.set_result(item)
            dropped += 1

        if not self._running_tasks:
            self._idle.set()
        if dropped:
            logger.info(f"[{self._name}] Cleared {dropped} pending work item(s)")
        return dropped

    async def close(self, timeout: float | None = None) -> None:
        """대기 작업을 버리고 실행 중인 작업 완료 대기 (timeout 초과 시 취소)"""
        self.clear()
        if not self._running_tasks:
            return

        logger.info(f"[{self._name}] Waiting for {len(self._running_tasks)} running work items...")
        try:
            await asyncio.wait_for(
                asyncio.gather(*self._running_tasks, return_exceptions=True),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"[{self._name}] Shutdown timeout ({timeout}s), "
                f"{len(self._running_tasks)} work items cancelled"
            )

    def stats(self) -> dict[str, Any]:
        return {
            "name": self._name,
            "concurrency": self._concurrency,
            "pending": len(self._pending),
            "running": len(self._running_tasks),
            "completed": self._completed,
            "failed": self._failed,
        }

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def running_count(self) -> int:
        return len(self._running_tasks)

    @property
    def is_idle(self) -> bool:
        return self._idle.is_set()
