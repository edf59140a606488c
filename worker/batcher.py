"""
RequestBatcher: 다운스트림 API 호출 묶음 처리

요청을 모았다가 batch_size개가 차면 즉시, 아니면 flush_interval_ms 후에 배치로 실행합니다.
한 번에 하나의 배치만 실행되며, 배치가 끝났을 때 대기 요청이 남아 있으면 바로 다음 배치를 실행합니다.

상태 전이:
    IDLE --submit--> ACCUMULATING --(size | flush timer)--> DISPATCHING --(대기 요청 없음)--> IDLE
"""

import asyncio
import functools
import logging
from typing import Any, Protocol

from common.clock import Clock, SystemClock, TimerHandle
from worker.exception import BatcherClosedError, DownstreamError, RequestTimeoutError
from worker.model import BatcherState, BatchRequest, DispatchConfig

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class CompletionExecutor(Protocol):
    """다운스트림 호출 함수 (payload, model) -> 응답 텍스트"""

    async def __call__(self, payload: str, model: str) -> str:
        ...


class RequestBatcher:
    """
    요청 batcher

    각 요청의 결과는 정확히 한 번만 결정됩니다 (응답, DownstreamError, RequestTimeoutError 중 하나).

    사용 예시:
        batcher = RequestBatcher(executor, batch_size=5, flush_interval_ms=100)
        answer = await batcher.submit("Summarize this thread...")
    """

    def __init__(
        self,
        executor: CompletionExecutor,
        batch_size: int = 5,
        flush_interval_ms: int = 100,
        request_timeout_ms: int = 30_000,
        default_model: str = DEFAULT_MODEL,
        clock: Clock | None = None,
    ):
        """
        Args:
            executor: 요청 1건을 실행하는 코루틴 함수
            batch_size: 배치 크기 (도달 시 즉시 실행)
            flush_interval_ms: 첫 요청 이후 배치 실행까지 최대 대기 시간
            request_timeout_ms: 요청 도착부터 결과까지의 deadline
            default_model: model 미지정 요청에 사용할 모델
            clock: 타이머/시각 제공자 (테스트에서 가짜 시계 주입)
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size}")
        if flush_interval_ms < 1 or request_timeout_ms < 1:
            raise ValueError("flush_interval_ms and request_timeout_ms must be positive")

        self._executor = executor
        self._batch_size = batch_size
        self._flush_interval_ms = flush_interval_ms
        self._request_timeout_ms = request_timeout_ms
        self._default_model = default_model
        self._clock = clock or SystemClock()

        self._pending: list[BatchRequest] = []
        self._state = BatcherState.IDLE
        self._flush_timer: TimerHandle | None = None
        self._dispatch_task: asyncio.Task | None = None
        self._closed = False

        self._submitted = 0
        self._succeeded = 0
        self._failed = 0
        self._timed_out = 0
        self._discarded = 0

    @classmethod
    def from_config(
        cls,
        executor: CompletionExecutor,
        config: DispatchConfig,
        default_model: str = DEFAULT_MODEL,
        clock: Clock | None = None,
    ) -> "RequestBatcher":
        return cls(
            executor,
            batch_size=config.batch_size,
            flush_interval_ms=config.flush_interval_ms,
            request_timeout_ms=config.request_timeout_ms,
            default_model=default_model,
            clock=clock,
        )

    async def submit(self, payload: str, model: str | None = None) -> str:
        """
        요청 제출 후 결과 대기

        Raises:
            RequestTimeoutError: deadline 초과
            DownstreamError: 다운스트림 호출 실패
            BatcherClosedError: 종료된 batcher
        """
        if self._closed:
            raise BatcherClosedError()

        loop = asyncio.get_running_loop()
        request = BatchRequest(
            payload=payload,
            model=model or self._default_model,
            future=loop.create_future(),
            arrived_at=self._clock.monotonic(),
        )
        request.deadline_handle = self._clock.call_later(
            self._request_timeout_ms / 1000,
            functools.partial(self._expire, request),
        )
        self._pending.append(request)
        self._submitted += 1
        logger.debug(f"Added request to queue (queue size: {len(self._pending)})")

        if len(self._pending) >= self._batch_size:
            self._start_dispatch()
        elif self._state is BatcherState.IDLE:
            self._state = BatcherState.ACCUMULATING
            self._flush_timer = self._clock.call_later(
                self._flush_interval_ms / 1000, self._on_flush_timer
            )

        return await request.future

    def _on_flush_timer(self) -> None:
        self._flush_timer = None
        if self._state is BatcherState.ACCUMULATING:
            self._start_dispatch()

    def _start_dispatch(self) -> None:
        """DISPATCHING 전이 (이미 실행 중이면 현재 루프가 이어서 처리)"""
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

        if self._state is BatcherState.DISPATCHING:
            return

        self._state = BatcherState.DISPATCHING
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    async def _dispatch_loop(self) -> None:
        try:
            while True:
                batch = self._take_batch()
                if not batch:
                    break
                logger.debug(f"Processing batch of {len(batch)} requests")
                await asyncio.gather(*(self._execute(request) for request in batch))
        finally:
            self._dispatch_task = None
            self._state = BatcherState.IDLE

    def _take_batch(self) -> list[BatchRequest]:
        """대기 요청에서 최대 batch_size개 추출 (취소된 요청은 버림)"""
        batch = []
        while self._pending and len(batch) < self._batch_size:
            request = self._pending.pop(0)
            if request.future.done():
                self._cancel_deadline(request)
                continue
            batch.append(request)
        return batch

    async def _execute(self, request: BatchRequest) -> None:
        waited_ms = (self._clock.monotonic() - request.arrived_at) * 1000
        logger.debug(f"Executing request (wait time: {waited_ms:.0f}ms)")

        try:
            response = await self._executor(request.payload, request.model)
        except Exception as e:
            if isinstance(e, DownstreamError):
                error = e
            else:
                error = DownstreamError(f"{e.__class__.__name__}: {e}")
                error.__cause__ = e
            logger.error(f"Request failed: {e}")
            if self._settle(request, error=error):
                self._failed += 1
        else:
            if self._settle(request, result=response):
                self._succeeded += 1

    def _settle(
        self,
        request: BatchRequest,
        result: str | None = None,
        error: BaseException | None = None,
    ) -> bool:
        """결과 결정 (이미 timeout/취소로 결정된 요청이면 버리고 False)"""
        self._cancel_deadline(request)
        if request.future.done():
            self._discarded += 1
            logger.debug("Discarding late result for an already settled request")
            return False
        if error is not None:
            request.future.set_exception(error)
        else:
            request.future.set_result(result)
        return True

    def _expire(self, request: BatchRequest) -> None:
        """deadline 타이머 콜백"""
        request.deadline_handle = None
        if request.future.done():
            return

        waited_ms = (self._clock.monotonic() - request.arrived_at) * 1000
        if request in self._pending:
            self._pending.remove(request)
            where = "in queue"
        else:
            where = "in flight"

        self._timed_out += 1
        request.future.set_exception(RequestTimeoutError(self._request_timeout_ms, waited_ms))
        logger.warning(
            f"Request timed out {where} after {waited_ms:.0f}ms "
            f"(timeout={self._request_timeout_ms}ms)"
        )

    @staticmethod
    def _cancel_deadline(request: BatchRequest) -> None:
        if request.deadline_handle is not None:
            request.deadline_handle.cancel()
            request.deadline_handle = None

    async def close(self) -> None:
        """새 요청 거부, 대기 요청은 BatcherClosedError로 실패 처리, 실행 중인 배치는 완료 대기"""
        self._closed = True
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

        dropped = 0
        for request in self._pending:
            self._cancel_deadline(request)
            if not request.future.done():
                request.future.set_exception(BatcherClosedError())
                dropped += 1
        self._pending.clear()
        if dropped:
            logger.info(f"Rejected {dropped} pending request(s) on close")

        if self._dispatch_task is not None:
            await asyncio.gather(self._dispatch_task, return_exceptions=True)
        self._state = BatcherState.IDLE

    def stats(self) -> dict[str, Any]:
        return {
            "queue_size": len(self._pending),
            "state": self._state.value,
            "batch_size": self._batch_size,
            "flush_interval_ms": self._flush_interval_ms,
            "request_timeout_ms": self._request_timeout_ms,
            "submitted": self._submitted,
            "succeeded": self._succeeded,
            "failed": self._failed,
            "timed_out": self._timed_out,
            "discarded": self._discarded,
        }

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def state(self) -> BatcherState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._closed
