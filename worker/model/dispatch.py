"""
Worker 모델 - 디스패치 큐 / 요청 batcher 관련 구조체
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field


class DispatchConfig(BaseModel):
    """동시성 제한 설정 (프로세스 전역)"""
    concurrency: int = Field(default=5, ge=1, le=1000, description="DispatchQueue 동시 실행 수")
    batch_size: int = Field(default=5, ge=1, le=1000, description="RequestBatcher 배치 크기")
    flush_interval_ms: int = Field(default=100, ge=1, le=60_000)
    request_timeout_ms: int = Field(default=30_000, ge=1, le=3_600_000)


@dataclass
class WorkItem:
    """DispatchQueue에 들어가는 작업 단위 (메모리 전용)"""
    item_id: int
    work: Callable[[], Awaitable[Any]]
    entity_id: str | None = None
    enqueued_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: BaseException | None = None
    done: asyncio.Future | None = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.finished_at is not None and self.error is None


@dataclass
class FanOutResult:
    """fan_out 결과 요약"""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)  # (entity_id, 에러 메시지), 실패 건마다 1개


class BatcherState(str, Enum):
    """RequestBatcher 상태"""
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    DISPATCHING = "dispatching"


@dataclass(eq=False)
class BatchRequest:
    """다운스트림 호출 1건 (메모리 전용)"""
    payload: str
    model: str
    future: asyncio.Future
    arrived_at: float  # monotonic 초
    deadline_handle: Any = None


class CompletionConfig(BaseModel):
    """다운스트림 completion API 설정"""
    base_url: str = Field(default="https://api.openai.com/v1")
    api_key: str | None = Field(default=None, repr=False)
    model: str = Field(default="gpt-4o-mini")
    max_tokens: int = Field(default=500, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=60.0, gt=0)
