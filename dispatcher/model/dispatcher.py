"""
스케줄 태스크 및 스케줄러 설정 모델 정의
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator


class TaskStatus(str, Enum):
    """태스크 실행 상태"""
    NEVER = "never"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ScheduledTask(BaseModel):
    """스케줄 태스크 엔티티 (scheduled_tasks 1행)"""
    id: int | None = None
    name: str
    description: str | None = None
    cron_expression: str
    enabled: bool = True
    last_run_at: datetime | None = None
    last_run_status: TaskStatus = TaskStatus.NEVER
    last_run_error: str | None = None
    next_run_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MissedTask(BaseModel):
    """재시작 후 실행을 놓친 태스크"""
    name: str
    cron_expression: str
    last_run_at: datetime | None = None


@dataclass
class JobDescriptor:
    """스케줄러에 등록하는 잡 정의"""
    name: str
    cron_expression: str
    run: Callable[[], Awaitable[None]]
    description: str | None = None
    timeout_seconds: float | None = None  # None: 잡 바디가 자체적으로 타임아웃 처리


class SchedulerConfig(BaseModel):
    """Scheduler 설정"""
    timezone: str = Field(default="UTC", description="크론 표현식을 해석할 타임존")
    min_sleep_seconds: float = Field(default=1.0, ge=0.01, le=60)
    max_sleep_seconds: float = Field(default=60.0, ge=0.1, le=600)
    error_retry_seconds: float = Field(default=10.0, ge=0.01, le=600)
    shutdown_timeout_seconds: float = Field(default=30.0, ge=0, le=3600)
    fallback_interval_seconds: int = Field(default=3600, ge=60, le=86400)
    catch_up_on_start: bool = True

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @model_validator(mode="after")
    def _check_sleep_range(self) -> "SchedulerConfig":
        if self.min_sleep_seconds > self.max_sleep_seconds:
            raise ValueError("min_sleep_seconds must not exceed max_sleep_seconds")
        return self
