"""Dispatcher 모듈 - 크론 기반 태스크 스케줄링"""

from dispatcher.main import Scheduler
from dispatcher.catchup import CatchUpDetector
from dispatcher.registry import TaskRegistry
from dispatcher.runner import TaskRunner
from dispatcher.model.dispatcher import (
    JobDescriptor,
    MissedTask,
    ScheduledTask,
    SchedulerConfig,
    TaskStatus,
)
from dispatcher.exception import (
    DispatcherError,
    InvalidCronExpression,
    DuplicateJobError,
    JobNotFoundError,
)

__all__ = [
    "Scheduler",
    "CatchUpDetector",
    "TaskRegistry",
    "TaskRunner",
    "JobDescriptor",
    "MissedTask",
    "ScheduledTask",
    "SchedulerConfig",
    "TaskStatus",
    "DispatcherError",
    "InvalidCronExpression",
    "DuplicateJobError",
    "JobNotFoundError",
]
