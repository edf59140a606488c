"""
Worker 모델
"""

from worker.model.dispatch import (
    BatchRequest,
    BatcherState,
    CompletionConfig,
    DispatchConfig,
    FanOutResult,
    WorkItem,
)

__all__ = [
    "BatchRequest",
    "BatcherState",
    "CompletionConfig",
    "DispatchConfig",
    "FanOutResult",
    "WorkItem",
]
