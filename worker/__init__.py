"""Worker 모듈 - 동시성 제한 디스패치 큐, 요청 batcher, 잡 레지스트리"""

from worker.base import BaseJob, JobContext, build_descriptors, get_registered_jobs, job, load_jobs
from worker.batcher import RequestBatcher
from worker.client import HttpCompletionExecutor
from worker.queue import DispatchQueue
from worker.exception import (
    WorkerError,
    JobRegistrationError,
    BatcherError,
    RequestTimeoutError,
    DownstreamError,
    BatcherClosedError,
)

__all__ = [
    "BaseJob",
    "JobContext",
    "build_descriptors",
    "get_registered_jobs",
    "job",
    "load_jobs",
    "RequestBatcher",
    "HttpCompletionExecutor",
    "DispatchQueue",
    "WorkerError",
    "JobRegistrationError",
    "BatcherError",
    "RequestTimeoutError",
    "DownstreamError",
    "BatcherClosedError",
]
