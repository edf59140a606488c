import importlib
import logging
import pkgutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

from dispatcher.model.dispatcher import JobDescriptor
from worker.exception import JobRegistrationError, WorkerError

if TYPE_CHECKING:
    from dispatcher.registry import TaskRegistry
    from worker.batcher import RequestBatcher
    from worker.queue import DispatchQueue

__all__ = [
    'job', 'get_registered_jobs', 'load_jobs', 'build_descriptors',
    'BaseJob', 'JobContext', 'JobRegistrationError',
]

logger = logging.getLogger(__name__)

# 잡 레지스트리 (모듈 레벨)
_registry: dict[str, type["BaseJob"]] = {}


def _qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def job(
    name: str,
    cron_expression: str,
    description: str | None = None,
    timeout_seconds: float | None = None,
):
    """
    잡 등록 데코레이터

    사용 예시:
        @job("email_sync", "0 * * * *", description="Hourly mailbox sync")
        class EmailSyncJob(BaseJob):
            async def run(self) -> None:
                ...
    """
    def decorator(cls):
        if not (isinstance(cls, type) and issubclass(cls, BaseJob)):
            raise JobRegistrationError(name, f"Job '{name}' must be a BaseJob subclass")

        existing = _registry.get(name)
        if existing is not None and _qualified_name(existing) != _qualified_name(cls):
            raise JobRegistrationError(
                name,
                f"Job name '{name}' already registered by {_qualified_name(existing)}"
            )

        cls.job_name = name
        cls.cron_expression = cron_expression
        cls.description = description
        cls.timeout_seconds = timeout_seconds
        _registry[name] = cls
        return cls
    return decorator


def get_registered_jobs() -> dict[str, type["BaseJob"]]:
    """등록된 잡 목록 반환 (테스트용)"""
    return _registry.copy()


def load_jobs(package_name: str = "worker.job") -> list[str]:
    """
    잡 모듈 로드 (데코레이터 등록을 위해, 하위 폴더 재귀 탐색)

    Returns:
        로드된 모듈 이름 목록
    """
    loaded = []

    def load_recursive(package, prefix: str):
        for _, module_name, is_pkg in pkgutil.iter_modules(package.__path__):
            full_name = f"{prefix}.{module_name}"
            module = importlib.import_module(full_name)
            loaded.append(full_name)
            logger.debug(f"Loaded job module: {full_name}")
            if is_pkg:
                load_recursive(module, full_name)

    load_recursive(importlib.import_module(package_name), package_name)
    return loaded


@dataclass
class JobContext:
    """잡 인스턴스에 전달되는 공유 자원"""
    queue: "DispatchQueue"
    batcher: "RequestBatcher | None" = None
    registry: "TaskRegistry | None" = None


class BaseJob(ABC):
    """스케줄 잡 기본 클래스"""

    job_name: ClassVar[str]
    cron_expression: ClassVar[str]
    description: ClassVar[str | None] = None
    timeout_seconds: ClassVar[float | None] = None

    def __init__(self, context: JobContext):
        self.context = context

    @property
    def queue(self) -> "DispatchQueue":
        return self.context.queue

    @property
    def batcher(self) -> "RequestBatcher":
        if self.context.batcher is None:
            raise WorkerError(f"Job '{self.job_name}' requires a completion batcher, none is configured")
        return self.context.batcher

    @abstractmethod
    async def run(self) -> None:
        """
        잡 실행 로직

        엔티티별 작업은 self.queue.fan_out()으로 펼치고,
        rate limit이 있는 다운스트림 호출은 self.batcher.submit()을 사용합니다.

        Raises:
            Exception: 실행 실패 시 예외 발생 (failed 상태로 기록됨)
        """
        pass


def build_descriptors(context: JobContext, names: list[str] | None = None) -> list[JobDescriptor]:
    """
    등록된 잡을 인스턴스화하여 JobDescriptor 목록으로 변환

    Args:
        context: 잡에 전달할 공유 자원
        names: 포함할 잡 이름 (None이면 전체)
    """
    descriptors = []
    for name, cls in sorted(_registry.items()):
        if names is not None and name not in names:
            continue
        instance = cls(context)
        descriptors.append(
            JobDescriptor(
                name=name,
                cron_expression=cls.cron_expression,
                run=instance.run,
                description=cls.description,
                timeout_seconds=cls.timeout_seconds,
            )
        )
    return descriptors
