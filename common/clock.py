"""
시간/타이머 추상화

스케줄러와 RequestBatcher는 현재 시각과 타이머를 이 인터페이스로만 얻습니다.
테스트에서는 수동으로 진행시키는 가짜 시계를 주입합니다.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Protocol


class TimerHandle(Protocol):
    """call_later가 반환하는 취소 가능한 핸들"""

    def cancel(self) -> None:
        ...


class Clock(ABC):
    """시계 인터페이스"""

    @abstractmethod
    def now(self) -> datetime:
        """현재 시각 (timezone-aware UTC)"""
        ...

    @abstractmethod
    def monotonic(self) -> float:
        """경과 시간 측정용 단조 시계 (초)"""
        ...

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """delay초 후 callback 호출 예약"""
        ...


class SystemClock(Clock):
    """실제 시계 (이벤트 루프 타이머 사용)"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)
