"""cronq - 크론 기반 태스크 스케줄링과 동시성 제한 디스패치"""

__version__ = "0.1.0"
