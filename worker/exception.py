"""
Worker 관련 예외 클래스 정의
"""


class WorkerError(Exception):
    """Worker 기본 예외"""
    pass


class JobRegistrationError(WorkerError):
    """잡 등록 실패 (이름 중복, BaseJob 미상속 등)"""
    def __init__(self, name: str, message: str = None):
        self.name = name
        self.message = message or f"Failed to register job: {name}"
        super().__init__(self.message)


class BatcherError(WorkerError):
    """RequestBatcher 기본 예외"""
    pass


class RequestTimeoutError(BatcherError):
    """요청 deadline 초과 (다운스트림 실패와 구분)"""
    def __init__(self, timeout_ms: int, waited_ms: float):
        self.timeout_ms = timeout_ms
        self.waited_ms = waited_ms
        self.message = f"Request timeout - exceeded {timeout_ms}ms (waited {waited_ms:.0f}ms)"
        super().__init__(self.message)


class DownstreamError(BatcherError):
    """다운스트림 API 호출 실패"""
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        self.message = message
        super().__init__(self.message)


class BatcherClosedError(BatcherError):
    """종료된 batcher에 요청하거나 종료 시 대기 중이던 요청"""
    def __init__(self, message: str = None):
        self.message = message or "Request batcher is closed"
        super().__init__(self.message)
