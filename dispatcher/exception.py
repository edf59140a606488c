"""
Dispatcher 관련 예외 클래스 정의
"""


class DispatcherError(Exception):
    """Dispatcher 기본 예외"""
    pass


class InvalidCronExpression(DispatcherError):
    """크론 표현식 파싱 실패 (설정 오류)"""
    def __init__(self, cron_expression: str, message: str = None):
        self.cron_expression = cron_expression
        self.message = message or f"Invalid cron expression: {cron_expression}"
        super().__init__(self.message)


class DuplicateJobError(DispatcherError):
    """같은 이름의 잡이 이미 스케줄러에 등록됨"""
    def __init__(self, name: str):
        self.name = name
        self.message = f"Job '{name}' is already registered"
        super().__init__(self.message)


class JobNotFoundError(DispatcherError):
    """스케줄러에 등록되지 않은 잡"""
    def __init__(self, name: str):
        self.name = name
        self.message = f"Job not found: {name}"
        super().__init__(self.message)
