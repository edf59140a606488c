"""
Database 관련 예외 클래스 정의
"""


class DatabaseError(Exception):
    """Database 기본 예외"""
    pass


class ConnectionPoolExhaustedError(DatabaseError):
    """커넥션풀에서 제한 시간 내에 연결을 얻지 못함"""
    pass


class TransactionError(DatabaseError):
    """트랜잭션 시작/커밋/롤백 실패"""
    pass


class ReadOnlyTransactionError(TransactionError):
    """readonly 트랜잭션에서 쓰기 쿼리 실행 시도"""
    pass


class QueryExecutionError(DatabaseError):
    """쿼리 실행 실패"""
    def __init__(self, operation: str, message: str = None):
        self.operation = operation
        self.message = message or f"Query failed: {operation}"
        super().__init__(f"{operation}: {self.message}" if message else self.message)


class DatabaseUnavailableError(DatabaseError):
    """커넥션풀이 열리지 않았거나 이미 닫힘"""
    pass
