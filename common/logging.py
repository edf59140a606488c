"""
로깅 설정

JSON 포맷(python-json-logger)과 텍스트 포맷을 지원합니다.
태스크 관련 로그는 extra={"task": name}으로 태스크 이름을 별도 필드에 남깁니다.
"""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

SERVICE_NAME = "cronq"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# 자체 로그가 많은 라이브러리
QUIET_LOGGERS = ("asyncio", "aiosqlite", "httpx", "httpcore")


class CustomJsonFormatter(JsonFormatter):
    """timestamp / level / logger / service 필드를 고정으로 붙이는 JSON 포매터"""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = SERVICE_NAME
        log_record.setdefault("message", record.getMessage())


def build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None
) -> None:
    """
    루트 로거 설정 (기존 핸들러는 교체됨)

    Args:
        level: 로그 레벨 이름
        json_format: False면 텍스트 포맷
        log_file: 지정하면 stdout과 함께 파일에도 기록
    """
    formatter = build_formatter(json_format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
