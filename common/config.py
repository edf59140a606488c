"""
설정 로드

config/cronq.yaml을 읽은 뒤 환경 변수로 덮어쓰고 pydantic 모델로 검증합니다.
환경 변수는 시작 시 한 번만 읽습니다.

환경 변수:
    CRONQ_DISPATCH_CONCURRENCY      dispatch.concurrency
    CRONQ_BATCH_SIZE                dispatch.batch_size
    CRONQ_BATCH_FLUSH_INTERVAL_MS   dispatch.flush_interval_ms
    CRONQ_REQUEST_TIMEOUT_MS        dispatch.request_timeout_ms
    CRONQ_DATABASE_PATH             database.path
    CRONQ_TIMEZONE                  scheduler.timezone
    CRONQ_LOG_LEVEL                 logging.level
    CRONQ_LOG_JSON                  logging.json_format
    CRONQ_COMPLETION_BASE_URL       completion.base_url
    CRONQ_COMPLETION_API_KEY        completion.api_key (없으면 OPENAI_API_KEY)
"""

import logging
import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from dispatcher.model.dispatcher import SchedulerConfig
from worker.model import CompletionConfig, DispatchConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "cronq.yaml"

# 환경 변수 -> (섹션, 키)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "CRONQ_DISPATCH_CONCURRENCY": ("dispatch", "concurrency"),
    "CRONQ_BATCH_SIZE": ("dispatch", "batch_size"),
    "CRONQ_BATCH_FLUSH_INTERVAL_MS": ("dispatch", "flush_interval_ms"),
    "CRONQ_REQUEST_TIMEOUT_MS": ("dispatch", "request_timeout_ms"),
    "CRONQ_DATABASE_PATH": ("database", "path"),
    "CRONQ_TIMEZONE": ("scheduler", "timezone"),
    "CRONQ_LOG_LEVEL": ("logging", "level"),
    "CRONQ_LOG_JSON": ("logging", "json_format"),
    "CRONQ_COMPLETION_BASE_URL": ("completion", "base_url"),
    "CRONQ_COMPLETION_API_KEY": ("completion", "api_key"),
}


class ConfigError(Exception):
    """설정 파일/환경 변수 오류"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class DatabaseConfig(BaseModel):
    """SQLite 설정 (SQLiteDatabase.create에 그대로 전달)"""
    name: str = "default"
    path: str = "data/cronq.db"
    pool_size: int = Field(default=3, ge=1, le=50)
    pool_timeout: float = Field(default=30.0, gt=0)
    busy_timeout: int = Field(default=5000, ge=0)
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"


class LoggingConfig(BaseModel):
    """로깅 설정"""
    level: str = "INFO"
    json_format: bool = True
    file: str | None = None

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value


class AppConfig(BaseModel):
    """전체 설정"""
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    job_packages: list[str] = Field(default_factory=lambda: ["worker.job"])


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _apply_env(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None and env_name == "CRONQ_COMPLETION_API_KEY":
            value = environ.get("OPENAI_API_KEY")
        if value is None or value == "":
            continue

        target = data.setdefault(section, {})
        if not isinstance(target, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")
        target[key] = value
    return data


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """
    설정 로드

    Args:
        path: YAML 파일 경로 (None이면 config/cronq.yaml, 파일이 없으면 기본값 사용)
        environ: 환경 변수 (None이면 os.environ)

    Raises:
        ConfigError: YAML 형식 오류, 지정한 파일이 없음, 값 검증 실패
    """
    environ = os.environ if environ is None else environ

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        data = _read_yaml(config_path)
    elif DEFAULT_CONFIG_PATH.exists():
        data = _read_yaml(DEFAULT_CONFIG_PATH)
    else:
        logger.debug(f"No config file at {DEFAULT_CONFIG_PATH}, using defaults")
        data = {}

    data = _apply_env(data, environ)

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
