"""CronClock - 크론 표현식 기반 다음 실행 시각 계산"""
from dispatcher.cron.expression import (
    next_trigger,
    next_trigger_or_fallback,
    validate_cron_expression,
)

__all__ = ["next_trigger", "next_trigger_or_fallback", "validate_cron_expression"]
