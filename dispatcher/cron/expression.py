"""
CronClock: 크론 표현식 → 다음 실행 시각 계산

I/O와 상태가 없는 순수 함수만 제공합니다.
표준 5필드(분 시 일 월 요일) 크론만 허용하며 초 필드는 지원하지 않습니다.
"""

import logging
from datetime import datetime, timedelta, timezone, tzinfo

from croniter import CroniterError, croniter
from zoneinfo import ZoneInfo

from dispatcher.exception import InvalidCronExpression

logger = logging.getLogger(__name__)

CRON_FIELD_COUNT = 5
DEFAULT_FALLBACK = timedelta(hours=1)


def _as_zone(tz: str | tzinfo | None) -> tzinfo:
    if tz is None:
        return timezone.utc
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def _as_aware(value: datetime) -> datetime:
    # naive datetime은 UTC로 간주
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def validate_cron_expression(cron_expression: str) -> None:
    """
    크론 표현식 유효성 검사

    Raises:
        InvalidCronExpression: 5필드가 아니거나 파싱 불가한 경우
    """
    if not isinstance(cron_expression, str):
        raise InvalidCronExpression(str(cron_expression), "Cron expression must be a string")

    fields = cron_expression.split()
    if len(fields) != CRON_FIELD_COUNT:
        raise InvalidCronExpression(
            cron_expression,
            f"Expected {CRON_FIELD_COUNT} fields (minute hour day month weekday), "
            f"got {len(fields)}: '{cron_expression}'"
        )

    if not croniter.is_valid(cron_expression):
        raise InvalidCronExpression(cron_expression)


def next_trigger(
    cron_expression: str,
    from_time: datetime,
    tz: str | tzinfo | None = None,
) -> datetime:
    """
    from_time 이후(초과) 첫 번째 실행 시각 계산

    Args:
        cron_expression: 5필드 크론 표현식
        from_time: 기준 시각 (naive면 UTC로 간주)
        tz: 크론을 해석할 타임존 (기본 UTC)

    Returns:
        다음 실행 시각 (UTC, from_time보다 항상 큼)

    Raises:
        InvalidCronExpression: 표현식을 해석할 수 없는 경우
    """
    validate_cron_expression(cron_expression)

    start = _as_aware(from_time)
    try:
        cron = croniter(cron_expression, start.astimezone(_as_zone(tz)))
        candidate = cron.get_next(datetime)
        while candidate <= start:
            candidate = cron.get_next(datetime)
    except (CroniterError, ValueError, KeyError) as e:
        raise InvalidCronExpression(cron_expression, str(e))

    return candidate.astimezone(timezone.utc)


def next_trigger_or_fallback(
    cron_expression: str,
    from_time: datetime,
    fallback: timedelta = DEFAULT_FALLBACK,
    tz: str | tzinfo | None = None,
) -> datetime:
    """
    next_trigger와 같지만 잘못된 표현식이면 from_time + fallback 반환

    잘못된 크론은 배포 설정 오류이므로 ERROR로 남기고 스케줄러는 계속 동작합니다.
    """
    try:
        return next_trigger(cron_expression, from_time, tz)
    except InvalidCronExpression as e:
        fallback_time = _as_aware(from_time).astimezone(timezone.utc) + fallback
        logger.error(
            f"Invalid cron expression '{cron_expression}' ({e.message}); "
            f"falling back to {fallback_time.isoformat()}. Fix the task configuration."
        )
        return fallback_time
