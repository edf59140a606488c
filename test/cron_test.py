"""
CronClock 테스트

테스트 항목:
1. 다음 실행 시각은 항상 기준 시각보다 큼
2. 타임존 해석 및 UTC 반환
3. 5필드가 아니거나 파싱 불가한 표현식은 InvalidCronExpression
4. 잘못된 표현식의 fallback (기준 시각 + 1시간)

실행: python -m pytest test/cron_test.py -v
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from dispatcher.cron import next_trigger, next_trigger_or_fallback, validate_cron_expression
from dispatcher.exception import InvalidCronExpression

UTC = timezone.utc


class TestNextTrigger:
    """next_trigger 테스트"""

    @pytest.mark.parametrize("cron_expression", [
        "* * * * *",
        "0 * * * *",
        "*/15 * * * *",
        "0 21 * * *",
        "30 4 1 * *",
        "0 0 * * 1",
    ])
    def test_strictly_after_from_time(self, cron_expression):
        """결과는 항상 from_time보다 큼 (정각에 걸쳐도 다음 틱)"""
        base = datetime(2026, 3, 1, 0, 0, tzinfo=UTC)
        for minutes in (0, 1, 59, 60, 61, 1439):
            from_time = base + timedelta(minutes=minutes)
            assert next_trigger(cron_expression, from_time) > from_time

    def test_exact_tick_moves_to_next(self):
        """정각 기준이면 같은 시각이 아니라 다음 정각 반환"""
        from_time = datetime(2026, 1, 1, 10, 0, tzinfo=UTC)
        assert next_trigger("0 * * * *", from_time) == datetime(2026, 1, 1, 11, 0, tzinfo=UTC)

    def test_rounds_up_to_next_hour(self):
        """emailSync 시나리오: T + 90분 → 다음 정각"""
        last_run_at = datetime(2026, 1, 1, 10, 0, tzinfo=UTC)
        now = last_run_at + timedelta(minutes=90)
        assert next_trigger("0 * * * *", now) == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def test_daily_report_schedule(self):
        """매일 21시 리포트"""
        from_time = datetime(2026, 1, 1, 21, 0, 30, tzinfo=UTC)
        assert next_trigger("0 21 * * *", from_time) == datetime(2026, 1, 2, 21, 0, tzinfo=UTC)

    def test_naive_input_treated_as_utc(self):
        """naive datetime은 UTC로 간주"""
        naive = datetime(2026, 1, 1, 10, 30)
        result = next_trigger("0 * * * *", naive)
        assert result == datetime(2026, 1, 1, 11, 0, tzinfo=UTC)
        assert result.tzinfo is not None

    def test_timezone_evaluation(self):
        """Asia/Seoul 09:00 크론은 UTC 00:00에 해당"""
        # 2026-01-01T00:00Z == 09:00 KST, 정각이므로 다음날로 넘어감
        from_time = datetime(2026, 1, 1, 0, 0, tzinfo=UTC)
        result = next_trigger("0 9 * * *", from_time, "Asia/Seoul")
        assert result == datetime(2026, 1, 2, 0, 0, tzinfo=UTC)
        assert result.utcoffset() == timedelta(0)

    def test_day_of_month_or_day_of_week(self):
        """일/요일이 모두 지정되면 POSIX OR 의미 (13일 또는 금요일)"""
        # 2026-01-01은 목요일, 다음날(금요일)이 먼저 매칭됨
        from_time = datetime(2026, 1, 1, 0, 0, tzinfo=UTC)
        assert next_trigger("0 0 13 * 5", from_time) == datetime(2026, 1, 2, 0, 0, tzinfo=UTC)


class TestInvalidExpression:
    """잘못된 크론 표현식 테스트"""

    @pytest.mark.parametrize("cron_expression", [
        "not a cron",
        "61 * * * *",
        "* 25 * * *",
        "* * * *",
        "0 0 * * * *",
        "",
    ])
    def test_raises_invalid_cron_expression(self, cron_expression):
        """파싱 불가/필드 수 불일치 시 InvalidCronExpression"""
        with pytest.raises(InvalidCronExpression) as exc_info:
            next_trigger(cron_expression, datetime(2026, 1, 1, tzinfo=UTC))
        assert exc_info.value.cron_expression == cron_expression

    def test_validate_accepts_standard_expression(self):
        validate_cron_expression("*/5 9-18 * * 1-5")

    def test_seconds_field_rejected(self):
        """초 필드(6필드)는 지원하지 않음"""
        with pytest.raises(InvalidCronExpression) as exc_info:
            validate_cron_expression("*/10 * * * * *")
        assert "5 fields" in exc_info.value.message


class TestFallback:
    """next_trigger_or_fallback 테스트"""

    def test_valid_expression_uses_cron(self):
        from_time = datetime(2026, 1, 1, 10, 15, tzinfo=UTC)
        assert next_trigger_or_fallback("0 * * * *", from_time) == datetime(2026, 1, 1, 11, 0, tzinfo=UTC)

    def test_invalid_expression_falls_back_one_hour(self, caplog):
        """잘못된 표현식이면 from_time + 1시간, ERROR 로그"""
        from_time = datetime(2026, 1, 1, 10, 15, tzinfo=UTC)
        with caplog.at_level(logging.ERROR, logger="dispatcher.cron.expression"):
            result = next_trigger_or_fallback("every hour", from_time)

        assert result == from_time + timedelta(hours=1)
        assert any("every hour" in r.getMessage() for r in caplog.records if r.levelno == logging.ERROR)

    def test_custom_fallback_interval(self):
        from_time = datetime(2026, 1, 1, 10, 15, tzinfo=UTC)
        result = next_trigger_or_fallback("bad", from_time, fallback=timedelta(minutes=10))
        assert result == from_time + timedelta(minutes=10)
