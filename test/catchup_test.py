"""
CatchUpDetector 테스트

테스트 항목:
1. 한 번도 실행되지 않은 태스크는 항상 missed
2. CronClock(cron, last_run_at) <= now 이면 missed, 아니면 제외
3. 비활성화된 태스크 제외
4. 여러 틱을 놓쳐도 1건만 보고
5. emailSync 시나리오 (catch-up 실행 후 상태 확인)

실행: python -m pytest test/catchup_test.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from dispatcher.catchup import CatchUpDetector
from dispatcher.model.dispatcher import JobDescriptor, TaskStatus
from dispatcher.runner import TaskRunner

UTC = timezone.utc
T = datetime(2026, 1, 1, 10, 0, tzinfo=UTC)


class TestFindMissed:
    """놓친 태스크 탐지 테스트"""

    @pytest.mark.asyncio
    async def test_never_run_is_missed(self, registry, clock):
        """last_run_at이 없으면 missed"""
        await registry.register("emailSync", "0 * * * *")

        missed = await CatchUpDetector(registry).find_missed(clock.now())

        assert [m.name for m in missed] == ["emailSync"]
        assert missed[0].last_run_at is None

    @pytest.mark.asyncio
    async def test_missed_iff_next_trigger_not_after_now(self, registry, clock):
        """CronClock(cron, last_run_at) <= now 인 경우에만 missed"""
        await registry.register("emailSync", "0 * * * *")
        clock.set(T)
        await registry.record_run("emailSync", TaskStatus.SUCCESS)
        detector = CatchUpDetector(registry)

        # 다음 틱(11:00) 이전
        assert await detector.find_missed(T + timedelta(minutes=59)) == []
        # 정확히 다음 틱
        assert [m.name for m in await detector.find_missed(T + timedelta(hours=1))] == ["emailSync"]

    @pytest.mark.asyncio
    async def test_disabled_task_excluded(self, registry):
        await registry.register("emailSync", "0 * * * *")
        await registry.set_enabled("emailSync", False)

        assert await CatchUpDetector(registry).find_missed(T + timedelta(days=1)) == []

    @pytest.mark.asyncio
    async def test_multiple_missed_ticks_collapse(self, registry, clock):
        """10시간을 놓쳐도 태스크당 1건"""
        await registry.register("emailSync", "0 * * * *")
        await registry.register("dailyReport", "0 21 * * *")
        clock.set(T)
        await registry.record_run("emailSync", TaskStatus.SUCCESS)
        await registry.record_run("dailyReport", TaskStatus.SUCCESS)

        missed = await CatchUpDetector(registry).find_missed(T + timedelta(hours=10))

        assert sorted(m.name for m in missed) == ["emailSync"]
        assert missed[0].last_run_at == T

    @pytest.mark.asyncio
    async def test_running_task_remains_eligible(self, registry, clock):
        """실행 중 프로세스가 죽은 태스크(running)도 탐지됨"""
        await registry.register("emailSync", "0 * * * *")
        clock.set(T)
        await registry.record_run("emailSync", TaskStatus.SUCCESS)
        await registry.record_run("emailSync", TaskStatus.RUNNING)

        missed = await CatchUpDetector(registry).find_missed(T + timedelta(hours=2))
        assert [m.name for m in missed] == ["emailSync"]

    @pytest.mark.asyncio
    async def test_uses_registry_clock_by_default(self, registry, clock):
        await registry.register("emailSync", "0 * * * *")
        clock.set(T)
        await registry.record_run("emailSync", TaskStatus.SUCCESS)

        clock.set(T + timedelta(minutes=30))
        assert await CatchUpDetector(registry).find_missed() == []


class TestEmailSyncScenario:
    """emailSync 재시작 시나리오"""

    @pytest.mark.asyncio
    async def test_catch_up_after_ninety_minutes(self, registry, clock):
        """
        lastRunAt = T, now = T + 90분 → missed
        catch-up 성공 후 lastRunAt ≈ now, success, nextRunAt = 다음 정각(T + 2h)
        """
        await registry.register("emailSync", "0 * * * *")
        clock.set(T)
        await registry.record_run("emailSync", TaskStatus.SUCCESS)

        now = T + timedelta(minutes=90)
        clock.set(now)
        missed = await CatchUpDetector(registry).find_missed(now)
        assert [m.name for m in missed] == ["emailSync"]

        calls = []

        async def sync_mailboxes():
            calls.append(clock.now())

        runner = TaskRunner(registry)
        status = await runner.run(JobDescriptor("emailSync", "0 * * * *", sync_mailboxes))

        task = await registry.get("emailSync")
        assert status is TaskStatus.SUCCESS
        assert len(calls) == 1
        assert task.last_run_status is TaskStatus.SUCCESS
        assert task.last_run_at == now
        assert task.next_run_at == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        assert await CatchUpDetector(registry).find_missed(now) == []
