"""
잡 레지스트리 테스트

테스트 항목:
1. load_jobs로 하위 패키지까지 재귀 로드 및 등록
2. build_descriptors로 JobDescriptor 변환
3. 이름 중복 / BaseJob 미상속 시 JobRegistrationError
4. task_health_report 잡 (DispatchQueue + RequestBatcher 사용)

실행: python -m pytest test/jobs_test.py -v
"""

import pytest

import worker.base
from dispatcher.model.dispatcher import TaskStatus
from worker.base import BaseJob, JobContext, build_descriptors, get_registered_jobs, job, load_jobs
from worker.exception import JobRegistrationError, WorkerError
from worker.queue import DispatchQueue


@pytest.fixture
def isolated_registry(monkeypatch):
    """테스트 중 등록한 잡이 다른 테스트에 남지 않도록 레지스트리 복사본 사용"""
    monkeypatch.setattr(worker.base, "_registry", dict(worker.base._registry))


class FakeBatcher:
    def __init__(self):
        self.prompts: list[str] = []

    async def submit(self, payload: str, model: str | None = None) -> str:
        self.prompts.append(payload)
        return "credentials expired"


class TestDiscovery:
    """잡 로드 테스트"""

    def test_load_jobs_recursive(self):
        loaded = load_jobs("sample_jobs")

        assert "sample_jobs.hourly" in loaded
        assert "sample_jobs.nested.fan_out" in loaded
        registered = get_registered_jobs()
        assert "sample_hourly" in registered
        assert "sample_fan_out" in registered

    def test_reload_is_idempotent(self):
        load_jobs("sample_jobs")
        load_jobs("sample_jobs")
        assert get_registered_jobs()["sample_hourly"].cron_expression == "0 * * * *"

    @pytest.mark.asyncio
    async def test_build_descriptors(self):
        load_jobs("sample_jobs")
        context = JobContext(queue=DispatchQueue(concurrency=2))

        descriptors = {d.name: d for d in build_descriptors(context, names=["sample_hourly", "sample_fan_out"])}

        hourly = descriptors["sample_hourly"]
        assert hourly.cron_expression == "0 * * * *"
        assert hourly.description == "Hourly sample job"
        assert hourly.timeout_seconds == 30

        before = get_registered_jobs()["sample_hourly"].runs
        await hourly.run()
        assert get_registered_jobs()["sample_hourly"].runs == before + 1

        await descriptors["sample_fan_out"].run()
        assert set(get_registered_jobs()["sample_fan_out"].synced) == {"alice", "bob", "carol"}


class TestRegistration:
    """잡 등록 오류 테스트"""

    def test_duplicate_name_rejected(self, isolated_registry):
        @job("duplicate_job", "0 * * * *")
        class FirstJob(BaseJob):
            async def run(self) -> None:
                pass

        with pytest.raises(JobRegistrationError) as exc_info:
            @job("duplicate_job", "0 * * * *")
            class SecondJob(BaseJob):
                async def run(self) -> None:
                    pass

        assert exc_info.value.name == "duplicate_job"

    def test_non_job_class_rejected(self, isolated_registry):
        with pytest.raises(JobRegistrationError):
            @job("not_a_job", "0 * * * *")
            class NotAJob:
                pass

    @pytest.mark.asyncio
    async def test_batcher_required(self, isolated_registry):
        @job("needs_batcher", "0 * * * *")
        class NeedsBatcher(BaseJob):
            async def run(self) -> None:
                await self.batcher.submit("hello")

        descriptor = build_descriptors(JobContext(queue=DispatchQueue()), names=["needs_batcher"])[0]
        with pytest.raises(WorkerError):
            await descriptor.run()


class TestTaskHealthReport:
    """task_health_report 잡 테스트"""

    @pytest.mark.asyncio
    async def test_explains_failed_tasks(self, registry):
        load_jobs("worker.job")
        await registry.register("emailSync", "0 * * * *")
        await registry.register("dailyReport", "0 21 * * *")
        await registry.record_run("emailSync", TaskStatus.FAILED, "IMAP login rejected")
        await registry.record_run("dailyReport", TaskStatus.SUCCESS)

        batcher = FakeBatcher()
        context = JobContext(queue=DispatchQueue(concurrency=2), batcher=batcher, registry=registry)
        descriptor = build_descriptors(context, names=["task_health_report"])[0]

        assert descriptor.cron_expression == "0 21 * * *"
        await descriptor.run()

        assert len(batcher.prompts) == 1
        assert "emailSync" in batcher.prompts[0]
        assert "IMAP login rejected" in batcher.prompts[0]

    @pytest.mark.asyncio
    async def test_without_batcher_only_summarises(self, registry):
        load_jobs("worker.job")
        await registry.register("emailSync", "0 * * * *")
        await registry.record_run("emailSync", TaskStatus.FAILED, "boom")

        context = JobContext(queue=DispatchQueue(), registry=registry)
        descriptor = build_descriptors(context, names=["task_health_report"])[0]
        await descriptor.run()

    @pytest.mark.asyncio
    async def test_requires_registry(self):
        load_jobs("worker.job")
        descriptor = build_descriptors(JobContext(queue=DispatchQueue()), names=["task_health_report"])[0]

        with pytest.raises(WorkerError):
            await descriptor.run()
