"""일일 태스크 상태 리포트"""

import logging
from collections import Counter

from dispatcher.model.dispatcher import ScheduledTask, TaskStatus
from worker.base import BaseJob, job
from worker.exception import WorkerError

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "A scheduled task failed. Suggest the most likely cause in one sentence.\n"
    "Task: {name}\nSchedule: {cron}\nError: {error}"
)


@job(
    "task_health_report",
    "0 21 * * *",
    description="Daily summary of scheduled task health",
    timeout_seconds=600,
)
class TaskHealthReportJob(BaseJob):
    """
    전체 태스크 상태 집계

    completion batcher가 설정되어 있으면 실패한 태스크마다 원인 추정을 요청합니다.
    (태스크별 작업은 DispatchQueue로 펼치고, 다운스트림 호출은 RequestBatcher를 거칩니다)
    """

    async def run(self) -> None:
        registry = self.context.registry
        if registry is None:
            raise WorkerError("task_health_report requires a task registry")

        tasks = await registry.list_tasks()
        counts = Counter(task.last_run_status.value for task in tasks)
        logger.info(
            f"Task health: total={len(tasks)}, "
            + ", ".join(f"{status.value}={counts.get(status.value, 0)}" for status in TaskStatus)
        )

        failed = {task.name: task for task in tasks if task.last_run_status is TaskStatus.FAILED}
        if not failed:
            return
        if self.context.batcher is None:
            logger.info(f"Failed tasks: {', '.join(sorted(failed))}")
            return

        async def explain(name: str) -> None:
            await self._explain_failure(failed[name])

        result = await self.queue.fan_out(sorted(failed), explain)
        if result.failed:
            logger.warning(f"Could not analyse {result.failed} failed task(s): {result.errors}")

    async def _explain_failure(self, task: ScheduledTask) -> None:
        prompt = PROMPT_TEMPLATE.format(
            name=task.name,
            cron=task.cron_expression,
            error=task.last_run_error or "unknown",
        )
        answer = await self.batcher.submit(prompt)
        logger.info(f"[{task.name}] likely cause: {answer.strip()}")
