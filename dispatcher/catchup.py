"""
CatchUpDetector: 프로세스가 내려가 있던 동안 놓친 실행 탐지

놓친 횟수와 관계없이 태스크당 1건만 보고합니다.
(복구 이후 "최소 1회 실행"을 보장하며, 놓친 틱마다 1회씩 실행하지 않음)
"""

import logging
from datetime import datetime

from dispatcher.model.dispatcher import MissedTask
from dispatcher.registry import TaskRegistry

logger = logging.getLogger(__name__)


class CatchUpDetector:
    """놓친 태스크 탐지기 (부수 효과 없음)"""

    def __init__(self, registry: TaskRegistry):
        self._registry = registry

    async def find_missed(self, now: datetime | None = None) -> list[MissedTask]:
        """
        활성화된 태스크 중 실행을 놓친 태스크 목록 반환

        - last_run_at이 없으면 한 번도 실행되지 않았으므로 항상 포함
        - CronClock(cron, last_run_at) <= now 이면 포함

        Raises:
            DatabaseError: 저장소 조회 실패
        """
        now = now or self._registry.clock.now()
        tasks = await self._registry.list_tasks(enabled_only=True)

        missed = []
        for task in tasks:
            if task.last_run_at is None:
                missed.append(MissedTask(name=task.name, cron_expression=task.cron_expression))
                continue

            expected = self._registry.next_run_time(task.cron_expression, task.last_run_at)
            if expected <= now:
                missed.append(
                    MissedTask(
                        name=task.name,
                        cron_expression=task.cron_expression,
                        last_run_at=task.last_run_at,
                    )
                )

        if missed:
            logger.info(f"Found {len(missed)} missed task(s): {', '.join(m.name for m in missed)}")
        else:
            logger.debug("No missed tasks")
        return missed
