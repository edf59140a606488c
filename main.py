"""
cronq 통합 진입점

설정 로드 → 로깅 → DB 초기화 → 잡 로드 → Scheduler 실행 순서로 기동합니다.
SIGINT/SIGTERM을 받으면 실행 중인 태스크를 기다린 뒤 종료합니다.

사용법:
    python main.py                      # config/cronq.yaml 사용
    python main.py path/to/cronq.yaml   # 설정 파일 지정
"""

import sys
import os

# Windows 인코딩 설정 (cp949 -> UTF-8)
if sys.platform == "win32":
    os.environ["PYTHONUTF8"] = "1"

import asyncio
import signal
import logging
from datetime import timedelta
from pathlib import Path

from common.clock import Clock
from common.config import AppConfig, ConfigError, load_config
from common.logging import setup_logging
from database import SQLiteDatabase
from dispatcher import Scheduler, TaskRegistry
from worker.base import JobContext, build_descriptors, load_jobs
from worker.batcher import RequestBatcher
from worker.client import HttpCompletionExecutor
from worker.queue import DispatchQueue

logger = logging.getLogger(__name__)


async def open_database(config: AppConfig) -> SQLiteDatabase:
    """scheduled_tasks 저장소 초기화"""
    db_config = config.database.model_dump(exclude={"name"})
    return await SQLiteDatabase.create(config.database.name, db_config)


def create_registry(db: SQLiteDatabase, config: AppConfig, clock: Clock | None = None) -> TaskRegistry:
    return TaskRegistry(
        db,
        clock=clock,
        tz=config.scheduler.timezone,
        fallback=timedelta(seconds=config.scheduler.fallback_interval_seconds),
    )


async def run_scheduler(
    config: AppConfig,
    db: SQLiteDatabase,
    stop_event: asyncio.Event,
    clock: Clock | None = None,
) -> None:
    """Scheduler 실행 (stop_event가 설정될 때까지)"""
    registry = create_registry(db, config, clock)
    queue = DispatchQueue(config.dispatch.concurrency, name="dispatch", clock=clock)

    executor = None
    batcher = None
    if config.completion.api_key:
        executor = HttpCompletionExecutor(config.completion)
        batcher = RequestBatcher.from_config(
            executor,
            config.dispatch,
            default_model=config.completion.model,
            clock=clock,
        )
    else:
        logger.info("Completion API key not configured, request batcher disabled")

    for package in config.job_packages:
        load_jobs(package)

    scheduler = Scheduler(config.scheduler, registry, clock=clock)
    context = JobContext(queue=queue, batcher=batcher, registry=registry)
    for descriptor in build_descriptors(context):
        scheduler.add_job(descriptor)

    async def wait_stop():
        await stop_event.wait()
        await scheduler.stop()

    stopper = asyncio.create_task(wait_stop())
    try:
        await scheduler.start()
    finally:
        stopper.cancel()
        dropped = queue.clear()
        if dropped:
            logger.warning(f"Dropped {dropped} work item(s) that had not started")
        await queue.close(timeout=config.scheduler.shutdown_timeout_seconds)
        if batcher:
            await batcher.close()
        if executor:
            await executor.aclose()


async def main(config_path: str | Path | None = None) -> None:
    """메인 함수"""
    config = load_config(config_path)
    setup_logging(
        level=config.logging.level,
        json_format=config.logging.json_format,
        log_file=config.logging.file,
    )

    db = await open_database(config)

    # 종료 이벤트
    stop_event = asyncio.Event()

    # 시그널 핸들러
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    # Windows는 add_signal_handler를 지원하지 않음
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

    try:
        await run_scheduler(config, db, stop_event)
    except asyncio.CancelledError:
        logger.info("Scheduler cancelled")
    finally:
        await db.close()
        logger.info("cronq stopped")


if __name__ == "__main__":
    args = sys.argv[1:]
    if len(args) > 1:
        print("Usage: python main.py [config.yaml]")
        sys.exit(1)

    print("Starting cronq scheduler")
    try:
        asyncio.run(main(args[0] if args else None))
    except ConfigError as e:
        print(f"Configuration error: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
