import argparse
import asyncio
import logging
import signal
import sys
from datetime import timedelta
from typing import Optional

from db.config import get_mongo_db
from provider.client import get_provider_client, close_provider_client
from provider.config import provider_config
from .config import scheduler_config
from .jobs import register_billing_jobs, JOB_NAMES
from .run_ledger import RunLedger
from .scheduler import MeteringScheduler, ManualScheduler


logging.basicConfig(
    level=getattr(logging, scheduler_config.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class GracefulShutdown:
    def __init__(self):
        self.shutdown_event = asyncio.Event()
        self._scheduler: Optional[MeteringScheduler] = None

    def set_scheduler(self, scheduler: MeteringScheduler):
        self._scheduler = scheduler

    async def shutdown(self, sig=None):
        if self.shutdown_event.is_set():
            return
        if sig:
            logger.info(f"Received signal {sig.name}")

        logger.info("Initiating graceful shutdown...")

        if self._scheduler:
            await self._scheduler.stop()

        close_provider_client()
        self.shutdown_event.set()


def build_run_ledger() -> RunLedger:
    ledger = RunLedger(
        get_mongo_db(),
        scheduler_config.runs_collection,
        lease=timedelta(seconds=scheduler_config.run_lease_seconds)
    )
    ledger.ensure_indexes()
    return ledger


async def run_scheduler():
    shutdown_handler = GracefulShutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda s=sig: asyncio.create_task(shutdown_handler.shutdown(s))
        )

    provider = get_provider_client()

    logger.info("Checking provider API health...")
    if not await asyncio.to_thread(provider.health_check):
        logger.error(f"Provider API not reachable at {provider_config.base_url}")
        logger.info("Starting anyway, teardown and metrics calls will retry on later runs...")
    else:
        logger.info("Provider API is healthy")

    scheduler = MeteringScheduler(run_ledger=build_run_ledger())
    register_billing_jobs(scheduler, scheduler_config, provider=provider)
    shutdown_handler.set_scheduler(scheduler)

    metrics_task = None
    try:
        await scheduler.start()
        metrics_task = asyncio.create_task(
            log_metrics_periodically(scheduler, scheduler_config.metrics_log_interval)
        )
        await shutdown_handler.shutdown_event.wait()
    except Exception as e:
        logger.error(f"Scheduler error: {e}")
        raise
    finally:
        if metrics_task:
            metrics_task.cancel()
        await shutdown_handler.shutdown()


async def log_metrics_periodically(scheduler: MeteringScheduler, interval: int = 60):
    while True:
        await asyncio.sleep(interval)
        metrics = scheduler.get_metrics()
        logger.info(
            f"Metrics - Runs: {metrics['runs']}, "
            f"Failed: {metrics['failures']}, "
            f"Skipped: {metrics['skipped']}, "
            f"Uptime: {metrics['uptime_seconds']}s"
        )


def run_once(job: str) -> bool:
    scheduler = ManualScheduler(run_ledger=build_run_ledger())
    register_billing_jobs(scheduler, scheduler_config)
    try:
        return scheduler.run(job)
    finally:
        close_provider_client()


def check_health() -> bool:
    client = get_provider_client()
    healthy = client.health_check()
    close_provider_client()
    return healthy


def main():
    parser = argparse.ArgumentParser(
        description="Hosting billing and metering scheduler"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("start", help="Start the metering scheduler")
    run_parser = subparsers.add_parser("run", help="Run one job once and exit")
    run_parser.add_argument("job", choices=JOB_NAMES)
    subparsers.add_parser("list", help="List registered jobs")
    subparsers.add_parser("health", help="Check provider API health")

    args = parser.parse_args()

    if args.command == "start":
        logger.info("Starting metering scheduler...")
        logger.info(f"Provider API: {provider_config.base_url}")
        asyncio.run(run_scheduler())

    elif args.command == "run":
        if not run_once(args.job):
            sys.exit(1)

    elif args.command == "list":
        scheduler = ManualScheduler()
        register_billing_jobs(scheduler, scheduler_config)
        for job in scheduler.list_jobs():
            print(f"{job['name']:<24} {job['schedule']}")

    elif args.command == "health":
        if check_health():
            print(f"✓ Provider API at {provider_config.base_url} is healthy")
        else:
            print(f"✗ Provider API at {provider_config.base_url} is not reachable")
            sys.exit(1)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
