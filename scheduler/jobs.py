"""Wiring of the metering jobs onto a scheduler.

Every run opens its own database session and closes it afterwards, so a
failed sweep never leaves a broken session behind for the next one.
"""
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from sqlalchemy.orm import Session

from db.config import SessionLocal
from provider.client import ProviderClient, get_provider_client
from services.billing_service import BillingService
from services.metrics_service import MetricsCollector
from services.resource_store import ResourceStore
from .config import SchedulerConfig, scheduler_config
from .scheduler import JobScheduler

logger = logging.getLogger(__name__)

HOURLY_SERVER_BILLING = "hourly_server_billing"
HOURLY_VOLUME_BILLING = "hourly_volume_billing"
DAILY_BANDWIDTH_SWEEP = "daily_bandwidth_sweep"
METRICS_COLLECTION = "metrics_collection"

JOB_NAMES = [HOURLY_SERVER_BILLING, HOURLY_VOLUME_BILLING, DAILY_BANDWIDTH_SWEEP, METRICS_COLLECTION]


class BillingJobs:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        mongo_db=None,
        provider: Optional[ProviderClient] = None,
        metrics_window: timedelta = timedelta(minutes=5)
    ):
        self.session_factory = session_factory
        self.mongo_db = mongo_db
        self.provider = provider
        self.metrics_window = metrics_window

    def _provider(self) -> ProviderClient:
        return self.provider or get_provider_client()

    @contextmanager
    def _store(self):
        session = self.session_factory()
        try:
            yield ResourceStore(session, self.mongo_db)
        finally:
            session.close()

    def hourly_server_billing(self, now: datetime) -> dict:
        with self._store() as store:
            service = BillingService(store, self._provider())
            service.run_hourly_server_billing()
            return service.last_report.to_dict()

    def hourly_volume_billing(self, now: datetime) -> dict:
        with self._store() as store:
            service = BillingService(store, self._provider())
            service.run_hourly_volume_billing()
            return service.last_report.to_dict()

    def daily_bandwidth_sweep(self, now: datetime) -> dict:
        with self._store() as store:
            service = BillingService(store, self._provider())
            service.run_daily_bandwidth_sweep(today=now.date())
            return service.last_report.to_dict()

    def metrics_collection(self, now: datetime) -> dict:
        with self._store() as store:
            collector = MetricsCollector(store, self._provider(), window=self.metrics_window)
            return {"collected": collector.collect_all(now)}


def register_billing_jobs(
    scheduler: JobScheduler,
    config: SchedulerConfig = scheduler_config,
    session_factory: Callable[[], Session] = SessionLocal,
    mongo_db=None,
    provider: Optional[ProviderClient] = None
) -> BillingJobs:
    jobs = BillingJobs(
        session_factory=session_factory,
        mongo_db=mongo_db,
        provider=provider,
        metrics_window=timedelta(seconds=config.metrics_interval)
    )

    hourly = timedelta(seconds=config.hourly_interval)
    scheduler.register_interval(hourly, jobs.hourly_server_billing, HOURLY_SERVER_BILLING)
    scheduler.register_interval(hourly, jobs.hourly_volume_billing, HOURLY_VOLUME_BILLING)
    scheduler.register_daily(config.daily_sweep_at, jobs.daily_bandwidth_sweep, DAILY_BANDWIDTH_SWEEP)
    scheduler.register_interval(
        timedelta(seconds=config.metrics_interval),
        jobs.metrics_collection,
        METRICS_COLLECTION
    )

    logger.info(
        f"Billing jobs registered: hourly every {config.hourly_interval}s, "
        f"bandwidth sweep daily at {config.bandwidth_sweep_time} UTC, "
        f"metrics every {config.metrics_interval}s"
    )
    return jobs
