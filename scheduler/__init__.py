from .config import scheduler_config, SchedulerConfig
from .run_ledger import RunLedger
from .scheduler import JobScheduler, ScheduledJob, MeteringScheduler, ManualScheduler
from .jobs import register_billing_jobs, BillingJobs, JOB_NAMES

__all__ = [
    "scheduler_config",
    "SchedulerConfig",
    "RunLedger",
    "JobScheduler",
    "ScheduledJob",
    "MeteringScheduler",
    "ManualScheduler",
    "register_billing_jobs",
    "BillingJobs",
    "JOB_NAMES",
]
