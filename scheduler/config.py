import os
from dataclasses import dataclass
from datetime import time
from dotenv import load_dotenv

load_dotenv()


@dataclass
class SchedulerConfig:
    hourly_interval: float = float(os.getenv("BILLING_HOURLY_INTERVAL", "3600"))
    bandwidth_sweep_time: str = os.getenv("BANDWIDTH_SWEEP_TIME", "00:05")
    metrics_interval: float = float(os.getenv("METRICS_INTERVAL", "300"))
    metrics_log_interval: int = int(os.getenv("METRICS_LOG_INTERVAL", "60"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    runs_collection: str = os.getenv("BILLING_RUNS_COLLECTION", "billing_runs")
    run_lease_seconds: float = float(os.getenv("BILLING_RUN_LEASE", "7200"))

    @property
    def daily_sweep_at(self) -> time:
        hours, minutes = self.bandwidth_sweep_time.split(":")
        return time(int(hours), int(minutes))


scheduler_config = SchedulerConfig()
