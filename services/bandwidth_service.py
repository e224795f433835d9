import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from dateutil.relativedelta import relativedelta

from models.mysql_models import Server
from models.schemas import ServerMetric
from services import cost_model


@dataclass
class BandwidthUsage:
    current: float
    limit: int
    period_start: datetime
    period_end: datetime
    last_updated: datetime
    overage_rate: Decimal = cost_model.BANDWIDTH_OVERAGE_RATE

    @property
    def over_limit(self) -> bool:
        return self.current > self.limit

    @property
    def overage_gb(self) -> float:
        return max(0.0, self.current - self.limit)

    def to_dict(self) -> dict:
        return {
            "current": round(self.current, 2),
            "limit": self.limit,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "last_updated": self.last_updated,
            "overage_rate": float(self.overage_rate),
            "overage_gb": round(self.overage_gb, 2),
        }


def _anchor_date(year: int, month: int, anchor_day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor_day, last_day))


def _anchor_day(created_at: Optional[datetime]) -> int:
    return created_at.day if created_at else 1


def billing_period(created_at: Optional[datetime], now: datetime) -> Tuple[datetime, datetime]:
    """Return ``(period_start, next_period_start)`` for the period containing ``now``."""
    anchor = _anchor_day(created_at)
    today = now.date() if isinstance(now, datetime) else now

    start = _anchor_date(today.year, today.month, anchor)
    if today < start:
        previous = date(today.year, today.month, 1) - relativedelta(months=1)
        start = _anchor_date(previous.year, previous.month, anchor)

    following = date(start.year, start.month, 1) + relativedelta(months=1)
    next_start = _anchor_date(following.year, following.month, anchor)

    return datetime.combine(start, time.min), datetime.combine(next_start, time.min)


def is_cycle_day(created_at: Optional[datetime], today: date) -> bool:
    return today == _anchor_date(today.year, today.month, _anchor_day(created_at))


def compute_usage(
    server: Server,
    metrics: Iterable[ServerMetric],
    now: Optional[datetime] = None
) -> BandwidthUsage:
    now = now or datetime.utcnow()
    period_start, next_start = billing_period(server.created_at, now)

    total_bytes = 0
    last_updated = period_start
    for metric in metrics:
        if metric.timestamp < period_start or metric.timestamp >= next_start:
            continue
        total_bytes += (metric.network_in or 0) + (metric.network_out or 0)
        if metric.timestamp > last_updated:
            last_updated = metric.timestamp

    return BandwidthUsage(
        current=total_bytes / cost_model.BYTES_PER_GB,
        limit=cost_model.included_bandwidth_gb(server.size),
        period_start=period_start,
        period_end=next_start - timedelta(days=1),
        last_updated=last_updated
    )


class BandwidthService:
    def __init__(self, store):
        self.store = store

    def get_server_bandwidth(self, server: Server, now: Optional[datetime] = None) -> BandwidthUsage:
        now = now or datetime.utcnow()
        period_start, next_start = billing_period(server.created_at, now)
        metrics = self.store.get_server_metric_history(server.id, since=period_start, until=next_start)
        return compute_usage(server, metrics, now)

    def get_completed_period_usage(self, server: Server, today: date) -> BandwidthUsage:
        """Usage of the period that ended the day before ``today``."""
        yesterday = datetime.combine(today - timedelta(days=1), time.min)
        return self.get_server_bandwidth(server, now=yesterday)
