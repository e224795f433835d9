from datetime import date, datetime
from types import SimpleNamespace

from models.schemas import ServerMetric
from services.bandwidth_service import (
    BandwidthService,
    billing_period,
    compute_usage,
    is_cycle_day,
)
from services.cost_model import BYTES_PER_GB


class TestBillingPeriod:

    def test_mid_month_anchor(self):
        start, next_start = billing_period(datetime(2024, 1, 15, 9, 30), datetime(2024, 3, 20, 12))
        assert start == datetime(2024, 3, 15)
        assert next_start == datetime(2024, 4, 15)

    def test_before_anchor_uses_previous_month(self):
        start, next_start = billing_period(datetime(2024, 1, 15), datetime(2024, 3, 10))
        assert start == datetime(2024, 2, 15)
        assert next_start == datetime(2024, 3, 15)

    def test_anchor_31_in_thirty_day_month(self):
        start, next_start = billing_period(datetime(2024, 1, 31), datetime(2024, 4, 30, 8))
        assert start == datetime(2024, 4, 30)
        assert next_start == datetime(2024, 5, 31)

    def test_anchor_31_in_february_leap_year(self):
        start, next_start = billing_period(datetime(2024, 1, 31), datetime(2024, 3, 5))
        assert start == datetime(2024, 2, 29)
        assert next_start == datetime(2024, 3, 31)

    def test_anchor_31_in_february_common_year(self):
        start, next_start = billing_period(datetime(2023, 1, 31), datetime(2023, 2, 28))
        assert start == datetime(2023, 2, 28)
        assert next_start == datetime(2023, 3, 31)

    def test_period_spanning_year_end(self):
        start, next_start = billing_period(datetime(2023, 6, 20), datetime(2024, 1, 5))
        assert start == datetime(2023, 12, 20)
        assert next_start == datetime(2024, 1, 20)

    def test_missing_creation_date_anchors_on_first(self):
        start, next_start = billing_period(None, datetime(2024, 5, 17))
        assert start == datetime(2024, 5, 1)
        assert next_start == datetime(2024, 6, 1)


class TestCycleDay:

    def test_matching_day(self):
        assert is_cycle_day(datetime(2024, 1, 15), date(2024, 6, 15))
        assert not is_cycle_day(datetime(2024, 1, 15), date(2024, 6, 14))

    def test_anchor_31_clamps_to_month_end(self):
        created = datetime(2024, 1, 31)
        assert is_cycle_day(created, date(2024, 4, 30))
        assert is_cycle_day(created, date(2024, 2, 29))
        assert not is_cycle_day(created, date(2024, 2, 28))
        assert is_cycle_day(created, date(2023, 2, 28))


class TestComputeUsage:

    def _server(self, size="s-1vcpu-1gb", created_at=datetime(2024, 1, 15)):
        return SimpleNamespace(id=1, size=size, created_at=created_at)

    def test_sums_both_directions_within_period(self):
        metrics = [
            ServerMetric(server_id=1, timestamp=datetime(2024, 3, 16), network_in=BYTES_PER_GB, network_out=BYTES_PER_GB),
            ServerMetric(server_id=1, timestamp=datetime(2024, 3, 20), network_in=2 * BYTES_PER_GB),
            # outside the period
            ServerMetric(server_id=1, timestamp=datetime(2024, 3, 14), network_in=100 * BYTES_PER_GB),
            ServerMetric(server_id=1, timestamp=datetime(2024, 4, 15), network_in=100 * BYTES_PER_GB),
        ]
        usage = compute_usage(self._server(), metrics, now=datetime(2024, 3, 25))

        assert usage.current == 4
        assert usage.limit == 1000
        assert usage.period_start == datetime(2024, 3, 15)
        assert usage.period_end == datetime(2024, 4, 14)
        assert usage.last_updated == datetime(2024, 3, 20)
        assert not usage.over_limit
        assert usage.overage_gb == 0

    def test_no_samples(self):
        usage = compute_usage(self._server(), [], now=datetime(2024, 3, 25))
        assert usage.current == 0
        assert usage.last_updated == datetime(2024, 3, 15)

    def test_over_limit(self):
        metrics = [ServerMetric(server_id=1, timestamp=datetime(2024, 3, 16), network_out=1100 * BYTES_PER_GB)]
        usage = compute_usage(self._server(), metrics, now=datetime(2024, 3, 25))
        assert usage.over_limit
        assert usage.overage_gb == 100
        assert usage.to_dict()["overage_gb"] == 100


class TestBandwidthService:

    def test_reads_history_from_store(self, store, make_user, make_server):
        user = make_user()
        server = make_server(user.id, created_at=datetime(2024, 1, 15))
        store.record_server_metric(server.id, 3 * BYTES_PER_GB, BYTES_PER_GB, timestamp=datetime(2024, 3, 16))
        store.record_server_metric(server.id, 50 * BYTES_PER_GB, 0, timestamp=datetime(2024, 2, 16))

        usage = BandwidthService(store).get_server_bandwidth(server, now=datetime(2024, 3, 20))
        assert usage.current == 4

    def test_completed_period_is_the_one_before_today(self, store, make_user, make_server):
        user = make_user()
        server = make_server(user.id, created_at=datetime(2024, 1, 15))
        store.record_server_metric(server.id, 7 * BYTES_PER_GB, 0, timestamp=datetime(2024, 3, 14, 23))
        store.record_server_metric(server.id, 9 * BYTES_PER_GB, 0, timestamp=datetime(2024, 3, 15, 1))

        usage = BandwidthService(store).get_completed_period_usage(server, date(2024, 3, 15))
        assert usage.period_start == datetime(2024, 2, 15)
        assert usage.period_end == datetime(2024, 3, 14)
        assert usage.current == 7
