from datetime import datetime, timedelta

import pytest

from models.schemas import TransactionType
from services.resource_store import InsufficientFundsError, UserNotFoundError


def ledger_total(store, user_id):
    return sum(tx.amount for tx in store.get_transactions(user_id))


class TestApplyTransaction:

    def test_credit_updates_balance_and_ledger(self, store, make_user):
        user = make_user(balance=0)
        tx = store.apply_transaction(user.id, 1500, TransactionType.DEPOSIT.value, "Funds added")

        assert tx.id is not None
        assert tx.amount == 1500
        assert tx.currency == "USD"
        assert store.get_user(user.id).balance == 1500

    def test_debit_without_guard_may_go_negative(self, store, make_user):
        user = make_user(balance=100)
        store.apply_transaction(user.id, -250, TransactionType.BANDWIDTH_OVERAGE.value)
        assert store.get_user(user.id).balance == -150

    def test_guarded_debit_rejected_when_short(self, store, make_user):
        user = make_user(balance=5)

        with pytest.raises(InsufficientFundsError) as exc_info:
            store.apply_transaction(
                user.id, -7, TransactionType.HOURLY_SERVER_CHARGE.value, require_funds=True
            )

        assert exc_info.value.required == 7
        assert exc_info.value.available == 5
        assert store.get_user(user.id).balance == 5
        assert store.get_transactions(user.id) == []

    def test_guarded_debit_allows_exact_balance(self, store, make_user):
        user = make_user(balance=7)
        store.apply_transaction(user.id, -7, TransactionType.HOURLY_SERVER_CHARGE.value, require_funds=True)
        assert store.get_user(user.id).balance == 0

    def test_unknown_user(self, store):
        with pytest.raises(UserNotFoundError):
            store.apply_transaction(999, 100, TransactionType.DEPOSIT.value)

    def test_ledger_matches_balance_after_many_operations(self, store, make_user):
        user = make_user(balance=0)
        store.apply_transaction(user.id, 1000, TransactionType.DEPOSIT.value)
        store.apply_transaction(user.id, -7, TransactionType.HOURLY_SERVER_CHARGE.value, require_funds=True)
        store.apply_transaction(user.id, 0, TransactionType.SERVER_DELETED_INSUFFICIENT_FUNDS.value)
        store.apply_transaction(user.id, -1200, TransactionType.BANDWIDTH_OVERAGE.value)
        with pytest.raises(InsufficientFundsError):
            store.apply_transaction(user.id, -1, TransactionType.HOURLY_VOLUME_CHARGE.value, require_funds=True)

        assert store.get_user(user.id).balance == -207
        assert ledger_total(store, user.id) == -207

    def test_has_transaction_filters(self, store, make_user):
        user = make_user(balance=0)
        store.apply_transaction(user.id, -10, TransactionType.BANDWIDTH_OVERAGE.value, server_id=3)

        overage = TransactionType.BANDWIDTH_OVERAGE.value
        assert store.has_transaction(user.id, overage, server_id=3)
        assert not store.has_transaction(user.id, overage, server_id=4)
        assert not store.has_transaction(user.id, TransactionType.DEPOSIT.value)
        assert not store.has_transaction(user.id, overage, since=datetime.utcnow() + timedelta(days=1))


class TestServers:

    def test_delete_server_detaches_volumes(self, store, make_user, make_server):
        user = make_user()
        server = make_server(user.id)
        volume = store.create_volume(user.id, "data", 100, server_id=server.id)
        server_id = server.id

        assert store.delete_server(server_id) is True
        assert store.get_server(server_id) is None
        assert store.get_volume(volume.id).server_id is None
        assert store.get_volumes_by_server(server_id) == []

    def test_delete_missing_server(self, store):
        assert store.delete_server(12345) is False

    def test_update_server(self, store, make_user, make_server):
        user = make_user()
        server = make_server(user.id)
        stamp = datetime(2024, 5, 1, 12)
        store.update_server(server.id, last_monitored=stamp, status="off")

        refreshed = store.get_server(server.id)
        assert refreshed.last_monitored == stamp
        assert refreshed.status == "off"


class TestMetrics:

    def test_history_window_is_half_open_and_sorted(self, store):
        store.record_server_metric(1, 30, 0, timestamp=datetime(2024, 3, 3))
        store.record_server_metric(1, 10, 0, timestamp=datetime(2024, 3, 1))
        store.record_server_metric(1, 20, 0, timestamp=datetime(2024, 3, 2))
        store.record_server_metric(2, 99, 0, timestamp=datetime(2024, 3, 2))

        history = store.get_server_metric_history(1, since=datetime(2024, 3, 1), until=datetime(2024, 3, 3))
        assert [m.network_in for m in history] == [10, 20]

    def test_latest_metric(self, store):
        assert store.get_latest_server_metric(1) is None
        store.record_server_metric(1, 10, 5, timestamp=datetime(2024, 3, 1))
        store.record_server_metric(1, 20, 5, timestamp=datetime(2024, 3, 2))

        latest = store.get_latest_server_metric(1)
        assert latest.network_in == 20
        assert latest.timestamp == datetime(2024, 3, 2)
