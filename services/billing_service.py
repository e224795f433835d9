from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
import logging

from models.mysql_models import Server
from models.schemas import ServerStatus, TransactionType
from provider.client import ProviderClient
from services import cost_model
from services.bandwidth_service import BandwidthService, is_cycle_day
from services.resource_store import ResourceStore, InsufficientFundsError

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    job: str
    processed: int = 0
    charged: int = 0
    skipped: int = 0
    torn_down: int = 0
    failed: int = 0
    total_charged_cents: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> float:
        if not self.started_at or not self.finished_at:
            return 0
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict:
        return {
            "job": self.job,
            "processed": self.processed,
            "charged": self.charged,
            "skipped": self.skipped,
            "torn_down": self.torn_down,
            "failed": self.failed,
            "total_charged_cents": self.total_charged_cents,
            "duration_ms": round(self.duration_ms, 2),
        }


class BillingService:
    def __init__(
        self,
        store: ResourceStore,
        provider: ProviderClient,
        bandwidth_service: Optional[BandwidthService] = None
    ):
        self.store = store
        self.provider = provider
        self.bandwidth_service = bandwidth_service or BandwidthService(store)
        self.last_report: Optional[SweepReport] = None

    def _start_report(self, job: str) -> SweepReport:
        return SweepReport(job=job, started_at=datetime.utcnow())

    def _finish_report(self, report: SweepReport):
        report.finished_at = datetime.utcnow()
        self.last_report = report
        logger.info(
            f"{report.job} finished: processed={report.processed} charged={report.charged} "
            f"skipped={report.skipped} torn_down={report.torn_down} failed={report.failed} "
            f"total={report.total_charged_cents} cents in {report.duration_ms:.0f}ms"
        )

    # Hourly server billing

    def run_hourly_server_billing(self) -> None:
        report = self._start_report("hourly_server_billing")

        for server in self.store.get_all_servers():
            report.processed += 1
            server_id = server.id
            try:
                self._bill_server_hour(server, report)
            except Exception as e:
                report.failed += 1
                self.store.rollback()
                logger.error(f"Error processing hourly billing for server {server_id}: {e}")

        self._finish_report(report)

    def _bill_server_hour(self, server: Server, report: SweepReport):
        user = self.store.get_user(server.user_id)
        if not user:
            logger.error(f"User {server.user_id} not found for server {server.id}, removing server")
            if self._remove_server(server):
                report.torn_down += 1
            else:
                report.failed += 1
            return

        cost_cents = cost_model.hourly_price(server.size)
        logger.debug(f"Server {server.id} ({server.name}): Hourly cost = {cost_cents} cents")

        try:
            self.store.apply_transaction(
                user_id=user.id,
                amount=-cost_cents,
                tx_type=TransactionType.HOURLY_SERVER_CHARGE.value,
                description=f'Hourly charge for "{server.name}" ({server.size})',
                server_id=server.id,
                require_funds=True
            )
        except InsufficientFundsError as e:
            logger.warning(
                f"Insufficient balance for user {user.id} ({user.username}). "
                f"Required: {cost_cents} cents, Available: {e.available} cents"
            )
            if self.teardown_server(server, required_cents=cost_cents):
                report.torn_down += 1
            else:
                report.failed += 1
            return

        report.charged += 1
        report.total_charged_cents += cost_cents

    # Teardown

    def _delete_remote_instance(self, server: Server) -> bool:
        if not server.provider_instance_id:
            return True

        response = self.provider.delete_droplet(server.provider_instance_id)
        if response.is_gone:
            return True

        logger.error(
            f"Failed to delete droplet {server.provider_instance_id} for server {server.id}: "
            f"{response.error} (status {response.status_code}); will retry on next sweep"
        )
        return False

    def _remove_server(self, server: Server) -> bool:
        if not self._delete_remote_instance(server):
            return False
        self.store.delete_server(server.id)
        return True

    def teardown_server(self, server: Server, required_cents: int) -> bool:
        server_id = server.id
        user_id = server.user_id
        name = server.name

        # a refused provider delete leaves local state for the next sweep
        if not self._remove_server(server):
            return False

        self.store.apply_transaction(
            user_id=user_id,
            amount=0,
            tx_type=TransactionType.SERVER_DELETED_INSUFFICIENT_FUNDS.value,
            description=(
                f'Server "{name}" was deleted due to insufficient funds. '
                f"Required: {required_cents / 100:.2f} USD."
            ),
            server_id=server_id
        )
        logger.warning(f"Server {server_id} ({name}) of user {user_id} deleted due to insufficient funds")
        return True

    # Hourly volume billing

    def run_hourly_volume_billing(self) -> None:
        report = self._start_report("hourly_volume_billing")

        for server in self.store.get_all_servers():
            server_id = server.id
            try:
                self._bill_server_volumes(server, report)
            except Exception as e:
                report.failed += 1
                self.store.rollback()
                logger.error(f"Error processing hourly volume billing for server {server_id}: {e}")

        self._finish_report(report)

    def _bill_server_volumes(self, server: Server, report: SweepReport):
        volumes = self.store.get_volumes_by_server(server.id)
        if not volumes:
            return

        report.processed += 1
        user = self.store.get_user(server.user_id)
        if not user:
            logger.error(f"User {server.user_id} not found for server {server.id} with volumes")
            report.skipped += 1
            return

        total_gb = sum(volume.size_gb for volume in volumes)
        cost_cents = cost_model.volume_hourly_cost_cents(total_gb)
        if cost_cents <= 0:
            report.skipped += 1
            return

        logger.debug(f"Server {server.id} ({server.name}): Volume hourly cost = {cost_cents} cents")

        try:
            self.store.apply_transaction(
                user_id=user.id,
                amount=-cost_cents,
                tx_type=TransactionType.HOURLY_VOLUME_CHARGE.value,
                description=f'Hourly volume storage charge for "{server.name}" ({total_gb}GB)',
                server_id=server.id,
                require_funds=True
            )
        except InsufficientFundsError as e:
            logger.warning(
                f"Insufficient balance for volume charges: User {user.id} ({user.username}). "
                f"Required: {cost_cents} cents, Available: {e.available} cents"
            )
            report.skipped += 1
            return

        report.charged += 1
        report.total_charged_cents += cost_cents

    # Daily bandwidth sweep

    def run_daily_bandwidth_sweep(self, today: Optional[date] = None) -> None:
        today = today or datetime.utcnow().date()
        report = self._start_report("daily_bandwidth_sweep")

        active_servers = [
            s for s in self.store.get_all_servers()
            if s.status == ServerStatus.ACTIVE.value
        ]
        if not active_servers:
            logger.info("No active servers found for bandwidth calculations")

        for server in active_servers:
            server_id = server.id
            try:
                if not server.created_at:
                    logger.info(f"Server {server_id} has no creation date, skipping bandwidth calculation")
                    continue
                if server.created_at.date() >= today or not is_cycle_day(server.created_at, today):
                    logger.debug(f"Not billing cycle day for server {server_id}, skipping bandwidth overage")
                    continue

                report.processed += 1
                self._process_bandwidth_overage(server, today, report)
            except Exception as e:
                report.failed += 1
                self.store.rollback()
                logger.error(f"Error processing bandwidth overage for server {server_id}: {e}")

        self._finish_report(report)

    def _process_bandwidth_overage(self, server: Server, today: date, report: SweepReport):
        usage = self.bandwidth_service.get_completed_period_usage(server, today)
        if not usage.over_limit:
            report.skipped += 1
            return

        overage_gb = usage.overage_gb
        cost_cents = cost_model.bandwidth_overage_cents(server.size, overage_gb)
        if cost_cents <= 0:
            report.skipped += 1
            return

        period_closed_at = usage.period_end + timedelta(days=1)
        if self.store.has_transaction(
            server.user_id,
            TransactionType.BANDWIDTH_OVERAGE.value,
            server_id=server.id,
            since=period_closed_at
        ):
            logger.info(f"Bandwidth overage for server {server.id} already billed for period ending {usage.period_end.date()}")
            report.skipped += 1
            return

        self.store.apply_transaction(
            user_id=server.user_id,
            amount=-cost_cents,
            tx_type=TransactionType.BANDWIDTH_OVERAGE.value,
            description=(
                f"Bandwidth overage charge for server '{server.name}' "
                f"({round(overage_gb)}GB above limit)"
            ),
            server_id=server.id
        )
        report.charged += 1
        report.total_charged_cents += cost_cents
        logger.info(
            f"Charged user {server.user_id} ${cost_cents / 100:.2f} for "
            f"{round(overage_gb)}GB bandwidth overage on server {server.id}"
        )
