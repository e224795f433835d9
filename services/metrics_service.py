from datetime import datetime, timedelta
from typing import Optional
import logging

from models.mysql_models import Server
from models.schemas import ServerMetric, ServerStatus
from provider.client import ProviderClient, APIResult
from services.resource_store import ResourceStore

logger = logging.getLogger(__name__)


class MetricsCollector:

    def __init__(
        self,
        store: ResourceStore,
        provider: ProviderClient,
        window: timedelta = timedelta(minutes=5)
    ):
        self.store = store
        self.provider = provider
        self.window = window

    def _sample_start(self, server: Server, now: datetime) -> datetime:
        latest = self.store.get_latest_server_metric(server.id)
        if latest:
            return latest.timestamp

        start = now - self.window
        if server.created_at and server.created_at > start:
            start = server.created_at
        return start

    def collect_server(self, server: Server, now: Optional[datetime] = None) -> Optional[ServerMetric]:
        now = now or datetime.utcnow()
        if not server.provider_instance_id:
            logger.debug(f"Server {server.id} has no provider instance, skipping metrics")
            return None

        start = self._sample_start(server, now)
        if start >= now:
            return None

        response = self.provider.fetch_metrics(server.provider_instance_id, start, now)
        if response.result != APIResult.SUCCESS:
            logger.warning(
                f"Failed to fetch metrics for server {server.id} "
                f"(droplet {server.provider_instance_id}): {response.error}"
            )
            return None

        data = response.data or {}
        metric = self.store.record_server_metric(
            server_id=server.id,
            network_in=data.get("network_in", 0),
            network_out=data.get("network_out", 0),
            timestamp=now
        )
        self.store.update_server(server.id, last_monitored=now)
        return metric

    def collect_all(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        collected = 0

        for server in self.store.get_all_servers():
            if server.status != ServerStatus.ACTIVE.value:
                continue
            server_id = server.id
            try:
                if self.collect_server(server, now):
                    collected += 1
            except Exception as e:
                self.store.rollback()
                logger.error(f"Error collecting metrics for server {server_id}: {e}")

        logger.info(f"Collected metrics for {collected} servers")
        return collected
