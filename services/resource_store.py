from datetime import datetime
from typing import Optional, List
import logging

from pymongo import ASCENDING, DESCENDING
from sqlalchemy import update
from sqlalchemy.orm import Session

from db.config import get_mongo_db
from models.mysql_models import User, Server, Volume, BillingTransaction
from models.schemas import ServerMetric, ServerStatus, TransactionStatus

logger = logging.getLogger(__name__)


class ResourceStoreError(Exception):
    pass


class UserNotFoundError(ResourceStoreError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class InsufficientFundsError(ResourceStoreError):
    def __init__(self, user_id: int, required: int, available: Optional[int] = None):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance for user {user_id}. "
            f"Required: {required} cents, Available: {available} cents"
        )


class ResourceStore:
    METRICS_COLLECTION = "server_metrics"

    def __init__(self, mysql_session: Session, mongo_db=None):
        self.mysql_session = mysql_session
        self.mongo_db = mongo_db if mongo_db is not None else get_mongo_db()
        self.metrics_col = self.mongo_db[self.METRICS_COLLECTION]

    def ensure_indexes(self):
        self.metrics_col.create_index([("server_id", ASCENDING), ("timestamp", ASCENDING)])

    def rollback(self):
        self.mysql_session.rollback()

    # Users

    def create_user(self, username: str, initial_balance: int = 0, currency: str = "USD") -> User:
        user = User(username=username, balance=int(initial_balance), currency=currency)
        self.mysql_session.add(user)
        self.mysql_session.commit()
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        return self.mysql_session.get(User, user_id)

    def get_all_users(self) -> List[User]:
        return self.mysql_session.query(User).order_by(User.id).all()

    # Servers

    def create_server(
        self,
        user_id: int,
        name: str,
        size: str,
        region: str = "nyc1",
        provider_instance_id: Optional[str] = None,
        status: str = ServerStatus.ACTIVE.value,
        created_at: Optional[datetime] = None,
        ip_address: Optional[str] = None
    ) -> Server:
        server = Server(
            user_id=user_id,
            name=name,
            size=size,
            region=region,
            provider_instance_id=provider_instance_id,
            status=status,
            ip_address=ip_address,
            created_at=created_at or datetime.utcnow()
        )
        self.mysql_session.add(server)
        self.mysql_session.commit()
        return server

    def get_server(self, server_id: int) -> Optional[Server]:
        return self.mysql_session.get(Server, server_id)

    def get_all_servers(self) -> List[Server]:
        return self.mysql_session.query(Server).order_by(Server.id).all()

    def get_servers_by_user(self, user_id: int) -> List[Server]:
        return self.mysql_session.query(Server).filter(Server.user_id == user_id).order_by(Server.id).all()

    def update_server(self, server_id: int, **updates) -> Optional[Server]:
        server = self.get_server(server_id)
        if not server:
            return None
        for key, value in updates.items():
            setattr(server, key, value)
        self.mysql_session.commit()
        return server

    def delete_server(self, server_id: int) -> bool:
        server = self.get_server(server_id)
        if not server:
            return False

        try:
            self.mysql_session.execute(
                update(Volume)
                .where(Volume.server_id == server_id)
                .values(server_id=None)
                .execution_options(synchronize_session="fetch")
            )
            self.mysql_session.delete(server)
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise
        return True

    # Volumes

    def create_volume(
        self,
        user_id: int,
        name: str,
        size_gb: int,
        server_id: Optional[int] = None,
        region: str = "nyc1",
        provider_volume_id: Optional[str] = None
    ) -> Volume:
        volume = Volume(
            user_id=user_id,
            server_id=server_id,
            name=name,
            size_gb=size_gb,
            region=region,
            provider_volume_id=provider_volume_id
        )
        self.mysql_session.add(volume)
        self.mysql_session.commit()
        return volume

    def get_volume(self, volume_id: int) -> Optional[Volume]:
        return self.mysql_session.get(Volume, volume_id)

    def get_volumes_by_server(self, server_id: int) -> List[Volume]:
        return self.mysql_session.query(Volume).filter(Volume.server_id == server_id).order_by(Volume.id).all()

    def get_volumes_by_user(self, user_id: int) -> List[Volume]:
        return self.mysql_session.query(Volume).filter(Volume.user_id == user_id).order_by(Volume.id).all()

    def delete_volume(self, volume_id: int) -> bool:
        volume = self.get_volume(volume_id)
        if not volume:
            return False
        self.mysql_session.delete(volume)
        self.mysql_session.commit()
        return True

    # Ledger

    def apply_transaction(
        self,
        user_id: int,
        amount: int,
        tx_type: str,
        description: str = "",
        server_id: Optional[int] = None,
        require_funds: bool = False,
        status: str = TransactionStatus.COMPLETED.value,
        external_reference: Optional[str] = None
    ) -> BillingTransaction:
        """Adjust a balance by ``amount`` cents and append the ledger entry in one commit."""
        amount = int(amount)
        try:
            stmt = update(User).where(User.id == user_id)
            if require_funds and amount < 0:
                stmt = stmt.where(User.balance + amount >= 0)
            result = self.mysql_session.execute(
                stmt.values(balance=User.balance + amount)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                user = self.mysql_session.get(User, user_id)
                if user is None:
                    raise UserNotFoundError(user_id)
                self.mysql_session.refresh(user)
                raise InsufficientFundsError(user_id, -amount, user.balance)

            user = self.mysql_session.get(User, user_id)
            tx = BillingTransaction(
                user_id=user_id,
                server_id=server_id,
                amount=amount,
                currency=user.currency if user else "USD",
                status=status,
                type=tx_type,
                description=description,
                external_reference=external_reference,
                created_at=datetime.utcnow()
            )
            self.mysql_session.add(tx)
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise

        return tx

    def get_transactions(self, user_id: int, limit: Optional[int] = None) -> List[BillingTransaction]:
        query = self.mysql_session.query(BillingTransaction).filter(
            BillingTransaction.user_id == user_id
        ).order_by(BillingTransaction.created_at.desc(), BillingTransaction.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def has_transaction(
        self,
        user_id: int,
        tx_type: str,
        server_id: Optional[int] = None,
        since: Optional[datetime] = None
    ) -> bool:
        query = self.mysql_session.query(BillingTransaction.id).filter(
            BillingTransaction.user_id == user_id,
            BillingTransaction.type == tx_type
        )
        if server_id is not None:
            query = query.filter(BillingTransaction.server_id == server_id)
        if since is not None:
            query = query.filter(BillingTransaction.created_at >= since)
        return query.first() is not None

    # Metrics

    def record_server_metric(
        self,
        server_id: int,
        network_in: int,
        network_out: int,
        timestamp: Optional[datetime] = None,
        cpu_usage: Optional[float] = None,
        memory_usage: Optional[float] = None,
        disk_usage: Optional[float] = None
    ) -> ServerMetric:
        metric = ServerMetric(
            server_id=server_id,
            timestamp=timestamp or datetime.utcnow(),
            network_in=int(network_in),
            network_out=int(network_out),
            cpu_usage=cpu_usage,
            memory_usage=memory_usage,
            disk_usage=disk_usage
        )
        self.metrics_col.insert_one(metric.model_dump())
        return metric

    def get_server_metric_history(
        self,
        server_id: int,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[ServerMetric]:
        """Metric samples for a server in ``[since, until)``, oldest first."""
        query = {"server_id": server_id}
        window = {}
        if since is not None:
            window["$gte"] = since
        if until is not None:
            window["$lt"] = until
        if window:
            query["timestamp"] = window

        cursor = self.metrics_col.find(query).sort("timestamp", ASCENDING)
        if limit:
            cursor = cursor.limit(limit)

        metrics = []
        for doc in cursor:
            doc.pop("_id", None)
            metrics.append(ServerMetric.model_validate(doc))
        return metrics

    def get_latest_server_metric(self, server_id: int) -> Optional[ServerMetric]:
        doc = self.metrics_col.find_one({"server_id": server_id}, sort=[("timestamp", DESCENDING)])
        if not doc:
            return None
        doc.pop("_id", None)
        return ServerMetric.model_validate(doc)
