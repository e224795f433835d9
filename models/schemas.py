from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class ServerStatus(str, Enum):
    ACTIVE = "active"
    OFF = "off"
    REBOOTING = "rebooting"
    STARTING = "starting"
    STOPPING = "stopping"
    RESTORING = "restoring"
    NEW = "new"


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    SERVER_CHARGE = "server_charge"
    HOURLY_SERVER_CHARGE = "hourly_server_charge"
    HOURLY_VOLUME_CHARGE = "hourly_volume_charge"
    BANDWIDTH_OVERAGE = "bandwidth_overage"
    SERVER_DELETED_INSUFFICIENT_FUNDS = "server_deleted_insufficient_funds"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ServerMetric(BaseModel):
    server_id: int
    timestamp: datetime
    network_in: int = 0
    network_out: int = 0
    cpu_usage: Optional[float] = None
    memory_usage: Optional[float] = None
    disk_usage: Optional[float] = None


class DepositRequest(BaseModel):
    amount: int = Field(..., description="Amount in cents")
    reason: str = "Funds added to account"
    external_reference: Optional[str] = None


class WalletResponse(BaseModel):
    user_id: int
    balance: str
    balance_cents: int
    currency: str
    is_suspended: bool


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    server_id: Optional[int] = None
    amount: str
    amount_cents: int
    currency: str
    type: str
    status: str
    description: str
    external_reference: Optional[str] = None
    created_at: datetime


class TransactionHistoryResponse(BaseModel):
    user_id: int
    transactions: List[TransactionResponse]


class SizeClassResponse(BaseModel):
    slug: str
    hourly_price_cents: int
    monthly_price: str
    included_bandwidth_gb: int
    overage_price_per_gb: str


class BandwidthResponse(BaseModel):
    server_id: int
    current: float
    limit: int
    period_start: datetime
    period_end: datetime
    last_updated: datetime
    overage_rate: float
    overage_gb: float


class BillingRunResponse(BaseModel):
    job: str
    run_key: str
    status: str
    attempts: int = 1
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    details: Dict[str, Any] = {}
