from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from db.config import get_mysql_session, get_mongo_db
from models.schemas import SizeClassResponse, BandwidthResponse, BillingRunResponse
from scheduler.config import scheduler_config
from scheduler.run_ledger import RunLedger
from services import cost_model
from services.bandwidth_service import BandwidthService
from services.resource_store import ResourceStore

router = APIRouter(prefix="/billing", tags=["Billing"])


def get_resource_store(session: Session = Depends(get_mysql_session)) -> ResourceStore:
    return ResourceStore(session, get_mongo_db())


def get_run_ledger() -> RunLedger:
    return RunLedger(get_mongo_db(), scheduler_config.runs_collection)


@router.get(
    "/sizes",
    response_model=List[SizeClassResponse],
    summary="List size classes",
    description="Hourly price, monthly price and included bandwidth for each server size"
)
def list_sizes():
    return [
        {
            "slug": size.slug,
            "hourly_price_cents": size.hourly_price_cents,
            "monthly_price": str(size.monthly_price),
            "included_bandwidth_gb": size.included_bandwidth_gb,
            "overage_price_per_gb": str(size.overage_price_per_gb)
        }
        for size in cost_model.list_size_classes()
    ]


@router.get(
    "/servers/{server_id}/bandwidth",
    response_model=BandwidthResponse,
    summary="Get server bandwidth",
    description="Transfer used by a server in its current billing period"
)
def get_server_bandwidth(
    server_id: int,
    store: ResourceStore = Depends(get_resource_store)
):
    server = store.get_server(server_id)
    if not server:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Server not found"
        )

    usage = BandwidthService(store).get_server_bandwidth(server)
    return {"server_id": server.id, **usage.to_dict()}


@router.get(
    "/runs/{job}",
    response_model=List[BillingRunResponse],
    summary="Get billing runs",
    description="Most recent runs of a scheduled billing job"
)
def get_billing_runs(
    job: str,
    limit: int = Query(20, ge=1, le=200),
    ledger: RunLedger = Depends(get_run_ledger)
):
    return ledger.get_recent_runs(job, limit=limit)
