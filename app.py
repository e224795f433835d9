import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from db.config import engine, get_mongo_db
from models.mysql_models import Base
from routes.wallet_routes import router as wallet_router
from routes.billing_routes import router as billing_router
from scheduler.config import scheduler_config
from scheduler.run_ledger import RunLedger
from services.resource_store import ResourceStore

logger = logging.getLogger(__name__)

app = FastAPI(
    title="HostPanel Billing API",
    description="Hosting control panel billing - balances, ledger, prices and bandwidth usage",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.warning(f"Failed to create tables: {e}")

    try:
        mongo_db = get_mongo_db()
        ResourceStore(None, mongo_db).ensure_indexes()
        RunLedger(mongo_db, scheduler_config.runs_collection).ensure_indexes()
    except Exception as e:
        logger.warning(f"Failed to create Mongo indexes: {e}")

app.include_router(wallet_router, prefix="/api/v1")
app.include_router(billing_router, prefix="/api/v1")


@app.get("/", tags=["Health"])
def health_check():
    return {"status": "healthy", "service": "hostpanel-billing"}


@app.get("/health", tags=["Health"])
def health():
    return {"status": "ok"}
