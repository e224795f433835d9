from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from models.schemas import RunStatus

logger = logging.getLogger(__name__)


class RunLedger:
    """Records each job run under a ``(job, run_key)`` key in Mongo.

    A run key names the slot a run belongs to (the hour for hourly jobs, the
    date for the daily sweep). Claiming a key that completed, or that is
    running and younger than ``lease``, fails. Failed runs and runs whose
    lease expired without a finish (a crashed process) may be claimed again.
    """

    def __init__(self, mongo_db, collection: str = "billing_runs", lease: timedelta = timedelta(hours=2)):
        self.collection = mongo_db[collection]
        self.lease = lease

    def ensure_indexes(self):
        self.collection.create_index([("job", ASCENDING), ("run_key", ASCENDING)], unique=True)
        self.collection.create_index([("job", ASCENDING), ("started_at", DESCENDING)])

    def claim(self, job: str, run_key: str) -> bool:
        now = datetime.utcnow()
        try:
            self.collection.insert_one({
                "job": job,
                "run_key": run_key,
                "status": RunStatus.RUNNING.value,
                "attempts": 1,
                "started_at": now,
                "finished_at": None,
                "duration_ms": None,
                "error": None,
                "details": {}
            })
            return True
        except DuplicateKeyError:
            pass

        retried = self.collection.find_one_and_update(
            {
                "job": job,
                "run_key": run_key,
                "$or": [
                    {"status": RunStatus.FAILED.value},
                    {"status": RunStatus.RUNNING.value, "started_at": {"$lt": now - self.lease}}
                ]
            },
            {
                "$set": {
                    "status": RunStatus.RUNNING.value,
                    "started_at": now,
                    "finished_at": None,
                    "error": None
                },
                "$inc": {"attempts": 1}
            },
            return_document=ReturnDocument.AFTER
        )
        if retried:
            logger.info(f"Retrying run {job}/{run_key} (attempt {retried['attempts']})")
            return True

        logger.info(f"Run {job}/{run_key} already claimed, skipping")
        return False

    def finish(
        self,
        job: str,
        run_key: str,
        error: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        run = self.collection.find_one({"job": job, "run_key": run_key})
        if not run:
            return

        now = datetime.utcnow()
        duration_ms = (now - run["started_at"]).total_seconds() * 1000
        self.collection.update_one(
            {"_id": run["_id"]},
            {"$set": {
                "status": RunStatus.FAILED.value if error else RunStatus.COMPLETED.value,
                "finished_at": now,
                "duration_ms": round(duration_ms, 2),
                "error": error,
                "details": details or {}
            }}
        )

    def get_run(self, job: str, run_key: str) -> Optional[dict]:
        doc = self.collection.find_one({"job": job, "run_key": run_key})
        if doc:
            doc.pop("_id", None)
        return doc

    def get_recent_runs(self, job: str, limit: int = 20) -> List[dict]:
        runs = []
        cursor = self.collection.find({"job": job}).sort([("started_at", DESCENDING), ("_id", DESCENDING)])
        for doc in cursor.limit(limit):
            doc.pop("_id", None)
            runs.append(doc)
        return runs
