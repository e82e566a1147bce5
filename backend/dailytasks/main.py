import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dailytasks.config import CORS_ORIGINS, LOG_LEVEL
from dailytasks.database import engine, init_db
from dailytasks.db_schema_patch import (
    ensure_account_columns,
    ensure_level_columns,
    ensure_purchase_event_columns,
)
from dailytasks.routes import daily_tasks
from dailytasks.services.account_gateway import SqlAccountDataGateway
from dailytasks.services.daily_task_engine import DailyTaskEngine
from dailytasks.services.operational_cache import OperationalCache, SqlCacheStore

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Daily Tasks API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(daily_tasks.router, prefix="/api", tags=["daily-tasks"])


@app.on_event("startup")
def on_startup():
    init_db()
    added = ensure_account_columns(engine) + ensure_level_columns(engine) + ensure_purchase_event_columns(engine)
    for name in added:
        logger.info("Added missing column %s", name)

    app.state.engine = DailyTaskEngine(
        SqlAccountDataGateway(engine),
        OperationalCache(SqlCacheStore(engine)),
    )

    for r in app.routes:
        methods = getattr(r, "methods", None)
        path = getattr(r, "path", None)
        if path:
            logger.debug("%-20s %s", ", ".join(sorted(methods)) if methods else "N/A", path)


@app.get("/api/health")
def health_check():
    return {"app_name": "Daily Tasks API", "status": "healthy"}
