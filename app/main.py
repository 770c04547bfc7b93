import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import router
from app.auditor import start_auditor
from app.config import AUDIT_INTERVAL_MINUTES, CORS_ORIGINS, ENABLE_AUDITOR, LOG_LEVEL
from app.core.exceptions import register_exception_handlers
from app.core.metrics import metrics
from app.services.downloads import DownloadAccounting
from app.storage import create_store

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger("book_downloads")


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = create_store()
    app.state.accounting = DownloadAccounting(store)
    app.state.metrics = metrics

    scheduler = None
    if ENABLE_AUDITOR:
        scheduler = start_auditor(store, metrics, logger, AUDIT_INTERVAL_MINUTES)
        logger.info("event=auditor_started interval_minutes=%s", AUDIT_INTERVAL_MINUTES)
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await store.close()


app = FastAPI(title="Book Downloads API", version="1.0.0", lifespan=lifespan)

origins = [origin.strip() for origin in CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
register_exception_handlers(app)
