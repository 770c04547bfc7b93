from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from app.config import API_KEY, DOCUMENT_STORE, RATE_LIMIT_PER_MINUTE
from app.core.metrics import metrics
from app.core.rate_limit import RateLimiter
from app.models import DownloadAudit, DownloadCount
from app.services.downloads import DownloadAccounting
from app.services.stats import audit_user

router = APIRouter()

logger = logging.getLogger("book_downloads")

rate_limiter = RateLimiter(RATE_LIMIT_PER_MINUTE)


def get_accounting(request: Request) -> DownloadAccounting:
    return request.app.state.accounting


def require_api_key(request: Request):
    """Write routes are open unless API_KEY is configured."""
    if not API_KEY:
        return None
    api_key = request.headers.get("x-api-key") or request.query_params.get("api_key")
    if not api_key or api_key != API_KEY:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return api_key


async def enforce_rate_limit(request: Request):
    client = request.client.host if request.client else "unknown"
    allowed, retry_after = rate_limiter.hit(client)
    if not allowed:
        logger.warning("event=rate_limited client=%s retry_after=%s", client, retry_after)
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )


write_guards = [Depends(require_api_key), Depends(enforce_rate_limit)]


@router.get("/health")
async def health():
    payload = {"status": "ok", "store": DOCUMENT_STORE}
    if DOCUMENT_STORE == "sql":
        from app.db import ensure_connection

        if not ensure_connection():
            return JSONResponse({**payload, "status": "degraded"}, status_code=503)
    return payload


@router.get("/users/{user_id}/counter", response_model=DownloadCount)
async def download_count(user_id: str, accounting: DownloadAccounting = Depends(get_accounting)):
    downloads = await accounting.get_download_count(user_id)
    metrics.record("reads")
    return DownloadCount(user_id=user_id, downloads=downloads)


@router.post("/users/{user_id}/counter/increment", dependencies=write_guards)
async def increment(
    user_id: str,
    amount: int = Query(1, ge=1),
    accounting: DownloadAccounting = Depends(get_accounting),
):
    await accounting.increment_downloads(user_id, amount)
    metrics.record("increments")
    return {"status": "incremented", "user_id": user_id, "amount": amount}


@router.post("/users/{user_id}/counter/decrement", dependencies=write_guards)
async def decrement(user_id: str, accounting: DownloadAccounting = Depends(get_accounting)):
    await accounting.decrement_downloads(user_id)
    metrics.record("decrements")
    return {"status": "decremented", "user_id": user_id}


@router.get("/users/{user_id}/downloads")
async def list_downloads(user_id: str, accounting: DownloadAccounting = Depends(get_accounting)):
    records = await accounting.list_downloads(user_id)
    metrics.record("reads")
    return {"user_id": user_id, "downloads": [r.model_dump(mode="json") for r in records]}


@router.get("/users/{user_id}/audit", response_model=DownloadAudit)
async def audit(user_id: str, accounting: DownloadAccounting = Depends(get_accounting)):
    result = await audit_user(accounting.store, user_id)
    if not result.consistent:
        logger.warning(
            "event=download_drift user_id=%s counter=%s ledger_entries=%s",
            user_id,
            result.counter,
            result.ledger_entries,
        )
    return result


@router.put("/users/{user_id}/downloads/{book_id}", dependencies=write_guards)
async def record(user_id: str, book_id: str, accounting: DownloadAccounting = Depends(get_accounting)):
    await accounting.record_download(user_id, book_id)
    metrics.record("records")
    return {"status": "recorded", "user_id": user_id, "book_id": book_id}


@router.post("/users/{user_id}/downloads/{book_id}", dependencies=write_guards)
async def download(user_id: str, book_id: str, accounting: DownloadAccounting = Depends(get_accounting)):
    # Counter first, then ledger. A failure on the second call leaves the
    # counter one ahead; no compensating write is attempted.
    await accounting.increment_downloads(user_id)
    metrics.record("increments")
    await accounting.record_download(user_id, book_id)
    metrics.record("records")
    return {"status": "downloaded", "user_id": user_id, "book_id": book_id}


@router.delete("/users/{user_id}/downloads/{book_id}", dependencies=write_guards)
async def remove(user_id: str, book_id: str, accounting: DownloadAccounting = Depends(get_accounting)):
    await accounting.remove_download(user_id, book_id)
    metrics.record("removals")
    return {"status": "removed", "user_id": user_id, "book_id": book_id}


@router.get("/metrics")
def metrics_snapshot():
    response = JSONResponse(metrics.snapshot())
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return response
