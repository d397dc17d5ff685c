"""
Telehealth booking notifications, FastAPI server

Handles:
  - Reminder scanners (APScheduler, started with the app)
  - Firebase-style callables: joinInfo, checkPhoneIndex
  - Document trigger delivery for bookings, users, patients, notifications
  - PayTech / PayDunya payment IPN webhooks
  - Admin endpoints for the scheduler
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import parse_qsl

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from teleconsult import join, payments, phone_index, triggers
from teleconsult.config import settings
from teleconsult.scheduler import get_scheduler
from teleconsult.store import get_store

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# App lifespan: wire triggers, start/stop APScheduler
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    triggers.install(get_store())
    scheduler = get_scheduler()
    scheduler.start()
    logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    yield
    scheduler.shutdown(wait=False)


app = FastAPI(
    title="Telehealth booking notifications",
    version="1.0.0",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------

def _callable_error(status_code: int, status: str, message: str) -> JSONResponse:
    return JSONResponse(
        {"error": {"status": status, "message": message}},
        status_code=status_code,
    )


def _verify_app_check(request: Request) -> bool:
    if not settings.enforce_app_check:
        return True
    token = request.headers.get("X-Firebase-AppCheck", "")
    if not token:
        return False
    from firebase_admin import app_check  # noqa: PLC0415
    from teleconsult.store import firebase_app  # noqa: PLC0415
    try:
        app_check.verify_token(token, app=firebase_app())
        return True
    except Exception as exc:
        logger.warning("App Check verification failed: %s", exc)
        return False


async def _callable_data(request: Request) -> dict:
    try:
        body = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    data = body.get("data") if isinstance(body, dict) else None
    return data if isinstance(data, dict) else {}


async def _ipn_body(request: Request) -> dict:
    """IPN payloads arrive as JSON or as form-encoded bodies."""
    raw = await request.body()
    try:
        body = await request.json()
        if isinstance(body, dict):
            return body
    except Exception:
        pass
    pairs = parse_qsl(raw.decode("utf-8", errors="replace"))
    if not pairs:
        raise HTTPException(status_code=400, detail="Invalid data format")
    return dict(pairs)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "store": type(get_store()).__name__,
        "jobs": len(get_scheduler().get_jobs()),
    }


# ---------------------------------------------------------------------------
# Callables
# ---------------------------------------------------------------------------

@app.post("/callable/joinInfo")
async def callable_join_info(request: Request):
    if not _verify_app_check(request):
        return _callable_error(401, "UNAUTHENTICATED", "App Check token missing or invalid")
    data = await _callable_data(request)
    return JSONResponse({"result": join.join_info(data.get("token"))})


@app.post("/callable/checkPhoneIndex")
async def callable_check_phone_index(request: Request):
    if not _verify_app_check(request):
        return _callable_error(401, "UNAUTHENTICATED", "App Check token missing or invalid")
    data = await _callable_data(request)
    try:
        result = phone_index.check_phone_index(data.get("phone"))
    except phone_index.InvalidArgument as exc:
        return _callable_error(400, "INVALID_ARGUMENT", str(exc))
    return JSONResponse({"result": result})


# ---------------------------------------------------------------------------
# Document triggers delivered by the platform
# ---------------------------------------------------------------------------

@app.post("/hooks/{collection}/{doc_id}")
async def document_hook(collection: str, doc_id: str, request: Request):
    try:
        body = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    logger.info("Document event: %s/%s", collection, doc_id)
    try:
        triggers.dispatch(collection, doc_id, body.get("before"), body.get("after"))
    except Exception:
        logger.exception("Trigger failed for %s/%s", collection, doc_id)
    return JSONResponse({"received": True})


# ---------------------------------------------------------------------------
# Payment IPN webhooks
# ---------------------------------------------------------------------------

@app.post("/ipn/paytech")
async def paytech_ipn(request: Request):
    body = await _ipn_body(request)
    try:
        result = payments.handle_paytech_ipn(body)
    except payments.PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    except Exception:
        logger.exception("[PAYTECH IPN] Error processing webhook")
        raise HTTPException(status_code=500, detail="Internal server error")
    return JSONResponse(result)


@app.post("/ipn/paydunya")
async def paydunya_ipn(request: Request):
    body = await _ipn_body(request)
    try:
        result = payments.handle_paydunya_ipn(body, request.headers.get("paydunya-token"))
    except payments.PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    except Exception:
        logger.exception("[PAYDUNYA IPN] Error processing webhook")
        raise HTTPException(status_code=500, detail="Failed to save payment data")
    return JSONResponse(result)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@app.get("/admin/scheduler/jobs")
async def admin_scheduler_jobs():
    """List scheduled reminder jobs and their next run times."""
    scheduler = get_scheduler()
    jobs = [
        {
            "id": job.id,
            "next_run": (
                job.next_run_time.isoformat()
                if getattr(job, "next_run_time", None)
                else None
            ),
        }
        for job in scheduler.get_jobs()
    ]
    return JSONResponse(jobs)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("teleconsult.main:app", host="0.0.0.0", port=settings.port)
