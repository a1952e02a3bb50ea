from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .db import init_db, async_session_maker, ping_db
from .core.config import get_settings
from .core.broadcast import hub
from .core.nats import nats_connect, nats_close, relay_scan_logged
from .core.redis import ping_redis, close_redis
from .routers import admin, directory, qr, scans, ws
from .services.lifecycle import SessionLifecycle
from .services.submission import ScanNotRecorded

settings = get_settings()
logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

async def expire_stale_sessions():
    try:
        async with async_session_maker() as db:
            await SessionLifecycle(db, hub=hub).expire_sweep()
    except Exception:
        logger.exception("Expire sweep failed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    # best-effort infra; the service still runs if these fail
    if settings.nats_enabled:
        try:
            await nats_connect()
            hub.add_relay(relay_scan_logged)
        except Exception as exc:
            logger.warning("NATS unavailable, scan events stay in-process: %s", exc)
    if settings.rl_enabled and not await ping_redis():
        logger.warning("Redis unreachable at %s; rate limiting fails open", settings.redis_url)

    # one scheduler per lifespan: it binds to the loop that starts it
    scheduler = AsyncIOScheduler()
    if settings.qr_ttl_seconds > 0:
        scheduler.add_job(
            expire_stale_sessions, "interval",
            seconds=settings.expire_sweep_interval_seconds,
            id="expire-sweep", replace_existing=True,
        )
    scheduler.start()
    app.state.scheduler = scheduler

    yield

    scheduler.shutdown(wait=False)
    hub.clear_relays()
    await nats_close()
    try:
        await close_redis()
    except Exception as exc:
        logger.warning("Redis close failed: %s", exc)

app = FastAPI(title="qr-attendance-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(qr.router)
app.include_router(scans.router)
app.include_router(admin.router)
app.include_router(directory.router)
app.include_router(ws.router)

@app.exception_handler(ScanNotRecorded)
async def scan_not_recorded(request: Request, exc: ScanNotRecorded):
    return JSONResponse(status_code=500, content={"error": "scan_not_recorded"})

@app.get("/health")
async def health():
    return {"status": "ok", "service": "qr-attendance-svc"}

@app.get("/health/db")
async def health_db():
    return await ping_db()

Instrumentator().instrument(app).expose(app)

def run():
    import uvicorn
    uvicorn.run("qr_attendance.main:app", host=settings.host, port=settings.port)
