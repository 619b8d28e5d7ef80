import asyncio
import logging
import traceback
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import EngineError, LedgerUnavailable
from app.core.timefmt import to_iso, utc_now
from app.runner.engine import DecisionEngine, build_engine
from app.runner.models import TradeResult

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("swingdesk.api")

app = FastAPI(title="SwingDesk Decision Engine")
engine_instance: Optional[DecisionEngine] = None


SENSITIVE_KEYS = {
    "WHALE_API_KEY",
    "RERANK_API_KEY",
}


@app.on_event("startup")
async def _startup_validate_config():
    """Fail-fast config validation at startup."""
    try:
        warnings = settings.validate_runtime()
        for w in warnings:
            log.warning("[CONFIG WARNING] %s", w)
    except ValueError as e:
        # Fail-closed: crash the service rather than running with a bad config
        log.error("%s", e)
        raise


def get_engine() -> DecisionEngine:
    global engine_instance
    if engine_instance is None:
        engine_instance = build_engine(settings)
    return engine_instance


@app.exception_handler(EngineError)
async def _engine_error_handler(request: Request, exc: EngineError):
    return JSONResponse(
        status_code=503,
        content={
            "error": "system offline",
            "detail": str(exc),
            "retryable": exc.retryable,
        },
    )


@dataclass
class LoopServiceState:
    running: bool = False
    interval_seconds: int = settings.LOOP_INTERVAL_SECONDS
    started_at: Optional[str] = None
    last_cycle_at: Optional[str] = None
    last_status: Optional[str] = None
    cycle_count: int = 0
    last_error: Optional[str] = None
    task: Optional[asyncio.Task] = None


loop_service = LoopServiceState()


async def engine_loop():
    """
    Calls engine.run() every interval_seconds.
    Market data outages are retried on the next cycle; any other failure
    halts the loop (fail-closed) after recording a FATAL event.
    """
    engine = get_engine()

    while loop_service.running:
        try:
            loop_service.last_cycle_at = to_iso(utc_now())
            decision = await asyncio.to_thread(engine.run)
            loop_service.cycle_count += 1
            loop_service.last_status = decision.status
            loop_service.last_error = None

        except EngineError as e:
            loop_service.last_error = str(e)
            if not e.retryable:
                _halt(engine, traceback.format_exc())
                break
            log.warning("engine cycle skipped: %s", e)

        except Exception:
            _halt(engine, traceback.format_exc())
            break

        await asyncio.sleep(loop_service.interval_seconds)


def _halt(engine: DecisionEngine, err: str) -> None:
    loop_service.last_error = err
    loop_service.running = False
    log.error("engine loop halted:\n%s", err)
    try:
        engine.audit.event("FATAL", action="LOOP_HALTED", details={"error": err})
    except LedgerUnavailable as e:
        log.error("could not record FATAL event: %s", e)


async def _cancel_loop() -> None:
    loop_service.running = False
    task = loop_service.task
    if task and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # expected when we cancel the background loop
            pass
    loop_service.task = None


def loop_status() -> Dict[str, Any]:
    return {
        "running": loop_service.running,
        "interval_seconds": loop_service.interval_seconds,
        "started_at": loop_service.started_at,
        "last_cycle_at": loop_service.last_cycle_at,
        "last_status": loop_service.last_status,
        "cycle_count": loop_service.cycle_count,
        "last_error": loop_service.last_error,
    }


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "time_utc": to_iso(utc_now()),
        "execution_mode": settings.EXECUTION_MODE,
        "snapshot_source": settings.MARKET_SNAPSHOT_URL or settings.MARKET_SNAPSHOT_PATH,
        "whale_enabled": settings.whale_enabled,
        "rerank_enabled": settings.rerank_enabled,
        "thresholds": {
            "max_rank": settings.MAX_RANK,
            "min_volume_24h": settings.MIN_VOLUME_24H,
            "min_probability": settings.MIN_PROBABILITY_SCORE,
            "min_risk_reward": settings.MIN_RISK_REWARD,
        },
    }


def _settings_public_dict() -> Dict[str, Any]:
    data = settings.model_dump()
    # mask secrets
    for k in list(data.keys()):
        if k in SENSITIVE_KEYS and data[k]:
            data[k] = "***"
    return data


@app.get("/config")
async def config():
    return {"config": _settings_public_dict()}


@app.post("/engine/run")
def engine_run():
    return get_engine().run().to_dict()


@app.get("/engine/status")
def engine_status():
    engine = get_engine()
    return {
        "loop": loop_status(),
        "performance": engine.performance().to_dict(),
    }


@app.post("/engine/loop/start")
async def engine_loop_start(interval_seconds: int | None = None):
    # already running?
    if loop_service.running and loop_service.task and not loop_service.task.done():
        return {"status": "already_running", **loop_status()}

    get_engine()  # ensure engine exists

    loop_service.running = True
    loop_service.interval_seconds = interval_seconds or settings.LOOP_INTERVAL_SECONDS
    loop_service.started_at = to_iso(utc_now())
    loop_service.last_cycle_at = None
    loop_service.last_status = None
    loop_service.cycle_count = 0
    loop_service.last_error = None
    loop_service.task = asyncio.create_task(engine_loop())

    return {"status": "started", **loop_status()}


@app.post("/engine/loop/stop")
async def engine_loop_stop():
    if not loop_service.running:
        return {"status": "not_running", **loop_status()}

    await _cancel_loop()
    return {"status": "stopped", **loop_status()}


@app.on_event("shutdown")
async def on_shutdown():
    if loop_service.running:
        await _cancel_loop()


@app.get("/trades")
def trades(
    limit: int = Query(50, ge=1, le=500),
    result: Optional[str] = None,
):
    wanted: Optional[TradeResult] = None
    if result:
        try:
            wanted = TradeResult(result.upper())
        except ValueError:
            return JSONResponse(
                status_code=400,
                content={"error": f"unknown result filter: {result}"},
            )

    rows = get_engine().ledger.list_trades(limit=limit, result=wanted)
    return {"count": len(rows), "trades": [t.to_dict() for t in rows]}


@app.get("/performance")
def performance():
    return get_engine().performance().to_dict()


@app.get("/logs/events/tail")
def logs_events_tail(limit: int = 50):
    return {"events": get_engine().audit.tail(limit)}
