import logging
from typing import Any, Dict

from fastapi import Body, FastAPI, HTTPException

from monitor.core.config import settings
from monitor.runner.service import MonitorService, build_service

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger("monitor.main")

app = FastAPI(title="CryptoMind Monitor")
service: MonitorService | None = None


def get_service() -> MonitorService:
    if service is None:
        raise HTTPException(status_code=503, detail="monitor not started")
    return service


@app.on_event("startup")
async def _startup_validate_config():
    """Fail-fast config validation at startup."""
    try:
        warnings = settings.validate_runtime()
        for w in warnings:
            log.warning("[CONFIG WARNING] %s", w)
    except ValueError as e:
        # Fail-closed: crash the service rather than running with a bad config
        log.error(str(e))
        raise


@app.on_event("startup")
async def _startup_service():
    global service
    service = build_service(settings)
    await service.start()


@app.on_event("shutdown")
async def _shutdown_service():
    global service
    if service is not None:
        await service.shutdown()
        service = None


@app.get("/")
def root():
    return {"name": "cryptomind-monitor", "running": service is not None and service.is_running}


@app.get("/monitor/status")
def monitor_status():
    return get_service().status()


@app.get("/monitor/circuit-breakers")
def monitor_circuit_breakers():
    svc = get_service()
    return {"active": [b.as_dict() for b in svc.detector.circuit_breaker.active_breakers()]}


@app.get("/monitor/baselines")
def monitor_baselines():
    svc = get_service()
    return {
        sym: {"value": b.value, "last_updated_ms": b.last_updated_ms}
        for sym, b in svc.detector.baselines.snapshot().items()
    }


@app.get("/monitor/strategies")
def monitor_strategies():
    svc = get_service()
    out = {}
    for sym in svc.positions.monitored_symbols():
        out[sym] = {
            "latest_price": svc.positions.latest_price(sym),
            "strategies": [
                {
                    "id": s.id,
                    "direction": s.direction.value,
                    "status": s.status.value,
                    "targets_hit": s.targets_hit,
                    "current_price": s.current_price,
                }
                for s in svc.positions.strategies_for(sym)
            ],
        }
    return out


@app.post("/feed/tick")
async def feed_tick(payload: Dict[str, Any] = Body(...)):
    svc = get_service()
    result = await svc.handle_message(payload)
    if result is None:
        raise HTTPException(status_code=422, detail="malformed tick")
    return {
        "symbol": result.tick.symbol,
        "triggers": [{"id": t.id, "kind": t.kind.value, "value": t.value} for t in result.triggers],
        "events": [e.to_payload() for e in result.events],
    }
