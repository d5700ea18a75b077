"""
Crash Risk Dashboard API
========================

Read-only views over the published RiskPerCoin map, plus coin-set control:
- GET /api/risk                   all records (no trace)
- GET /api/risk/{coin}            one record with structured trace
- GET /api/risk/{coin}/trace.txt  plain-text trace report
- GET /api/risk/{coin}/trace.json canonical JSON trace (sorted keys)
- PUT /api/coins                  replace the coin set
- GET /api/health                 cycle stats, staleness and coin memory
"""
from typing import List, Optional
import structlog

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, Field

from src.risk.monitor import CrashRiskMonitor
from src.risk.trace import render_trace_text, trace_to_json

logger = structlog.get_logger(__name__)

app = FastAPI(title="Crash Risk Monitor")

_monitor: Optional[CrashRiskMonitor] = None


class CoinSetRequest(BaseModel):
    coins: List[str] = Field(default_factory=list)


def set_monitor(monitor: Optional[CrashRiskMonitor]) -> None:
    """Attach the monitor whose records the API serves"""
    global _monitor
    _monitor = monitor


def _require_monitor() -> CrashRiskMonitor:
    if _monitor is None:
        raise HTTPException(status_code=503, detail="monitor not running")
    return _monitor


@app.get("/api/risk")
async def get_all_risk():
    monitor = _require_monitor()
    records = monitor.get_records()
    return {
        "coins": monitor.coins,
        "records": {coin: r.to_dict(include_trace=False) for coin, r in records.items()},
    }


@app.get("/api/risk/{coin}")
async def get_coin_risk(coin: str):
    record = _require_monitor().get_record(coin)
    if record is None:
        raise HTTPException(status_code=404, detail=f"no risk record for {coin}")
    return record.to_dict()


@app.get("/api/risk/{coin}/trace.txt", response_class=PlainTextResponse)
async def get_coin_trace_text(coin: str):
    record = _require_monitor().get_record(coin)
    if record is None:
        raise HTTPException(status_code=404, detail=f"no risk record for {coin}")
    return render_trace_text(record.trace)


@app.get("/api/risk/{coin}/trace.json")
async def get_coin_trace_json(coin: str):
    record = _require_monitor().get_record(coin)
    if record is None:
        raise HTTPException(status_code=404, detail=f"no risk record for {coin}")
    return Response(content=trace_to_json(record.trace), media_type="application/json")


@app.put("/api/coins")
async def put_coins(request: CoinSetRequest):
    monitor = _require_monitor()
    coins = monitor.set_coins(request.coins)
    logger.info("api_coins_updated", coins=coins)
    return {"coins": coins}


@app.get("/api/health")
async def get_health():
    return _require_monitor().get_health()


def run_dashboard(host: str = "0.0.0.0", port: int = 8890):
    """Run the API server standalone"""
    import uvicorn
    uvicorn.run(app, host=host, port=port)


async def start_dashboard_async(host: str = "0.0.0.0", port: int = 8890):
    """Start API server in async context"""
    import uvicorn
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)
    await server.serve()
