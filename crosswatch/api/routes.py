from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from crosswatch.candles.intervals import INTERVALS
from crosswatch.errors import FetchError
from crosswatch.jobs.watcher import SymbolWatcher
from crosswatch.models.market import Tick
from crosswatch.service import WatchService

router = APIRouter()


def _service(request: Request) -> WatchService:
    return request.app.state.watch_service


def _watcher(request: Request, symbol: str) -> SymbolWatcher:
    watcher = _service(request).get(symbol)
    if watcher is None:
        raise HTTPException(status_code=404, detail=f"symbol {symbol!r} is not being watched")
    return watcher


@router.get("/snapshot")
def snapshot(request: Request, symbol: str = Query(..., description="Base asset, e.g., BTC")):
    """
    Latest state for one watched symbol:
    - interval and candle count
    - last candle and last price
    - latest indicator values and MACD histogram state
    - validation of the latest crossover, if any
    """
    return _watcher(request, symbol).snapshot()


@router.get("/symbols")
def symbols(request: Request):
    service = _service(request)
    return {
        "watching": sorted(service.watchers),
        "streams": service.registry.symbols(),
        "intervals": list(INTERVALS),
    }


@router.post("/interval")
async def set_interval(
    request: Request,
    symbol: str = Query(..., description="Base asset, e.g., BTC"),
    interval: str = Query(..., description="One of 1m, 5m, 15m, 1h, 4h, 1d"),
):
    """Switch a symbol's candle granularity and reseed it from history."""
    if interval not in INTERVALS:
        raise HTTPException(status_code=422, detail=f"unknown interval {interval!r}")

    watcher = _watcher(request, symbol)
    try:
        await watcher.set_interval(interval)
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return {"ok": True, "symbol": watcher.symbol, "interval": watcher.interval.token}


@router.post("/dev/simulate_tick")
async def dev_simulate_tick(
    request: Request,
    symbol: str = Query(..., description="Base asset, e.g., BTC"),
    price: float = Query(..., gt=0, description="Tick price"),
    volume: float = Query(0.0, ge=0, description="Tick volume"),
    event_time_ms: Optional[int] = Query(None, description="Event time, defaults to now"),
):
    """
    Dev-only helper:
    Feeds ONE tick into a watched symbol's pipeline inside the running API process.
    """
    watcher = _watcher(request, symbol)
    tick = Tick(
        symbol=watcher.symbol,
        price=price,
        volume=volume,
        event_time_ms=event_time_ms if event_time_ms is not None else int(time.time() * 1000),
    )
    validation = watcher.on_tick(tick)
    return {
        "ok": True,
        "candles": len(watcher.candles()),
        "validation": validation.model_dump() if validation else None,
    }
