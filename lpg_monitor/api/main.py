"""
LPG Tank Monitor - API Server

Provides endpoints for:
- Live tank level (SOAP fetch, alarm check, persistence)
- Reading history
- Consumption reports
- Tank configuration (thresholds, capacity, alarm recipients)
- Health / database status
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from lpg_monitor.core.config import get_settings
from lpg_monitor.core.database import async_session_maker, db_status
from lpg_monitor.services.alarms import AlarmService
from lpg_monitor.services.consumption import ConsumptionService, ReportCache
from lpg_monitor.services.mailer import build_mailer
from lpg_monitor.services.scheduler import PollScheduler, ingest_reading
from lpg_monitor.services.store import TankStore, tank_info_to_dict
from lpg_monitor.services.telemetry import DeviceOffline, DeviceUnreachable, TelemetryClient

logger = logging.getLogger(__name__)

settings = get_settings()

VERSION = "1.0.0"

HISTORY_DEFAULT_LIMIT = 1000
HISTORY_MAX_LIMIT = 50000


# ==================== DEPENDENCIES ====================

@lru_cache
def get_store() -> TankStore:
    return TankStore(async_session_maker)


@lru_cache
def get_telemetry_client() -> TelemetryClient:
    return TelemetryClient.from_settings(settings)


@lru_cache
def get_alarm_service() -> AlarmService:
    return AlarmService(
        store=get_store(),
        mailer=build_mailer(settings),
        throttle=settings.alarm_throttle,
    )


@lru_cache
def get_consumption_service() -> ConsumptionService:
    return ConsumptionService(
        history=get_store(),
        min_readings_per_day=settings.min_readings_per_day,
        window_days=settings.consumption_window_days,
        lookback_days=settings.known_terminal_lookback_days,
        cache=ReportCache(ttl_seconds=settings.consumption_cache_ttl_seconds),
    )


# ==================== APP ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    await db_status.probe()

    scheduler = None
    scheduler_task = None
    if settings.poll_interval_seconds > 0:
        scheduler = PollScheduler(
            client=get_telemetry_client(),
            alarm_service=get_alarm_service(),
            store=get_store(),
            variable_name=settings.level_variable_name,
            interval_seconds=settings.poll_interval_seconds,
            extra_terminals=settings.terminal_ids_list,
        )
        scheduler_task = asyncio.create_task(scheduler.start())

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()
            scheduler_task.cancel()
        await get_telemetry_client().close()


app = FastAPI(
    title="LPG Tank Monitor API",
    description="Tank level telemetry, alarms and gas consumption",
    version=VERSION,
    lifespan=lifespan,
)


async def database_error_handler(request: Request, exc: Exception):
    logger.warning(f"Database error on {request.url.path}: {exc}")
    return JSONResponse({"error": "Temporarily unavailable"}, status_code=503)


# asyncpg raises plain OSError when the server refuses the connection
app.add_exception_handler(SQLAlchemyError, database_error_handler)
app.add_exception_handler(OSError, database_error_handler)


# ==================== TANK LEVEL ====================

@app.get("/api/tank")
async def get_tank(
    terminal_id: Optional[str] = Query(None, alias="terminalId"),
    client: TelemetryClient = Depends(get_telemetry_client),
    alarm_service: AlarmService = Depends(get_alarm_service),
    store: TankStore = Depends(get_store),
):
    """Fetch the live level of a terminal from the telemetry service."""
    if not terminal_id:
        return JSONResponse({"error": "terminalId query parameter is required"}, status_code=400)

    try:
        raw = await client.fetch_reading(terminal_id, settings.level_variable_name)
    except DeviceOffline:
        return JSONResponse({"error": "Device Offline"}, status_code=404)
    except DeviceUnreachable as e:
        logger.warning(f"Telemetry fetch failed for {terminal_id}: {e}")
        return JSONResponse({"error": "Bad response from SOAP service"}, status_code=502)

    try:
        await ingest_reading(raw.to_reading(), alarm_service, store)
    except (SQLAlchemyError, OSError) as e:
        # The live value is still useful without persistence
        logger.warning(f"Failed to store reading for {terminal_id}: {e}")

    return {
        "value": raw.raw_value,
        "timestamp": raw.raw_timestamp,
        "id": raw.terminal_id,
        "sn": raw.serial,
    }


@app.get("/api/history")
async def get_history(
    terminal_id: Optional[str] = Query(None, alias="terminalId"),
    limit: Optional[str] = Query(None),
    store: TankStore = Depends(get_store),
):
    """Stored readings for a terminal, oldest first."""
    if not terminal_id:
        return JSONResponse({"error": "terminalId query parameter is required"}, status_code=400)

    try:
        requested = int(limit) if limit else HISTORY_DEFAULT_LIMIT
    except ValueError:
        requested = 1
    requested = min(max(requested, 1), HISTORY_MAX_LIMIT)

    readings = await store.history(terminal_id, requested)
    rows = [
        {
            "timestamp": r.recorded_at.astimezone(timezone.utc).isoformat() if r.recorded_at else None,
            "tank_level": r.tank_level,
        }
        for r in readings
    ]
    return {"id": terminal_id, "count": len(rows), "rows": rows}


# ==================== CONSUMPTION ====================

@app.get("/api/consumption")
async def get_consumption(
    terminal_id: Optional[str] = Query(None, alias="terminalId"),
    service: ConsumptionService = Depends(get_consumption_service),
):
    """Consumption report for one terminal, or for all known terminals."""
    return await service.get_consumption_report(terminal_id)


# ==================== TANK INFO ====================

class TankInfoUpdate(BaseModel):
    title: Optional[str] = None
    site: Optional[str] = None
    emirate: Optional[str] = None
    project_code: Optional[str] = None
    building_name: Optional[str] = None
    address: Optional[str] = None
    lpg_min_level: Optional[float] = None
    lpg_max_level: Optional[float] = None
    lpg_tank_capacity: Optional[str] = None
    alarm_email: Optional[str] = None


@app.get("/api/tank-info")
async def list_tank_info(store: TankStore = Depends(get_store)):
    return {"rows": [tank_info_to_dict(info) for info in await store.list_tank_info()]}


@app.put("/api/tank-info/{terminal_id}")
async def put_tank_info(
    terminal_id: str,
    body: TankInfoUpdate,
    store: TankStore = Depends(get_store),
):
    """Create or update a terminal's configuration. Only sent fields change."""
    info = await store.upsert_tank_info(terminal_id, body.model_dump(exclude_unset=True))
    return tank_info_to_dict(info)


# ==================== HEALTH CHECK ====================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "time": datetime.now(timezone.utc).isoformat(),
        "db_available": db_status.available,
        "version": VERSION,
    }


@app.get("/internal/dbstatus")
async def get_db_status():
    return {
        "db_available": db_status.available,
        "last_db_error": db_status.last_error,
    }


# ==================== MAIN ====================

def main():
    """Entry point."""
    import uvicorn

    logging.basicConfig(level=settings.log_level.upper())
    logger.info("Starting LPG Tank Monitor API...")
    uvicorn.run(app, host="0.0.0.0", port=3007)


if __name__ == "__main__":
    main()
