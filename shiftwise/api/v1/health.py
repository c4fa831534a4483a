"""
Health endpoint for the Shiftwise backend.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from ...core.config import settings


router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("")
def health(request: Request) -> dict:
    engine = getattr(request.app.state, "workflow_engine", None)
    engine_status = {"enabled": False, "running": False, "rules": 0}
    if engine is not None:
        engine_status = {"enabled": True, "running": engine.is_running, "rules": len(engine.get_rules())}

    mqtt_status = {"enabled": False, "connected": False}
    consumer = getattr(request.app.state, "mqtt_consumer", None)
    if consumer is not None:
        mqtt_status = {
            "enabled": True,
            "connected": consumer.is_connected(),
            "host": settings.mqtt_broker_host,
            "port": settings.mqtt_broker_port,
        }

    return {
        "status": "ok",
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "workflow_engine": engine_status,
        "mqtt_consumer": mqtt_status,
    }
