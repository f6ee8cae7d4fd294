from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from ..exceptions import PersistenceError
from ..models import AlertKind, AlertStatus
from ..service import PresenceAlertService
from ..store import AlertFilter


class BulkResolveRequest(BaseModel):
    ids: Optional[List[str]] = None
    device_id: Optional[str] = None
    kind: Optional[AlertKind] = None


def create_app(service: PresenceAlertService) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        logger.info("API startup")
        service.start()
        yield
        logger.info("API shutdown")
        service.stop()

    app = FastAPI(title=service.config.app_name, lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(_: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(f"Store unavailable: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Alert store unavailable"})

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/stats")
    def stats() -> dict:
        return service.get_stats()

    @app.post("/presence", status_code=202)
    def presence(payload: dict) -> dict:
        event = service.ingestor.on_event(payload)
        if event is None:
            raise HTTPException(status_code=400, detail="Invalid presence payload")
        return {"accepted": True, "event": event.to_dict()}

    @app.get("/presence/current")
    def current_occupancy(device_id: Optional[str] = None) -> dict:
        latest = service.store.list_events(device_id=device_id, limit=1)
        if not latest:
            return {"occupancy": 0, "device_id": device_id, "last_update": None, "event_kind": None}
        event = latest[0]
        return {
            "occupancy": event.occupancy,
            "device_id": event.device_id,
            "last_update": event.timestamp.isoformat(),
            "event_kind": event.event_kind.value,
        }

    @app.get("/presence/devices")
    def devices(limit: int = Query(1000, ge=1, le=100_000)) -> dict:
        tracked = set(service.engine.registry.devices())
        summaries: Dict[str, dict] = {}
        # events come newest first, so the first one seen per device is its current reading
        for event in service.store.list_events(limit=limit):
            summary = summaries.get(event.device_id)
            if summary is None:
                summaries[event.device_id] = {
                    "device_id": event.device_id,
                    "current_occupancy": event.occupancy,
                    "last_activity": event.timestamp,
                    "total_records": 1,
                    "tracked": event.device_id in tracked,
                }
                continue
            summary["total_records"] += 1
            summary["last_activity"] = max(summary["last_activity"], event.timestamp)

        result = sorted(summaries.values(), key=lambda s: s["last_activity"], reverse=True)
        for summary in result:
            summary["last_activity"] = summary["last_activity"].isoformat()
        return {"devices": result}

    @app.get("/alerts/active")
    def active_alerts(device_id: Optional[str] = None,
                      limit: int = Query(100, ge=1, le=1000)) -> dict:
        alerts = service.store.list_alerts(
            AlertFilter(device_id=device_id, status=AlertStatus.ACTIVE), limit=limit
        )
        return {"data": [a.to_dict() for a in alerts], "count": len(alerts)}

    @app.post("/alerts/bulk-resolve")
    def bulk_resolve(request: BulkResolveRequest) -> dict:
        if request.ids:
            alert_filter = AlertFilter(ids=request.ids)
        elif request.device_id:
            alert_filter = AlertFilter(device_id=request.device_id)
        elif request.kind:
            alert_filter = AlertFilter(kind=request.kind)
        else:
            raise HTTPException(status_code=400, detail="Provide ids, device_id or kind")
        count = service.engine.bulk_resolve(alert_filter)
        return {"modified_count": count}

    @app.get("/alerts/{alert_id}")
    def get_alert(alert_id: str) -> dict:
        alert = service.store.get_alert(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"data": alert.to_dict()}

    @app.delete("/alerts/{alert_id}")
    def delete_alert(alert_id: str) -> dict:
        alert = service.engine.delete_alert(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"message": "Alert deleted", "data": alert.to_dict()}

    @app.patch("/alerts/{alert_id}/resolve")
    def resolve(alert_id: str) -> dict:
        alert = service.engine.resolve(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"data": alert.to_dict()}

    @app.patch("/alerts/{alert_id}/ignore")
    def ignore(alert_id: str) -> dict:
        alert = service.engine.ignore(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"data": alert.to_dict()}

    return app
