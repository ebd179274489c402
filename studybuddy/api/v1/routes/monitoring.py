"""Health, alert and error monitoring endpoints.

Read-mostly views over the system health monitor, the event monitor and the
error handler, consumed by the operations dashboard. Alert acknowledgement
and resolution, alert rule management and correlation resolution are the
only writes.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, Field

from studybuddy.api.v1.dependencies import get_error_handler, get_event_monitor, get_health_monitor
from studybuddy.exceptions import Impact, InvalidLayerError, NotFoundError
from studybuddy.infrastructure.error_handling.handler import EnhancedErrorHandler
from studybuddy.infrastructure.health.system_health_monitor import SystemHealthMonitor
from studybuddy.infrastructure.monitoring.event_monitor import EventMonitor
from studybuddy.models.monitoring import AlertCondition, AlertConditionType, AlertRuleActions
from studybuddy.utils.serialization import to_json_compatible


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(..., min_length=1)


class ResolveRequest(BaseModel):
    resolved_by: str = Field(..., min_length=1)
    resolution: Optional[str] = None


class AlertRuleRequest(BaseModel):
    """Alert rule definition"""
    name: str = Field(..., min_length=1)
    description: str = ""
    type: AlertConditionType
    threshold: float = Field(..., ge=0)
    time_window_minutes: float = Field(..., gt=0)
    layer: Optional[int] = Field(None, ge=0, le=5)
    severity: Optional[Impact] = None
    log: bool = True
    notify: bool = False
    alert: bool = False
    auto_recovery: bool = False
    channels: List[str] = Field(default_factory=lambda: ["console"])
    enabled: bool = True


router = APIRouter(prefix="/monitoring", tags=["monitoring"])

logger = logging.getLogger(__name__)


# System health

@router.get("/health", summary="System Health Status")
async def get_health_status(
    health_monitor: SystemHealthMonitor = Depends(get_health_monitor),
) -> Dict[str, Any]:
    """Overall and per-layer health, active alerts, recommendations and host info."""
    return to_json_compatible(health_monitor.get_health_status())


@router.post("/health/check", summary="Run Health Check Now")
async def run_health_check(
    health_monitor: SystemHealthMonitor = Depends(get_health_monitor),
) -> Dict[str, Any]:
    return to_json_compatible(await health_monitor.run_health_check())


@router.get("/health/layers/{layer}")
async def get_layer_health(
    layer: int,
    health_monitor: SystemHealthMonitor = Depends(get_health_monitor),
) -> Dict[str, Any]:
    try:
        return to_json_compatible(health_monitor.get_layer_health(layer))
    except InvalidLayerError as e:
        raise HTTPException(status_code=422, detail=e.message)


@router.get("/health/trends")
async def get_health_trends(
    hours: int = Query(24, ge=1, le=24 * 30, description="Look-back window in hours"),
    health_monitor: SystemHealthMonitor = Depends(get_health_monitor),
) -> Dict[str, Any]:
    end = health_monitor.clock.now()
    return to_json_compatible(health_monitor.get_health_trends(end - timedelta(hours=hours), end))


@router.get("/health/report")
async def export_health_report(
    format: str = Query("json", pattern="^(json|csv)$"),
    health_monitor: SystemHealthMonitor = Depends(get_health_monitor),
) -> Response:
    report = health_monitor.export_health_report(format)
    if format == "csv":
        return PlainTextResponse(report, media_type="text/csv")
    return Response(content=report, media_type="application/json")


# Alerts

@router.get("/alerts")
async def list_alerts(
    include_resolved: bool = Query(False),
    health_monitor: SystemHealthMonitor = Depends(get_health_monitor),
) -> List[Dict[str, Any]]:
    alerts = health_monitor.get_alert_history() if include_resolved else health_monitor.get_active_alerts()
    return to_json_compatible(alerts)


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    request: AcknowledgeRequest,
    health_monitor: SystemHealthMonitor = Depends(get_health_monitor),
) -> Dict[str, Any]:
    if not health_monitor.acknowledge_alert(alert_id, request.acknowledged_by):
        raise HTTPException(status_code=404, detail="Alert not found")
    return to_json_compatible(health_monitor.get_alert(alert_id))


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(
    alert_id: str,
    request: ResolveRequest,
    health_monitor: SystemHealthMonitor = Depends(get_health_monitor),
) -> Dict[str, Any]:
    if not health_monitor.resolve_alert(alert_id, request.resolved_by, request.resolution):
        raise HTTPException(status_code=404, detail="Alert not found")
    return to_json_compatible(health_monitor.get_alert(alert_id))


# Event log

@router.get("/events/metrics")
async def get_event_metrics(
    minutes: Optional[int] = Query(None, ge=1, description="Restrict to the last N minutes"),
    event_monitor: EventMonitor = Depends(get_event_monitor),
) -> Dict[str, Any]:
    start = event_monitor.clock.now() - timedelta(minutes=minutes) if minutes else None
    return to_json_compatible(event_monitor.get_metrics(start=start))


@router.get("/events/health")
async def get_event_health(
    event_monitor: EventMonitor = Depends(get_event_monitor),
) -> Dict[str, Any]:
    return to_json_compatible(event_monitor.get_system_health())


@router.get("/events/correlation/{correlation_id}")
async def get_correlation_events(
    correlation_id: str,
    event_monitor: EventMonitor = Depends(get_event_monitor),
) -> List[Dict[str, Any]]:
    return to_json_compatible(event_monitor.get_events_by_correlation(correlation_id))


@router.post("/events/correlation/{correlation_id}/resolve")
async def resolve_correlation(
    correlation_id: str,
    event_monitor: EventMonitor = Depends(get_event_monitor),
) -> Dict[str, Any]:
    if not event_monitor.get_events_by_correlation(correlation_id):
        raise HTTPException(status_code=404, detail="No events for correlation")
    return {"correlation_id": correlation_id, "resolved": event_monitor.resolve_correlation(correlation_id)}


# Alert rules

@router.get("/alert-rules")
async def list_alert_rules(
    event_monitor: EventMonitor = Depends(get_event_monitor),
) -> List[Dict[str, Any]]:
    return to_json_compatible(list(event_monitor.alerts.rules.values()))


@router.post("/alert-rules", status_code=201)
async def create_alert_rule(
    request: AlertRuleRequest,
    event_monitor: EventMonitor = Depends(get_event_monitor),
) -> Dict[str, Any]:
    if request.type == AlertConditionType.SEVERITY and request.severity is None:
        raise HTTPException(status_code=422, detail="Severity rules require a severity")
    rule_id = event_monitor.create_alert_rule(
        request.name,
        request.description,
        AlertCondition(
            type=request.type,
            threshold=request.threshold,
            time_window_minutes=request.time_window_minutes,
            layer=request.layer,
            severity=request.severity,
        ),
        AlertRuleActions(
            log=request.log,
            notify=request.notify,
            alert=request.alert,
            auto_recovery=request.auto_recovery,
            channels=request.channels,
        ),
        enabled=request.enabled,
    )
    logger.info(f"Created alert rule {rule_id} via API")
    return to_json_compatible(event_monitor.alerts.get_rule(rule_id))


@router.post("/alert-rules/{rule_id}/{action}")
async def toggle_alert_rule(
    rule_id: str,
    action: str,
    event_monitor: EventMonitor = Depends(get_event_monitor),
) -> Dict[str, Any]:
    if action not in ("enable", "disable"):
        raise HTTPException(status_code=404, detail=f"Unknown action: {action}")
    toggle = event_monitor.alerts.enable_rule if action == "enable" else event_monitor.alerts.disable_rule
    if not toggle(rule_id):
        raise HTTPException(status_code=404, detail="Alert rule not found")
    return to_json_compatible(event_monitor.alerts.get_rule(rule_id))


# Errors

@router.get("/errors/summary")
async def get_error_summary(
    error_handler: EnhancedErrorHandler = Depends(get_error_handler),
) -> Dict[str, Any]:
    return to_json_compatible(error_handler.get_system_health())


@router.get("/errors/{correlation_id}")
async def get_error_details(
    correlation_id: str,
    error_handler: EnhancedErrorHandler = Depends(get_error_handler),
) -> Dict[str, Any]:
    try:
        return to_json_compatible(error_handler.get_error_details(correlation_id))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
