"""
Alerting Controllers (API Routes)
=================================

FastAPI routes for alerts, alert rules and the live dashboard feed.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, WebSocket, status

from supportdesk.config import BusinessModel
from supportdesk.core import Actor
from supportdesk.shared.api import require_platform, require_scope, require_staff, stream_channel
from supportdesk.alerting.application import (
    ActiveAlertResponse,
    AlertRuleCreateDTO,
    AlertRuleEngine,
    AlertRuleResponse,
    AlertRuleUpdateDTO,
    CycleReportResponse,
    ResolveAlertDTO,
)

router = APIRouter(prefix="/alerts", tags=["Alerts"])


def get_engine(request: Request) -> AlertRuleEngine:
    return request.app.state.alert_engine


# ========== Alerts ==========

@router.get("/active", response_model=List[ActiveAlertResponse], summary="Unresolved alerts")
async def get_active_alerts(
    actor: Actor = Depends(require_staff),
    engine: AlertRuleEngine = Depends(get_engine)
):
    alerts = engine.get_active_alerts()
    if not actor.is_platform:
        alerts = [a for a in alerts if actor.in_scope(a.business_model, a.tenant_id)]
    return [ActiveAlertResponse.from_alert(a) for a in alerts]


@router.get("/history", response_model=List[ActiveAlertResponse], summary="Recent alerts, newest first")
async def get_alert_history(
    limit: int = Query(50, ge=1, le=500),
    actor: Actor = Depends(require_platform),
    engine: AlertRuleEngine = Depends(get_engine)
):
    return [ActiveAlertResponse.from_alert(a) for a in await engine.get_alert_history(limit)]


@router.post("/{alert_id}/resolve", response_model=ActiveAlertResponse, summary="Resolve an alert")
async def resolve_alert(
    alert_id: str,
    payload: Optional[ResolveAlertDTO] = None,
    actor: Actor = Depends(require_staff),
    engine: AlertRuleEngine = Depends(get_engine)
):
    note = payload.note if payload is not None else None
    alert = await engine.resolve_alert(alert_id, actor.user_id, note)
    return ActiveAlertResponse.from_alert(alert)


@router.post(
    "/evaluate",
    response_model=CycleReportResponse,
    summary="Run one evaluation cycle now",
    description="Same cycle the scheduler runs; deduplication makes repeated runs safe."
)
async def evaluate_now(
    actor: Actor = Depends(require_platform),
    engine: AlertRuleEngine = Depends(get_engine)
):
    report = await engine.run_cycle()
    return CycleReportResponse(**report.to_dict())


@router.get("/metrics", summary="Current metrics of a scope")
async def get_metrics(
    window: int = Query(60, ge=1, le=10080, description="Window in minutes"),
    business_model: Optional[BusinessModel] = Query(None),
    tenant_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_staff),
    engine: AlertRuleEngine = Depends(get_engine)
):
    if actor.is_platform and business_model is not None:
        scope = (business_model, tenant_id)
    else:
        scope = (require_scope(actor), actor.tenant_id)
    return {
        "business_model": scope[0],
        "tenant_id": scope[1],
        "window_minutes": window,
        "metrics": await engine.current_metrics(scope[0], scope[1], window),
    }


# ========== Rules ==========

@router.get("/rules", response_model=List[AlertRuleResponse], summary="List alert rules")
async def get_alert_rules(
    actor: Actor = Depends(require_platform),
    engine: AlertRuleEngine = Depends(get_engine)
):
    return [AlertRuleResponse.from_rule(r) for r in engine.get_alert_rules()]


@router.post(
    "/rules",
    response_model=AlertRuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an alert rule",
    description="""
    Conditions are AND-combined. Each condition compares a metric computed
    over its own trailing window (minutes) against a threshold.

    **Metrics**: `tickets.total`, `tickets.open`, `tickets.resolved`,
    `response.time.avg`, `satisfaction.average`,
    `sla.firstResponseSLA.compliance`, `sla.resolutionSLA.compliance`,
    `sla.breaches.total`, `agents.workload.average`,
    `agents.satisfaction.average`, `tickets.created.hourly`,
    `tickets.pending`, `agents.online`, `wait.time.avg`

    **Operators**: `>`, `<`, `>=`, `<=`, `==`, `!=`
    """
)
async def create_alert_rule(
    payload: AlertRuleCreateDTO,
    actor: Actor = Depends(require_platform),
    engine: AlertRuleEngine = Depends(get_engine)
):
    return AlertRuleResponse.from_rule(await engine.create_alert_rule(payload))


@router.get("/rules/{rule_id}", response_model=AlertRuleResponse, summary="Get an alert rule")
async def get_alert_rule(
    rule_id: str,
    actor: Actor = Depends(require_platform),
    engine: AlertRuleEngine = Depends(get_engine)
):
    return AlertRuleResponse.from_rule(engine.get_alert_rule(rule_id))


@router.patch("/rules/{rule_id}", response_model=AlertRuleResponse, summary="Update an alert rule")
async def update_alert_rule(
    rule_id: str,
    patch: AlertRuleUpdateDTO,
    actor: Actor = Depends(require_platform),
    engine: AlertRuleEngine = Depends(get_engine)
):
    return AlertRuleResponse.from_rule(await engine.update_alert_rule(rule_id, patch))


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete an alert rule")
async def delete_alert_rule(
    rule_id: str,
    actor: Actor = Depends(require_platform),
    engine: AlertRuleEngine = Depends(get_engine)
):
    await engine.delete_alert_rule(rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== Live feed ==========

@router.websocket("/ws")
async def alert_feed(websocket: WebSocket, channel: str = Query("dashboard")):
    """
    Dashboard feed: `dashboard` carries metrics_update messages, `admin`
    carries SUPPORT_ALERT and resolution notices.
    """
    engine: AlertRuleEngine = websocket.app.state.alert_engine
    allowed = {engine.dashboard_channel, engine.admin_channel}
    if channel not in allowed:
        await websocket.close(code=4004, reason="Unknown channel")
        return

    await websocket.accept()
    await stream_channel(websocket, websocket.app.state.hub, channel)
