"""
API endpoints for workflow rules, event dispatch and execution history.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ValidationError

from ...core.errors import DuplicateRuleError, RuleInactiveError, RuleNotFoundError
from ...core.pagination import DEFAULT_LIMIT, clamp_limit
from ...schemas.rule import EVENT_TRIGGER_TYPES, Rule, RuleCreate, RuleUpdate, TriggerType
from ...services.rule_engine import WorkflowEngine


router = APIRouter(prefix="/api/v1/workflows", tags=["workflows"])

EVENT_TYPES = sorted(t.value for t in EVENT_TRIGGER_TYPES)


class EventIn(BaseModel):
    payload: Dict[str, Any] = Field(default_factory=dict)
    organization_id: Optional[str] = None


def get_engine(request: Request) -> WorkflowEngine:
    engine = getattr(request.app.state, "workflow_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Workflow engine disabled")
    return engine


def _rule_out(rule: Rule) -> dict:
    return rule.model_dump(mode="json")


def _get_rule_or_404(engine: WorkflowEngine, rule_id: str) -> Rule:
    rule = engine.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.get("/rules", response_model=dict)
def list_rules(
    trigger_type: Optional[TriggerType] = Query(None),
    is_active: Optional[bool] = Query(None),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    rules = engine.get_rules()
    if trigger_type is not None:
        rules = [r for r in rules if r.trigger.type == trigger_type.value]
    if is_active is not None:
        rules = [r for r in rules if r.is_active == is_active]
    return {"items": [_rule_out(r) for r in rules], "total": len(rules)}


@router.get("/rules/{rule_id}", response_model=dict)
def get_rule(rule_id: str, engine: WorkflowEngine = Depends(get_engine)) -> dict:
    return _rule_out(_get_rule_or_404(engine, rule_id))


@router.post("/rules", response_model=dict, status_code=201)
def create_rule(payload: RuleCreate, engine: WorkflowEngine = Depends(get_engine)) -> dict:
    try:
        rule = engine.add_rule(payload)
    except DuplicateRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _rule_out(rule)


@router.put("/rules/{rule_id}", response_model=dict)
def update_rule(rule_id: str, payload: RuleUpdate, engine: WorkflowEngine = Depends(get_engine)) -> dict:
    try:
        updated = engine.update_rule(rule_id, payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())
    if not updated:
        raise HTTPException(status_code=404, detail="Rule not found")
    return _rule_out(_get_rule_or_404(engine, rule_id))


@router.delete("/rules/{rule_id}", response_model=dict)
def delete_rule(rule_id: str, engine: WorkflowEngine = Depends(get_engine)) -> dict:
    if not engine.remove_rule(rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    return {"status": "deleted", "id": rule_id}


@router.post("/rules/{rule_id}/activate", response_model=dict)
def activate_rule(rule_id: str, engine: WorkflowEngine = Depends(get_engine)) -> dict:
    if not engine.activate_rule(rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    return _rule_out(_get_rule_or_404(engine, rule_id))


@router.post("/rules/{rule_id}/deactivate", response_model=dict)
def deactivate_rule(rule_id: str, engine: WorkflowEngine = Depends(get_engine)) -> dict:
    if not engine.deactivate_rule(rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    return _rule_out(_get_rule_or_404(engine, rule_id))


@router.post("/rules/{rule_id}/execute", response_model=dict)
def execute_rule(
    rule_id: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    try:
        record = engine.execute_rule(rule_id, payload or {})
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")
    except RuleInactiveError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return record.model_dump(mode="json")


@router.get("/rules/{rule_id}/suggestions", response_model=dict)
def rule_suggestions(rule_id: str, engine: WorkflowEngine = Depends(get_engine)) -> dict:
    _get_rule_or_404(engine, rule_id)
    return {"items": [s.model_dump(mode="json") for s in engine.suggest(rule_id)]}


@router.post("/events/{event_type}", response_model=dict)
def trigger_event(
    event_type: str,
    event: Optional[EventIn] = None,
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    if event_type not in EVENT_TYPES:
        raise HTTPException(status_code=422, detail=f"Unsupported event type. Expected one of {EVENT_TYPES}")
    event = event or EventIn()
    records = engine.trigger_event(event_type, event.payload, organization_id=event.organization_id)
    return {
        "event_type": event_type,
        "executions": [r.model_dump(mode="json") for r in records],
        "total": len(records),
    }


@router.get("/executions", response_model=dict)
def list_executions(
    limit: int = Query(DEFAULT_LIMIT, ge=1),
    rule_id: Optional[str] = Query(None),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    limit = clamp_limit(limit)
    items = engine.get_executions(limit=limit, rule_id=rule_id)
    return {"items": [r.model_dump(mode="json") for r in items], "limit": limit}


@router.get("/stats", response_model=dict)
def execution_stats(engine: WorkflowEngine = Depends(get_engine)) -> dict:
    return engine.get_execution_stats().model_dump()


@router.get("/analytics", response_model=dict)
def workflow_analytics(engine: WorkflowEngine = Depends(get_engine)) -> dict:
    return engine.get_workflow_analytics().model_dump()


@router.get("/engine", response_model=dict)
def engine_status(engine: WorkflowEngine = Depends(get_engine)) -> dict:
    return engine.status()


@router.post("/engine/start", response_model=dict)
def start_engine(engine: WorkflowEngine = Depends(get_engine)) -> dict:
    engine.start_engine()
    return engine.status()


@router.post("/engine/stop", response_model=dict)
def stop_engine(engine: WorkflowEngine = Depends(get_engine)) -> dict:
    engine.stop_engine()
    return engine.status()
