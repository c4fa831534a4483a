"""
Workflow rule engine.

The engine keeps an in-memory registry of rules, matches incoming events
against them, runs their actions through an ``ActionExecutor`` and records
every run in a bounded execution log. It is the failure boundary for rule
and action errors: nothing raised by a single rule escapes ``trigger_event``
or a scheduled fire.

One engine instance is owned by the host application (see
``shiftwise.main.create_app``); tests build their own with fake collaborators,
a fixed clock and a manual timer factory.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from ..core.config import settings
from ..core.errors import (
    DuplicateRuleError,
    RuleInactiveError,
    RuleNotFoundError,
    RuleUnavailableError,
    guarded_call,
    log_exception,
)
from ..schemas.execution import (
    ExecutionKind,
    ExecutionRecord,
    ExecutionResult,
    ExecutionStats,
    Suggestion,
    TopPerformer,
    WorkflowAnalytics,
)
from ..schemas.rule import Rule, RuleCreate, RuleMetrics, RuleUpdate, TriggerType
from .action_executor import ActionExecutor
from .conditions import evaluate
from .scheduler import RecurringScheduler, TimerFactory, TimerHandle, thread_timer
from .stores import json_safe
from .suggestions import SuggestionProvider

CONDITIONS_NOT_MET = "Conditions not met"
DEFAULT_EXECUTIONS_LIMIT = 50
TOP_PERFORMERS = 5

# Set by the engine only; stripped from update_rule input.
ENGINE_OWNED_FIELDS = frozenset({"id", "execution_count", "last_executed", "metrics", "created_at", "updated_at"})
# update_rule input where an explicit None means "clear".
NULLABLE_FIELDS = frozenset({"organization_id"})


def _execution_id() -> str:
    return f"exec-{uuid.uuid4().hex[:16]}"


def _snapshot(payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return copy.deepcopy(payload)
    except Exception:
        # Locks, sockets, generators and similar values cannot be copied.
        return json_safe(payload)


def _event_value(event_type: Union[str, TriggerType]) -> str:
    if isinstance(event_type, TriggerType):
        return event_type.value
    return str(event_type)


class WorkflowEngine:
    def __init__(
        self,
        executor: ActionExecutor,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        timer_factory: Optional[TimerFactory] = None,
        timezone: Optional[str] = None,
        max_executions: Optional[int] = None,
        suggestion_provider: Optional[SuggestionProvider] = None,
    ) -> None:
        self.logger = logging.getLogger("workflow_engine")
        self.executor = executor
        self.tz = ZoneInfo(timezone or settings.scheduler_timezone)
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._timer_factory = timer_factory or thread_timer
        self._scheduler = RecurringScheduler(self._clock, self._timer_factory)
        self._suggestion_provider = suggestion_provider
        self._rules: Dict[str, Rule] = {}
        self._executions: Deque[ExecutionRecord] = deque(maxlen=max_executions or settings.execution_log_size)
        self._pending_delayed: Dict[str, Optional[TimerHandle]] = {}
        self._running = False
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def add_rule(self, rule: Union[Rule, RuleCreate, Mapping[str, Any]]) -> Rule:
        """Register a rule with fresh counters and metrics."""
        if not isinstance(rule, BaseModel):
            rule = RuleCreate.model_validate(dict(rule))
        now = self._clock()
        data = rule.model_dump()
        data.update(
            execution_count=0,
            last_executed=None,
            metrics=RuleMetrics(),
            created_at=now,
            updated_at=now,
        )
        stored = Rule.model_validate(data)
        with self._lock:
            if stored.id in self._rules:
                raise DuplicateRuleError(stored.id)
            self._rules[stored.id] = stored
            if self._running:
                self._arm_if_scheduled(stored)
        self.logger.info("Rule added id=%s trigger=%s active=%s", stored.id, stored.trigger.type, stored.is_active)
        return stored

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            removed = self._rules.pop(rule_id, None)
            if removed is None:
                return False
            self._scheduler.cancel(rule_id)
        self.logger.info("Rule removed id=%s", rule_id)
        return True

    def update_rule(self, rule_id: str, fields: Union[RuleUpdate, Mapping[str, Any]]) -> bool:
        """Merge ``fields`` into a rule and re-validate it.

        Returns False for an unknown id. Counters, metrics and timestamps are
        engine-owned and ignored if present. Raises ``pydantic.ValidationError``
        when the merged rule is invalid; the stored rule is left untouched.
        """
        if isinstance(fields, RuleUpdate):
            changes = fields.model_dump(exclude_unset=True)
        else:
            changes = dict(fields)
        ignored = sorted(ENGINE_OWNED_FIELDS.intersection(changes))
        if ignored:
            self.logger.warning("Ignoring engine-owned fields on update id=%s fields=%s", rule_id, ignored)
        unknown = sorted(key for key in changes if key not in Rule.model_fields)
        if unknown:
            self.logger.warning("Ignoring unknown fields on update id=%s fields=%s", rule_id, unknown)
        changes = {
            key: value
            for key, value in changes.items()
            if key in Rule.model_fields
            and key not in ENGINE_OWNED_FIELDS
            and (value is not None or key in NULLABLE_FIELDS)
        }

        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                return False
            merged = current.model_dump()
            merged.update(changes)
            merged["updated_at"] = self._clock()
            updated = Rule.model_validate(merged)
            self._rules[rule_id] = updated
            if self._running and (updated.trigger != current.trigger or updated.is_active != current.is_active):
                self._scheduler.cancel(rule_id)
                self._arm_if_scheduled(updated)
        self.logger.info("Rule updated id=%s fields=%s", rule_id, sorted(changes))
        return True

    def activate_rule(self, rule_id: str) -> bool:
        return self.update_rule(rule_id, {"is_active": True})

    def deactivate_rule(self, rule_id: str) -> bool:
        return self.update_rule(rule_id, {"is_active": False})

    def get_rules(self) -> List[Rule]:
        with self._lock:
            return list(self._rules.values())

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        with self._lock:
            return self._rules.get(rule_id)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def trigger_event(
        self,
        event_type: Union[str, TriggerType],
        payload: Optional[Mapping[str, Any]] = None,
        organization_id: Optional[str] = None,
    ) -> List[ExecutionRecord]:
        """Run every active rule listening for ``event_type``.

        When ``organization_id`` is given only global rules and rules of that
        organization are considered. Failures of individual rules are logged
        and never raised.
        """
        value = _event_value(event_type)
        with self._lock:
            candidates = [
                rule.id
                for rule in self._rules.values()
                if rule.is_active
                and rule.trigger.type == value
                and (organization_id is None or rule.organization_id in (None, organization_id))
            ]
        self.logger.debug("Event %s matched rules=%s", value, candidates)

        records: List[ExecutionRecord] = []
        for rule_id in candidates:
            try:
                records.append(self.execute_rule(rule_id, payload))
            except RuleUnavailableError as exc:
                # Removed or deactivated while the event was being dispatched.
                self.logger.info("Skipping rule during %s dispatch: %s", value, exc)
            except Exception as exc:
                log_exception(self.logger, "Rule dispatch failed", extra={"rule_id": rule_id, "event": value}, exc=exc)
        return records

    def execute_rule(self, rule_id: str, payload: Optional[Mapping[str, Any]] = None) -> ExecutionRecord:
        """Run one rule against ``payload`` and record the outcome.

        Raises ``RuleNotFoundError`` or ``RuleInactiveError`` when the rule
        cannot run. Every other failure is captured in the returned record.
        """
        rule = self.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        if not rule.is_active:
            raise RuleInactiveError(rule_id)

        payload = dict(payload or {})
        execution_id = _execution_id()
        snapshot = _snapshot(payload)
        started = time.perf_counter()
        executed: List[str] = []
        deferred: List[str] = []
        errors: List[str] = []
        result = ExecutionResult.FAILED

        try:
            matched = evaluate(rule.conditions, payload)
        except Exception as exc:
            log_exception(self.logger, "Condition evaluation failed", extra={"rule_id": rule_id}, exc=exc)
            errors.append(f"Condition evaluation failed: {exc}")
        else:
            if not matched:
                errors.append(CONDITIONS_NOT_MET)
            else:
                try:
                    for action in rule.actions:
                        if action.delay:
                            self._schedule_delayed(rule_id, action, copy.deepcopy(snapshot), execution_id)
                            deferred.append(action.type)
                            continue
                        try:
                            self.executor.execute(action, payload)
                            executed.append(action.type)
                        except Exception as exc:
                            log_exception(
                                self.logger,
                                "Action failed",
                                extra={"rule_id": rule_id, "action": action.type, "execution_id": execution_id},
                                exc=exc,
                            )
                            errors.append(f"{action.type}: {exc}")
                    result = ExecutionResult.PARTIAL if errors else ExecutionResult.SUCCESS
                except Exception as exc:
                    log_exception(self.logger, "Rule execution failed", extra={"rule_id": rule_id}, exc=exc)
                    errors.append(f"Execution failed: {exc}")
                    result = ExecutionResult.FAILED

        duration_ms = (time.perf_counter() - started) * 1000.0
        record = ExecutionRecord(
            id=execution_id,
            rule_id=rule_id,
            trigger=snapshot,
            result=result,
            executed_actions=executed,
            errors=errors,
            duration_ms=duration_ms,
            timestamp=self._clock(),
            kind=ExecutionKind.RULE,
            deferred_actions=deferred,
        )
        with self._lock:
            self._executions.append(record)
            current = self._rules.get(rule_id)
            if current is not None:
                self._rules[rule_id] = current.model_copy(
                    update={
                        "execution_count": current.execution_count + 1,
                        "last_executed": record.timestamp,
                        "metrics": current.metrics.record(result, duration_ms),
                    }
                )
        self.logger.info(
            "Rule executed id=%s result=%s actions=%s deferred=%s errors=%s duration_ms=%.1f",
            rule_id,
            result.value,
            len(executed),
            len(deferred),
            len(errors),
            duration_ms,
        )
        return record.model_copy(deep=True)

    def _schedule_delayed(self, rule_id: str, action: Any, payload: Dict[str, Any], origin_execution_id: str) -> None:
        token = uuid.uuid4().hex
        delay_seconds = float(action.delay) * 60.0

        def _fire() -> None:
            with self._lock:
                self._pending_delayed.pop(token, None)
            self._run_delayed(rule_id, action, payload, origin_execution_id)

        with self._lock:
            self._pending_delayed[token] = None
        handle = self._timer_factory(delay_seconds, _fire)
        with self._lock:
            if token in self._pending_delayed:
                self._pending_delayed[token] = handle
        self.logger.info(
            "Deferred action rule_id=%s action=%s delay_sec=%.0f origin=%s",
            rule_id,
            action.type,
            delay_seconds,
            origin_execution_id,
        )

    def _run_delayed(self, rule_id: str, action: Any, payload: Dict[str, Any], origin_execution_id: str) -> None:
        started = time.perf_counter()
        executed: List[str] = []
        errors: List[str] = []
        try:
            self.executor.execute(action, copy.deepcopy(payload))
            executed.append(action.type)
        except Exception as exc:
            log_exception(
                self.logger,
                "Delayed action failed",
                extra={"rule_id": rule_id, "action": action.type, "origin": origin_execution_id},
                exc=exc,
            )
            errors.append(f"{action.type}: {exc}")
        record = ExecutionRecord(
            id=_execution_id(),
            rule_id=rule_id,
            trigger=payload,
            result=ExecutionResult.FAILED if errors else ExecutionResult.SUCCESS,
            executed_actions=executed,
            errors=errors,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            timestamp=self._clock(),
            kind=ExecutionKind.DELAYED_ACTION,
            origin_execution_id=origin_execution_id,
        )
        with self._lock:
            self._executions.append(record)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_recurring_tasks(self) -> int:
        """Arm the next fire of every active schedule rule. Returns how many were armed."""
        armed = 0
        with self._lock:
            for rule in self._rules.values():
                if self._arm_if_scheduled(rule):
                    armed += 1
        return armed

    def _arm_if_scheduled(self, rule: Rule, after: Optional[datetime] = None) -> bool:
        schedule = rule.schedule
        if schedule is None or not rule.is_active:
            return False
        rule_id = rule.id
        fire_at = self._scheduler.arm(
            rule_id,
            schedule,
            lambda due: self._on_schedule_fire(rule_id, due),
            after=after,
        )
        self.logger.info("Scheduled rule id=%s next_fire=%s", rule_id, fire_at.isoformat())
        return True

    def _on_schedule_fire(self, rule_id: str, fire_at: datetime) -> None:
        with self._lock:
            rule = self._rules.get(rule_id)
            if not self._running or rule is None or not rule.is_active or rule.schedule is None:
                if self._scheduler.next_fire(rule_id) == fire_at:
                    self._scheduler.cancel(rule_id)
                self.logger.info("Dropped scheduled fire for unavailable rule id=%s", rule_id)
                return
            try:
                self._arm_if_scheduled(rule, after=fire_at)
            except Exception as exc:
                log_exception(self.logger, "Failed to re-arm schedule", extra={"rule_id": rule_id}, exc=exc)
        guarded_call(
            "Scheduled rule execution",
            lambda: self.execute_rule(rule_id, {"scheduledExecution": True, "scheduledFor": fire_at.isoformat()}),
            logger=self.logger,
            context={"rule_id": rule_id},
        )

    def start_engine(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            armed = self.schedule_recurring_tasks()
        self.logger.info("Workflow engine started rules=%s scheduled=%s", len(self._rules), armed)

    def stop_engine(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            cancelled = self._scheduler.cancel_all()
            pending = len(self._pending_delayed)
        self.logger.info("Workflow engine stopped cancelled_timers=%s pending_delayed=%s", cancelled, pending)

    @property
    def is_running(self) -> bool:
        return self._running

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "running": self._running,
                "rules": len(self._rules),
                "active_rules": sum(1 for r in self._rules.values() if r.is_active),
                "scheduled": {key: at.isoformat() for key, at in self._scheduler.armed().items()},
                "pending_delayed_actions": len(self._pending_delayed),
                "executions_logged": len(self._executions),
            }

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_executions(self, limit: int = DEFAULT_EXECUTIONS_LIMIT, rule_id: Optional[str] = None) -> List[ExecutionRecord]:
        """Most recent execution records first."""
        if limit <= 0:
            return []
        with self._lock:
            records = list(self._executions)
        out: List[ExecutionRecord] = []
        for record in reversed(records):
            if rule_id is not None and record.rule_id != rule_id:
                continue
            out.append(record.model_copy(deep=True))
            if len(out) >= limit:
                break
        return out

    def get_execution_stats(self) -> ExecutionStats:
        """Aggregate rule runs over the bounded execution log window.

        Delayed action records are counted separately in ``delayed_actions``
        and do not affect the totals or the success rate.
        """
        with self._lock:
            logged = list(self._executions)
        records = [r for r in logged if r.kind is ExecutionKind.RULE]
        total = len(records)
        successful = sum(1 for r in records if r.result is ExecutionResult.SUCCESS)
        failed = sum(1 for r in records if r.result is ExecutionResult.FAILED)
        partial = sum(1 for r in records if r.result is ExecutionResult.PARTIAL)
        return ExecutionStats(
            total=total,
            successful=successful,
            failed=failed,
            partial=partial,
            success_rate=(successful / total * 100.0) if total else 0.0,
            average_duration=(sum(r.duration_ms for r in records) / total) if total else 0.0,
            delayed_actions=len(logged) - total,
        )

    def get_workflow_analytics(self) -> WorkflowAnalytics:
        rules = self.get_rules()
        total_runs = sum(r.metrics.execution_count for r in rules)
        success_rate = 0.0
        average_time = 0.0
        if total_runs:
            success_rate = sum(r.metrics.success_rate * r.metrics.execution_count for r in rules) / total_runs
            average_time = sum(r.metrics.average_execution_time * r.metrics.execution_count for r in rules) / total_runs
        ranked = sorted(
            (r for r in rules if r.metrics.execution_count > 0),
            key=lambda r: r.metrics.success_rate,
            reverse=True,
        )
        return WorkflowAnalytics(
            total_workflows=len(rules),
            active_workflows=sum(1 for r in rules if r.is_active),
            success_rate=success_rate,
            average_execution_time=average_time,
            top_performers=[
                TopPerformer(
                    id=r.id,
                    name=r.name,
                    success_rate=r.metrics.success_rate,
                    execution_count=r.metrics.execution_count,
                )
                for r in ranked[:TOP_PERFORMERS]
            ],
        )

    def suggest(self, rule_id: str) -> List[Suggestion]:
        rule = self.get_rule(rule_id)
        if rule is None or self._suggestion_provider is None:
            return []
        provider = self._suggestion_provider
        suggestions = guarded_call(
            "Suggestion provider",
            lambda: list(provider.suggest(rule)),
            fallback=[],
            logger=self.logger,
            context={"rule_id": rule_id},
        )
        return suggestions or []
