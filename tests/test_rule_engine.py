import logging
import threading
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from shiftwise.core.errors import DuplicateRuleError, RuleInactiveError, RuleNotFoundError
from shiftwise.schemas.execution import ExecutionKind, ExecutionResult, Suggestion
from shiftwise.services.collaborators import Job, Worker
from shiftwise.services.rule_engine import WorkflowEngine
from shiftwise.services.suggestions import RuleBasedSuggestionProvider

from fakes import (
    Collaborators,
    FakeClock,
    FakeHttp,
    InMemoryJobs,
    InMemoryWorkers,
    ManualTimers,
    make_engine,
)

UTC = timezone.utc


def _assign_rule(**overrides) -> dict:
    rule = {
        "id": "auto-assign",
        "name": "Auto assign",
        "trigger": {"type": "job_created"},
        "conditions": [{"field": "priority", "operator": "equals", "value": "high"}],
        "actions": [{"type": "assign_worker", "config": {"criteria": "best_match"}}],
    }
    rule.update(overrides)
    return rule


def _staffed() -> Collaborators:
    return Collaborators(
        jobs=InMemoryJobs(Job(id="J1", title="Packing", required_skills=["packing"])),
        workers=InMemoryWorkers(Worker(id="W1", skills=["packing"], is_available=True)),
    )


def _webhook_rule(rule_id: str = "hook", **overrides) -> dict:
    rule = {
        "id": rule_id,
        "name": "Webhook",
        "trigger": {"type": "payment_processed"},
        "actions": [{"type": "webhook_call", "config": {"url": "https://hooks.example.com/pay"}}],
    }
    rule.update(overrides)
    return rule


def test_matching_event_assigns_worker():
    collab = _staffed()
    engine = make_engine(collab)
    engine.add_rule(_assign_rule())

    records = engine.trigger_event("job_created", {"priority": "high", "jobId": "J1"})

    assert len(collab.shifts.shifts) == 1
    assert next(iter(collab.shifts.shifts.values())).worker_id == "W1"
    assert len(records) == 1
    assert records[0].result is ExecutionResult.SUCCESS
    assert records[0].executed_actions == ["assign_worker"]
    assert records[0].errors == []


def test_unmet_conditions_record_failure_without_actions():
    collab = _staffed()
    engine = make_engine(collab)
    engine.add_rule(_assign_rule())

    records = engine.trigger_event("job_created", {"priority": "low", "jobId": "J1"})

    assert collab.shifts.shifts == {}
    assert records[0].result is ExecutionResult.FAILED
    assert records[0].errors == ["Conditions not met"]
    assert engine.get_rule("auto-assign").execution_count == 1


def test_webhook_500_is_partial_and_counted():
    engine = make_engine(Collaborators(http=FakeHttp(status_code=500, reason="Server Error")))
    engine.add_rule(_webhook_rule())

    record = engine.execute_rule("hook", {"paymentId": "P1"})

    assert record.result is ExecutionResult.PARTIAL
    assert record.errors and "500" in record.errors[0]
    rule = engine.get_rule("hook")
    assert rule.execution_count == 1
    assert rule.metrics.partial_count == 1


def test_failing_action_does_not_stop_later_actions():
    collab = Collaborators(http=FakeHttp(status_code=502))
    engine = make_engine(collab)
    engine.add_rule(
        _webhook_rule(
            actions=[
                {"type": "send_notification", "config": {"recipients": ["worker"], "message": "one"}},
                {"type": "webhook_call", "config": {"url": "https://hooks.example.com/pay"}},
                {"type": "send_notification", "config": {"recipients": ["worker"], "message": "two"}},
            ]
        )
    )

    record = engine.execute_rule("hook", {"workerId": "W1"})

    assert record.result is ExecutionResult.PARTIAL
    assert record.executed_actions == ["send_notification", "send_notification"]
    assert [n.message for n in collab.notifier.sent] == ["one", "two"]


def test_execution_count_matches_metric_counts():
    engine = make_engine(_staffed())
    engine.add_rule(_assign_rule())

    engine.execute_rule("auto-assign", {"priority": "high", "jobId": "J1"})
    engine.execute_rule("auto-assign", {"priority": "low", "jobId": "J1"})
    engine.execute_rule("auto-assign", {"priority": "high", "jobId": "missing"})

    rule = engine.get_rule("auto-assign")
    metrics = rule.metrics
    assert rule.execution_count == 3
    assert rule.execution_count == metrics.success_count + metrics.error_count + metrics.partial_count
    assert (metrics.success_count, metrics.error_count, metrics.partial_count) == (1, 1, 1)
    assert metrics.success_rate == pytest.approx(100.0 / 3)
    assert rule.last_executed == datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def test_one_rule_failure_does_not_block_others(monkeypatch):
    collab = Collaborators()
    engine = make_engine(collab)
    engine.add_rule(_webhook_rule("first", actions=[{"type": "send_notification", "config": {"recipients": ["client"]}}]))
    engine.add_rule(_webhook_rule("second", actions=[{"type": "send_notification", "config": {"recipients": ["worker"]}}]))

    real_execute = engine.execute_rule

    def _flaky(rule_id, payload=None):
        if rule_id == "first":
            raise RuntimeError("boom")
        return real_execute(rule_id, payload)

    monkeypatch.setattr(engine, "execute_rule", _flaky)
    records = engine.trigger_event("payment_processed", {"workerId": "W1", "clientId": "C1"})

    assert [r.rule_id for r in records] == ["second"]
    assert [n.recipient_user_id for n in collab.notifier.sent] == ["W1"]


def test_condition_errors_become_failed_records(monkeypatch):
    from shiftwise.services import rule_engine

    def _broken(conditions, payload):
        raise TypeError("bad payload")

    monkeypatch.setattr(rule_engine, "evaluate", _broken)
    engine = make_engine()
    engine.add_rule(_webhook_rule())

    record = engine.execute_rule("hook", {})

    assert record.result is ExecutionResult.FAILED
    assert "bad payload" in record.errors[0]
    assert engine.get_rule("hook").execution_count == 1


def test_inactive_and_foreign_rules_are_not_matched():
    engine = make_engine()
    engine.add_rule(_webhook_rule("global"))
    engine.add_rule(_webhook_rule("org-a", organization_id="A"))
    engine.add_rule(_webhook_rule("org-b", organization_id="B"))
    engine.add_rule(_webhook_rule("off", is_active=False))

    all_ids = {r.rule_id for r in engine.trigger_event("payment_processed", {})}
    scoped_ids = {r.rule_id for r in engine.trigger_event("payment_processed", {}, organization_id="A")}

    assert all_ids == {"global", "org-a", "org-b"}
    assert scoped_ids == {"global", "org-a"}
    assert engine.trigger_event("user_registered", {}) == []


def test_direct_execution_of_missing_or_inactive_rule_raises():
    engine = make_engine()
    engine.add_rule(_webhook_rule(is_active=False))

    with pytest.raises(RuleNotFoundError):
        engine.execute_rule("nope", {})
    with pytest.raises(RuleInactiveError):
        engine.execute_rule("hook", {})


def test_add_rule_rejects_duplicates_and_resets_counters():
    engine = make_engine()
    stored = engine.add_rule({**_webhook_rule(), "execution_count": 99})

    assert stored.execution_count == 0
    assert stored.metrics.execution_count == 0
    assert stored.created_at == datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
    with pytest.raises(DuplicateRuleError):
        engine.add_rule(_webhook_rule())


def test_update_rule_merges_and_ignores_engine_fields(caplog):
    engine = make_engine()
    engine.add_rule(_webhook_rule())
    engine.execute_rule("hook", {})
    caplog.set_level(logging.WARNING)

    assert engine.update_rule("hook", {"name": "Renamed", "execution_count": 0, "metrics": {}}) is True
    rule = engine.get_rule("hook")
    assert rule.name == "Renamed"
    assert rule.execution_count == 1
    assert rule.metrics.execution_count == 1
    assert any("engine-owned" in rec.message for rec in caplog.records)

    assert engine.update_rule("missing", {"name": "x"}) is False
    with pytest.raises(ValidationError):
        engine.update_rule("hook", {"trigger": {"type": "never_heard_of_it"}})
    assert engine.get_rule("hook").name == "Renamed"


def test_deactivate_is_idempotent():
    engine = make_engine()
    engine.add_rule(_webhook_rule())

    assert engine.deactivate_rule("hook") is True
    assert engine.deactivate_rule("hook") is True
    assert engine.get_rule("hook").is_active is False
    assert engine.activate_rule("hook") is True
    assert engine.get_rule("hook").is_active is True
    assert engine.deactivate_rule("missing") is False


def test_remove_rule_keeps_history():
    engine = make_engine()
    engine.add_rule(_webhook_rule())
    engine.execute_rule("hook", {})

    assert engine.remove_rule("hook") is True
    assert engine.remove_rule("hook") is False
    assert engine.get_rule("hook") is None
    assert [r.rule_id for r in engine.get_executions()] == ["hook"]


def test_delayed_actions_run_later_as_separate_records():
    collab = Collaborators()
    timers = ManualTimers()
    engine = make_engine(collab, timers=timers)
    engine.add_rule(
        _webhook_rule(
            actions=[
                {"type": "send_notification", "config": {"recipients": ["worker"], "message": "now"}},
                {"type": "send_notification", "delay": 30, "config": {"recipients": ["worker"], "message": "later"}},
            ]
        )
    )

    record = engine.execute_rule("hook", {"workerId": "W1"})

    assert record.result is ExecutionResult.SUCCESS
    assert record.executed_actions == ["send_notification"]
    assert record.deferred_actions == ["send_notification"]
    assert [n.message for n in collab.notifier.sent] == ["now"]
    assert [t.delay for t in timers.pending()] == [1800.0]

    engine.stop_engine()
    timers.pending()[0].fire()

    assert [n.message for n in collab.notifier.sent] == ["now", "later"]
    delayed = engine.get_executions(limit=1)[0]
    assert delayed.kind is ExecutionKind.DELAYED_ACTION
    assert delayed.origin_execution_id == record.id
    assert delayed.result is ExecutionResult.SUCCESS
    assert engine.get_rule("hook").execution_count == 1


def test_daily_schedule_fires_same_day_then_rearms():
    clock = FakeClock(datetime(2026, 3, 2, 8, 0, tzinfo=UTC))
    timers = ManualTimers()
    collab = Collaborators()
    engine = make_engine(collab, clock=clock, timers=timers)
    engine.add_rule(
        {
            "id": "morning",
            "name": "Morning digest",
            "trigger": {"type": "schedule_time", "schedule": {"frequency": "daily", "time": "09:00"}},
            "actions": [{"type": "create_task", "config": {"task_type": "digest"}}],
        }
    )

    engine.start_engine()
    assert [t.delay for t in timers.pending()] == [3600.0]
    assert engine.status()["scheduled"]["morning"] == "2026-03-02T09:00:00+00:00"

    clock.now = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
    timers.pending()[0].fire()

    assert collab.tasks.tasks[0].payload == {"scheduledExecution": True, "scheduledFor": "2026-03-02T09:00:00+00:00"}
    assert [t.delay for t in timers.pending()] == [86400.0]
    assert engine.status()["scheduled"]["morning"] == "2026-03-03T09:00:00+00:00"
    assert engine.get_rule("morning").execution_count == 1


def test_scheduled_fire_survives_execution_errors(monkeypatch):
    clock = FakeClock(datetime(2026, 3, 2, 8, 0, tzinfo=UTC))
    timers = ManualTimers()
    engine = make_engine(clock=clock, timers=timers)
    engine.add_rule(
        {
            "id": "nightly",
            "name": "Nightly",
            "trigger": {"type": "schedule_time", "schedule": {"frequency": "daily", "time": "09:00"}},
        }
    )
    engine.start_engine()

    def _boom(rule_id, payload=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine, "execute_rule", _boom)
    clock.now = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
    timers.pending()[0].fire()

    assert len(timers.pending()) == 1


def test_stop_cancels_schedules_and_deactivated_rules_do_not_fire():
    clock = FakeClock(datetime(2026, 3, 2, 8, 0, tzinfo=UTC))
    timers = ManualTimers()
    engine = make_engine(clock=clock, timers=timers)
    engine.add_rule(
        {
            "id": "weekly",
            "name": "Weekly",
            "trigger": {"type": "schedule_time", "schedule": {"frequency": "weekly", "time": "17:00", "days_of_week": [5]}},
        }
    )
    engine.start_engine()
    engine.start_engine()
    assert len(timers.pending()) == 1

    engine.deactivate_rule("weekly")
    assert timers.pending() == []
    engine.activate_rule("weekly")
    assert len(timers.pending()) == 1

    engine.stop_engine()
    assert timers.pending() == []
    assert engine.is_running is False
    assert engine.get_executions() == []


def test_executions_newest_first_and_bounded():
    engine = make_engine(max_executions=3)
    engine.add_rule(_webhook_rule("a"))
    engine.add_rule(_webhook_rule("b"))
    for rule_id in ["a", "b", "a", "b", "a"]:
        engine.execute_rule(rule_id, {"n": rule_id})

    assert [r.rule_id for r in engine.get_executions()] == ["a", "b", "a"]
    assert [r.rule_id for r in engine.get_executions(limit=10, rule_id="b")] == ["b"]
    assert engine.get_executions(limit=0) == []

    stats = engine.get_execution_stats()
    assert stats.total == 3
    assert stats.successful == 3
    assert stats.success_rate == 100.0


def test_trigger_snapshot_is_a_copy():
    engine = make_engine()
    engine.add_rule(_webhook_rule())
    payload = {"job": {"id": "J1"}}

    record = engine.execute_rule("hook", payload)
    payload["job"]["id"] = "changed"

    assert record.trigger == {"job": {"id": "J1"}}


def test_workflow_analytics_weights_by_runs():
    engine = make_engine(Collaborators(http=FakeHttp(status_code=500)))
    engine.add_rule(_webhook_rule("hook"))
    engine.add_rule(_webhook_rule("quiet", actions=[]))
    engine.add_rule(_webhook_rule("idle", is_active=False))
    engine.execute_rule("hook", {})
    engine.execute_rule("quiet", {})
    engine.execute_rule("quiet", {})
    engine.execute_rule("quiet", {})

    analytics = engine.get_workflow_analytics()

    assert analytics.total_workflows == 3
    assert analytics.active_workflows == 2
    assert analytics.success_rate == pytest.approx(75.0)
    assert [p.id for p in analytics.top_performers] == ["quiet", "hook"]


def test_suggestions_use_provider_and_swallow_failures():
    engine = make_engine(suggestion_provider=RuleBasedSuggestionProvider())
    engine.add_rule(
        _assign_rule(
            actions=[{"type": "send_notification", "config": {"recipients": ["client"]}}],
        )
    )

    titles = [s.title for s in engine.suggest("auto-assign")]
    assert titles == ["Auto-assign top-rated workers", "Smart notification timing"]
    assert engine.suggest("missing") == []

    class _Broken:
        def suggest(self, rule):
            raise RuntimeError("model offline")

    broken = make_engine(suggestion_provider=_Broken())
    broken.add_rule(_assign_rule())
    assert broken.suggest("auto-assign") == []
    assert make_engine().suggest("auto-assign") == []


def test_engines_are_independent():
    first = make_engine()
    second = make_engine()
    first.add_rule(_webhook_rule())

    assert second.get_rules() == []
    assert isinstance(first, WorkflowEngine)
    assert all(isinstance(s, Suggestion) for s in RuleBasedSuggestionProvider().suggest(first.get_rule("hook")))


def test_uncopyable_payload_still_records_the_run():
    engine = make_engine()
    engine.add_rule(_webhook_rule())

    records = engine.trigger_event("payment_processed", {"workerId": "W1", "lock": threading.Lock()})

    assert len(records) == 1
    assert records[0].result is ExecutionResult.SUCCESS
    assert records[0].trigger["workerId"] == "W1"
    assert isinstance(records[0].trigger["lock"], str)
    assert engine.get_rule("hook").execution_count == 1
    assert [r.id for r in engine.get_executions()] == [records[0].id]


def test_returned_records_cannot_alter_the_log():
    engine = make_engine()
    engine.add_rule(_webhook_rule())
    returned = engine.execute_rule("hook", {"workerId": "W1"})

    returned.trigger["workerId"] = "changed"
    listed = engine.get_executions()[0]
    listed.trigger["workerId"] = "changed"
    listed.errors.append("extra")
    listed.executed_actions.clear()

    stored = engine.get_executions()[0]
    assert stored.trigger == {"workerId": "W1"}
    assert stored.errors == []
    assert stored.executed_actions == ["webhook_call"]


def test_stats_count_delayed_actions_separately():
    timers = ManualTimers()
    engine = make_engine(timers=timers)
    engine.add_rule(
        _webhook_rule(
            actions=[
                {"type": "send_notification", "delay": 5, "config": {"recipients": ["worker"], "message": "later"}},
            ]
        )
    )
    engine.execute_rule("hook", {"workerId": "W1"})
    timers.pending()[0].fire()

    stats = engine.get_execution_stats()
    assert len(engine.get_executions()) == 2
    assert stats.total == 1
    assert stats.successful == 1
    assert stats.success_rate == 100.0
    assert stats.delayed_actions == 1


def test_update_rule_warns_about_unknown_fields(caplog):
    engine = make_engine()
    engine.add_rule(_webhook_rule())
    caplog.set_level(logging.WARNING)

    assert engine.update_rule("hook", {"bogus": 1, "name": "Renamed"}) is True

    assert engine.get_rule("hook").name == "Renamed"
    assert any("unknown fields" in rec.message and "bogus" in rec.message for rec in caplog.records)
