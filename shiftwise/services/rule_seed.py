"""
Default workflow rules registered at startup.
"""

from __future__ import annotations

import logging
from typing import List

from ..core.errors import DuplicateRuleError
from ..schemas.rule import RuleCreate

logger = logging.getLogger("rule_seed")


def default_rules() -> List[RuleCreate]:
    return [
        RuleCreate.model_validate(
            {
                "id": "auto-assign-priority-jobs",
                "name": "Auto-assign High Priority Jobs",
                "description": "Automatically assign high-priority jobs to best-matched available workers",
                "trigger": {"type": "job_created"},
                "conditions": [
                    {"field": "priority", "operator": "equals", "value": "high"},
                    {"field": "status", "operator": "equals", "value": "active", "logical_operator": "AND"},
                ],
                "actions": [
                    {"type": "assign_worker", "config": {"criteria": "best_match", "notify_worker": True}},
                    {
                        "type": "send_notification",
                        "config": {
                            "recipients": ["client"],
                            "title": "Worker Assigned",
                            "message": "A worker has been automatically assigned to your job {{title}}",
                            "template": "job_assigned",
                        },
                    },
                ],
            }
        ),
        RuleCreate.model_validate(
            {
                "id": "timesheet-reminders",
                "name": "Weekly Timesheet Reminders",
                "description": "Send reminders to workers who haven't submitted timesheets",
                "trigger": {
                    "type": "schedule_time",
                    "schedule": {"frequency": "weekly", "time": "17:00", "days_of_week": [5]},
                },
                "conditions": [
                    {"field": "timesheetStatus", "operator": "not_equals", "value": "submitted"},
                ],
                "actions": [
                    {
                        "type": "send_notification",
                        "config": {
                            "recipients": ["worker"],
                            "title": "Timesheet Reminder",
                            "message": "Please submit your timesheet for this week",
                            "template": "timesheet_reminder",
                        },
                    },
                ],
            }
        ),
        RuleCreate.model_validate(
            {
                "id": "auto-process-payments",
                "name": "Auto-process Approved Payments",
                "description": "Automatically process payments for approved completed shifts",
                "trigger": {"type": "shift_completed"},
                "conditions": [
                    {"field": "status", "operator": "equals", "value": "completed"},
                    {"field": "approvalStatus", "operator": "equals", "value": "approved", "logical_operator": "AND"},
                ],
                "actions": [
                    {
                        "type": "create_task",
                        "config": {"task_type": "process_payment", "priority": "high", "assign_to": "system"},
                    },
                    {
                        "type": "send_notification",
                        "config": {
                            "recipients": ["worker", "client"],
                            "title": "Payment Processed",
                            "message": "Payment has been processed for the completed shift",
                            "template": "payment_processed",
                        },
                    },
                ],
            }
        ),
    ]


def seed_default_rules(engine) -> int:
    """Register the default rules that are not already present. Returns how many were added."""
    added = 0
    for rule in default_rules():
        if engine.get_rule(rule.id) is not None:
            logger.info("Rule seed skipped (exists) id=%s", rule.id)
            continue
        try:
            engine.add_rule(rule)
        except DuplicateRuleError:
            logger.info("Rule seed skipped (exists) id=%s", rule.id)
            continue
        added += 1
        logger.info("Seeded rule id=%s name=%s", rule.id, rule.name)
    return added
