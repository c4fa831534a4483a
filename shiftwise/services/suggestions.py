"""
Optimisation suggestions for workflow rules.

Suggestion sources plug in through ``SuggestionProvider``. The engine ships
with the deterministic rule-based provider; model-backed providers can be
passed to ``WorkflowEngine`` without touching the engine itself.
"""

from __future__ import annotations

from typing import List, Protocol

from ..schemas.execution import Suggestion
from ..schemas.rule import ActionType, AssignWorkerAction, Rule, TriggerType


class SuggestionProvider(Protocol):
    def suggest(self, rule: Rule) -> List[Suggestion]: ...


class RuleBasedSuggestionProvider:
    """Pattern checks over a rule's trigger and actions."""

    source = "rule_based"

    def suggest(self, rule: Rule) -> List[Suggestion]:
        suggestions: List[Suggestion] = []
        action_types = {ActionType(action.type) for action in rule.actions}

        if rule.trigger.type == TriggerType.JOB_CREATED.value:
            already_matching = any(
                isinstance(action, AssignWorkerAction) and action.config.criteria == "best_match"
                for action in rule.actions
            )
            if not already_matching:
                suggestions.append(
                    Suggestion(
                        type="optimization",
                        title="Auto-assign top-rated workers",
                        description="Automatically assign jobs to highest-rated available workers based on skills match",
                        confidence=0.85,
                        source=self.source,
                        implementation={
                            "trigger": {"type": TriggerType.JOB_CREATED.value},
                            "action": {"type": ActionType.ASSIGN_WORKER.value, "config": {"criteria": "best_match"}},
                        },
                    )
                )

        if ActionType.SEND_NOTIFICATION in action_types:
            suggestions.append(
                Suggestion(
                    type="enhancement",
                    title="Smart notification timing",
                    description="Send notifications at optimal times based on user activity patterns",
                    confidence=0.75,
                    source=self.source,
                    implementation={"action": {"type": ActionType.SEND_NOTIFICATION.value, "timing": "optimal"}},
                )
            )

        if rule.metrics.execution_count and rule.metrics.success_rate < 50.0:
            suggestions.append(
                Suggestion(
                    type="reliability",
                    title="Review failing rule",
                    description=(
                        f"Only {rule.metrics.success_rate:.0f}% of {rule.metrics.execution_count} runs succeeded; "
                        "check conditions and action targets"
                    ),
                    confidence=0.6,
                    source=self.source,
                )
            )
        return suggestions
