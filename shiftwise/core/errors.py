"""
Workflow exceptions and shared error-handling helpers.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class WorkflowError(RuntimeError):
    """Base class for workflow engine errors."""


class DuplicateRuleError(WorkflowError):
    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule '{rule_id}' already exists")


class RuleUnavailableError(WorkflowError):
    """A rule was executed directly but is missing or inactive."""

    def __init__(self, rule_id: str, reason: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule '{rule_id}' {reason}")


class RuleNotFoundError(RuleUnavailableError):
    def __init__(self, rule_id: str) -> None:
        super().__init__(rule_id, "not found")


class RuleInactiveError(RuleUnavailableError):
    def __init__(self, rule_id: str) -> None:
        super().__init__(rule_id, "is inactive")


class ConditionEvaluationError(WorkflowError):
    pass


class ActionExecutionError(WorkflowError):
    pass


class WebhookError(ActionExecutionError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


def _format_extra(extra: dict | None) -> str:
    if not extra:
        return ""
    parts: list[str] = []
    for key, value in extra.items():
        if value is None:
            continue
        parts.append(f"{key}={value}")
    return f" {' '.join(parts)}" if parts else ""


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: Exception | None = None) -> None:
    """
    Log an exception with context. Uses logger.exception for stack traces.
    """
    suffix = _format_extra(extra)
    if exc is not None:
        logger.error(f"{msg}{suffix}: {exc}", exc_info=exc)
        return
    logger.exception(f"{msg}{suffix}")


def guarded_call(
    name: str,
    fn: Callable[[], T],
    *,
    fallback: T | None = None,
    logger: logging.Logger | None = None,
    context: dict | None = None,
) -> T | None:
    """
    Execute fn with logging on failure. Returns fallback if provided.
    """
    try:
        return fn()
    except Exception as exc:
        if logger:
            log_exception(logger, f"{name} failed", extra=context or {}, exc=exc)
        return fallback
