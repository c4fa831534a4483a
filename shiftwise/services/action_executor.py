"""
Action execution for workflow rules.

``ActionExecutor.execute`` runs one action immediately against the
collaborators it was built with. Every failure surfaces as an exception
(usually ``ActionExecutionError``) so the engine can record it against the
run; the executor itself never swallows errors. Delays are handled by the
engine, which owns the timers and the execution log.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional

import requests

from ..core.errors import ActionExecutionError, WebhookError
from ..schemas.rule import (
    ActionType,
    AssignWorkerAction,
    CreateTaskAction,
    SendEmailAction,
    SendNotificationAction,
    UpdateStatusAction,
    WebhookCallAction,
)
from .collaborators import (
    EmailSender,
    HttpClient,
    JobStore,
    Notification,
    NotificationSender,
    PaymentProcessor,
    ShiftStore,
    TaskStore,
    WorkerStore,
)
from .conditions import MISSING, resolve_field
from .worker_matching import select_best

DEFAULT_SHIFT_HOURS = 8
PROCESS_PAYMENT_TASK = "process_payment"

_TOKEN_RE = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


def render_template(template: str, payload: Any) -> str:
    """Replace ``{{path}}`` tokens with payload values; unknown tokens stay."""

    def _sub(match: re.Match) -> str:
        value = resolve_field(payload, match.group(1))
        if value is MISSING or value is None:
            return match.group(0)
        return str(value)

    return _TOKEN_RE.sub(_sub, template or "")


def _payload_id(payload: Mapping[str, Any], name: str) -> Optional[str]:
    for key in (f"{name}Id", f"{name}_id"):
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionExecutor:
    def __init__(
        self,
        *,
        jobs: JobStore,
        shifts: ShiftStore,
        workers: WorkerStore,
        tasks: TaskStore,
        notifier: NotificationSender,
        payments: PaymentProcessor,
        email: EmailSender,
        http: Optional[HttpClient] = None,
        webhook_timeout_sec: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.logger = logging.getLogger("action_executor")
        self.jobs = jobs
        self.shifts = shifts
        self.workers = workers
        self.tasks = tasks
        self.notifier = notifier
        self.payments = payments
        self.email = email
        self.http = http if http is not None else requests.Session()
        self.webhook_timeout_sec = webhook_timeout_sec
        self._clock = clock
        self._handlers: Dict[ActionType, Callable[[Any, Mapping[str, Any]], None]] = {
            ActionType.SEND_NOTIFICATION: self._send_notification,
            ActionType.ASSIGN_WORKER: self._assign_worker,
            ActionType.UPDATE_STATUS: self._update_status,
            ActionType.CREATE_TASK: self._create_task,
            ActionType.SEND_EMAIL: self._send_email,
            ActionType.WEBHOOK_CALL: self._webhook_call,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for action types: {sorted(m.value for m in missing)}")

    def execute(self, action: Any, payload: Mapping[str, Any]) -> None:
        handler = self._handlers.get(ActionType(action.type))
        if handler is None:
            raise ActionExecutionError(f"Unknown action type: {action.type}")
        handler(action, payload or {})

    def _send_notification(self, action: SendNotificationAction, payload: Mapping[str, Any]) -> None:
        config = action.config
        message = render_template(config.message, payload)
        title = render_template(config.title, payload)
        sent = 0
        for role in config.recipients:
            user_id = _payload_id(payload, role)
            if not user_id:
                self.logger.debug("No %s id in payload; skipping recipient", role)
                continue
            self.notifier.send(
                Notification(
                    recipient_user_id=user_id,
                    type=config.notification_type,
                    title=title,
                    message=message,
                    priority=config.priority,
                    created_at=self._clock(),
                    metadata={"category": "automation", "template": config.template, "role": role},
                )
            )
            sent += 1
        self.logger.info("Automation notification sent recipients=%s template=%s", sent, config.template)

    def _assign_worker(self, action: AssignWorkerAction, payload: Mapping[str, Any]) -> None:
        config = action.config
        job_id = _payload_id(payload, "job")
        if not job_id:
            raise ActionExecutionError("assign_worker requires jobId in the event payload")
        job = self.jobs.get_job_by_id(job_id)
        if job is None:
            raise ActionExecutionError(f"Job '{job_id}' not found")
        candidates = self.workers.get_available_workers(list(job.required_skills or []))
        if not candidates:
            raise ActionExecutionError(f"No available workers for job '{job_id}'")
        worker = select_best(candidates, job, config.criteria)
        start = self._clock()
        shift = self.shifts.create_shift(
            {
                "title": f"Work shift for {job.title}",
                "job_id": job.id,
                "worker_id": worker.id,
                "start_time": start,
                "end_time": start + timedelta(hours=DEFAULT_SHIFT_HOURS),
                "status": "assigned",
                "location": job.location,
            }
        )
        self.logger.info("Assigned worker_id=%s to job_id=%s shift_id=%s", worker.id, job.id, shift.id)
        if config.notify_worker:
            self.notifier.send(
                Notification(
                    recipient_user_id=worker.id,
                    type="shift_assigned",
                    title="Job Assignment",
                    message=f"You have been assigned to job: {job.title}",
                    priority="high",
                    created_at=self._clock(),
                    metadata={"category": "work", "job_id": job.id, "shift_id": shift.id},
                )
            )

    def _update_status(self, action: UpdateStatusAction, payload: Mapping[str, Any]) -> None:
        config = action.config
        entity_id = config.entity_id or _payload_id(payload, config.entity_type)
        if not entity_id:
            raise ActionExecutionError(f"update_status needs a {config.entity_type} id")
        if config.entity_type == "job":
            self.jobs.update_job(entity_id, {"status": config.new_status})
        else:
            self.shifts.update_shift(entity_id, {"status": config.new_status})
        self.logger.info("Updated %s %s status=%s", config.entity_type, entity_id, config.new_status)

    def _create_task(self, action: CreateTaskAction, payload: Mapping[str, Any]) -> None:
        config = action.config
        task = self.tasks.create_task(
            {
                "task_type": config.task_type,
                "priority": config.priority,
                "assign_to": config.assign_to,
                "payload": dict(payload),
            }
        )
        self.logger.info("Created task id=%s type=%s", task.id, task.task_type)
        if config.task_type != PROCESS_PAYMENT_TASK:
            return
        shift_id = _payload_id(payload, "shift")
        if not shift_id:
            return
        shift = self.shifts.get_shift_by_id(shift_id)
        if shift is not None and shift.status == "completed":
            self.payments.process_shift_payment(shift.id)

    def _send_email(self, action: SendEmailAction, payload: Mapping[str, Any]) -> None:
        config = action.config
        self.email.send_email(
            render_template(config.to, payload),
            render_template(config.subject, payload),
            render_template(config.body, payload),
        )

    def _webhook_call(self, action: WebhookCallAction, payload: Mapping[str, Any]) -> None:
        config = action.config
        request_id = str(uuid.uuid4())
        headers = {"Content-Type": "application/json", "X-Request-Id": request_id, **config.headers}
        try:
            response = self.http.request(
                config.method,
                config.url,
                json=dict(payload),
                headers=headers,
                timeout=self.webhook_timeout_sec,
            )
        except requests.RequestException as exc:
            raise WebhookError(f"Webhook request failed: {exc}") from exc
        status = int(getattr(response, "status_code", 0) or 0)
        if status // 100 != 2:
            reason = getattr(response, "reason", "") or ""
            raise WebhookError(f"Webhook failed: {status} {reason}".strip(), status_code=status)
        self.logger.info("Webhook delivered url=%s status=%s request_id=%s", config.url, status, request_id)
