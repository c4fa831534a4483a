"""
SQLAlchemy-backed collaborator stores for the workflow engine.

Each store takes a session factory and opens one short-lived session per
call, so instances can be shared between request handlers, timer threads and
the MQTT consumer.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.errors import ActionExecutionError
from ..models.automation_task import AutomationTask as AutomationTaskModel
from ..models.job import Job as JobModel
from ..models.shift import Shift as ShiftModel
from ..models.worker import Worker as WorkerModel
from .collaborators import Job, Shift, Task, Worker

SessionFactory = Callable[[], Session]

JOB_FIELDS = {"title", "status", "priority", "required_skills", "experience_level", "location", "client_id"}
SHIFT_FIELDS = {"title", "job_id", "worker_id", "start_time", "end_time", "status", "location"}


def _job_from_row(row: JobModel) -> Job:
    return Job(
        id=row.id,
        title=row.title,
        status=row.status,
        priority=row.priority,
        required_skills=list(row.required_skills or []),
        experience_level=row.experience_level,
        location=row.location,
        client_id=row.client_id,
    )


def _worker_from_row(row: WorkerModel) -> Worker:
    return Worker(
        id=row.id,
        name=row.name or "",
        skills=list(row.skills or []),
        experience_level=row.experience_level,
        is_available=bool(row.is_available),
        rating=row.rating,
    )


def _shift_from_row(row: ShiftModel) -> Shift:
    return Shift(
        id=row.id,
        title=row.title,
        job_id=row.job_id,
        worker_id=row.worker_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        location=row.location,
    )


def _apply_fields(row: Any, fields: Dict[str, Any], allowed: set[str], entity: str) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ActionExecutionError(f"Unknown {entity} fields: {sorted(unknown)}")
    for key, value in fields.items():
        setattr(row, key, value)


class SqlJobStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_job_by_id(self, job_id: str) -> Optional[Job]:
        with self._session_factory() as db:
            row = db.get(JobModel, job_id)
            return _job_from_row(row) if row else None

    def update_job(self, job_id: str, fields: Dict[str, Any]) -> None:
        with self._session_factory() as db:
            row = db.get(JobModel, job_id)
            if row is None:
                raise ActionExecutionError(f"Job '{job_id}' not found")
            _apply_fields(row, fields, JOB_FIELDS, "job")
            db.add(row)
            db.commit()


class SqlShiftStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def create_shift(self, fields: Dict[str, Any]) -> Shift:
        with self._session_factory() as db:
            row = ShiftModel()
            _apply_fields(row, fields, SHIFT_FIELDS, "shift")
            db.add(row)
            db.commit()
            db.refresh(row)
            return _shift_from_row(row)

    def update_shift(self, shift_id: str, fields: Dict[str, Any]) -> None:
        with self._session_factory() as db:
            row = db.get(ShiftModel, shift_id)
            if row is None:
                raise ActionExecutionError(f"Shift '{shift_id}' not found")
            _apply_fields(row, fields, SHIFT_FIELDS, "shift")
            db.add(row)
            db.commit()

    def get_shift_by_id(self, shift_id: str) -> Optional[Shift]:
        with self._session_factory() as db:
            row = db.get(ShiftModel, shift_id)
            return _shift_from_row(row) if row else None


class SqlWorkerStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_available_workers(self, required_skills: List[str]) -> List[Worker]:
        """Active workers holding at least one required skill.

        With no required skills every active worker is a candidate.
        Availability is left to the matcher's scoring.
        """
        wanted = {skill for skill in required_skills or [] if skill}
        with self._session_factory() as db:
            rows = (
                db.query(WorkerModel)
                .filter(WorkerModel.is_active == True)  # noqa: E712
                .order_by(WorkerModel.id.asc())
                .all()
            )
            workers = [_worker_from_row(row) for row in rows]
        if not wanted:
            return workers
        return [w for w in workers if wanted.intersection(w.skills)]


class SqlTaskStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory
        self.logger = logging.getLogger("tasks")

    def create_task(self, fields: Dict[str, Any]) -> Task:
        with self._session_factory() as db:
            row = AutomationTaskModel(
                task_type=fields["task_type"],
                priority=fields.get("priority", "medium"),
                assign_to=fields.get("assign_to", "system"),
                payload=json_safe(fields.get("payload") or {}),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            self.logger.info("Queued automation task id=%s type=%s", row.id, row.task_type)
            return Task(
                id=row.id,
                task_type=row.task_type,
                priority=row.priority,
                assign_to=row.assign_to,
                payload=dict(row.payload or {}),
                created_at=row.created_at,
            )


def json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
