"""
Contracts for the collaborators the workflow engine reads from and writes to.

The engine never touches the database, the mail server or payment provider
directly; it goes through these protocols. ``shiftwise.services.stores``
provides the SQLAlchemy-backed implementations used by the app, and tests
plug in small in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol


@dataclass
class Job:
    id: str
    title: str
    status: str = "active"
    priority: str = "medium"
    required_skills: List[str] = field(default_factory=list)
    experience_level: Optional[str] = None
    location: Optional[str] = None
    client_id: Optional[str] = None


@dataclass
class Worker:
    id: str
    name: str = ""
    skills: List[str] = field(default_factory=list)
    experience_level: Optional[str] = None
    is_available: bool = True
    rating: Optional[float] = None


@dataclass
class Shift:
    id: str
    title: str
    job_id: Optional[str]
    worker_id: Optional[str]
    start_time: datetime
    end_time: datetime
    status: str = "assigned"
    location: Optional[str] = None


@dataclass
class Task:
    id: str
    task_type: str
    priority: str
    assign_to: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass
class Notification:
    recipient_user_id: str
    type: str
    title: str
    message: str
    priority: str
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


class JobStore(Protocol):
    def get_job_by_id(self, job_id: str) -> Optional[Job]: ...

    def update_job(self, job_id: str, fields: Dict[str, Any]) -> None: ...


class ShiftStore(Protocol):
    def create_shift(self, fields: Dict[str, Any]) -> Shift: ...

    def update_shift(self, shift_id: str, fields: Dict[str, Any]) -> None: ...

    def get_shift_by_id(self, shift_id: str) -> Optional[Shift]: ...


class WorkerStore(Protocol):
    def get_available_workers(self, required_skills: List[str]) -> List[Worker]: ...


class TaskStore(Protocol):
    def create_task(self, fields: Dict[str, Any]) -> Task: ...


class NotificationSender(Protocol):
    def send(self, notification: Notification) -> None: ...


class PaymentProcessor(Protocol):
    def process_shift_payment(self, shift_id: str) -> None: ...


class EmailSender(Protocol):
    def send_email(self, to: str, subject: str, body: str) -> None: ...


class HttpClient(Protocol):
    """The subset of ``requests.Session`` used by webhook actions."""

    def request(self, method: str, url: str, **kwargs: Any) -> Any: ...
