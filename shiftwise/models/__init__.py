"""
SQLAlchemy model base class for the Shiftwise backend.

These tables back the workflow engine's collaborators: jobs, workers and
shifts it reads and updates, plus the tasks, notifications and payment
requests its actions create. Rules and execution records live in memory on
the engine itself.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .job import Job  # noqa: E402,F401
from .worker import Worker  # noqa: E402,F401
from .shift import Shift  # noqa: E402,F401
from .automation_task import AutomationTask  # noqa: E402,F401
from .notification import Notification  # noqa: E402,F401
from .payment import Payment  # noqa: E402,F401

__all__ = [
    "Base",

    # Scheduling
    "Job",
    "Worker",
    "Shift",

    # Automation side effects
    "AutomationTask",
    "Notification",
    "Payment",
]
