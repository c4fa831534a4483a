"""
Service layer for the Shiftwise backend.

This package contains the workflow engine, its action executor and
scheduler, and the SQL-backed collaborators the app wires into them.
"""

from .action_executor import ActionExecutor
from .rule_engine import WorkflowEngine

__all__ = ["ActionExecutor", "WorkflowEngine"]
