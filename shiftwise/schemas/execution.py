"""
Pydantic schemas for execution records and aggregate statistics.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExecutionResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class ExecutionKind(str, Enum):
    RULE = "rule"
    DELAYED_ACTION = "delayed_action"


class ExecutionRecord(BaseModel):
    """Write-once outcome of one rule run or one delayed action."""

    model_config = ConfigDict(frozen=True)

    id: str
    rule_id: str
    trigger: Dict[str, Any] = Field(default_factory=dict)
    result: ExecutionResult
    executed_actions: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0
    timestamp: datetime
    kind: ExecutionKind = ExecutionKind.RULE
    origin_execution_id: Optional[str] = None
    deferred_actions: List[str] = Field(default_factory=list)


class ExecutionStats(BaseModel):
    total: int
    successful: int
    failed: int
    partial: int
    success_rate: float
    average_duration: float
    delayed_actions: int = 0


class TopPerformer(BaseModel):
    id: str
    name: str
    success_rate: float
    execution_count: int


class WorkflowAnalytics(BaseModel):
    total_workflows: int
    active_workflows: int
    success_rate: float
    average_execution_time: float
    top_performers: List[TopPerformer] = Field(default_factory=list)


class Suggestion(BaseModel):
    type: str
    title: str
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: str = "rule_based"
    implementation: Optional[Dict[str, Any]] = None
