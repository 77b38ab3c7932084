"""
StepResult schema - the outcome of one step within a job instance.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .actions import Action


class StepStatus(str, Enum):
    """Status of a step execution."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepResult:
    """
    The outcome of executing a single step.

    Attributes:
        step_id: Identifier of the step
        action: The action that was dispatched
        status: Execution status
        best_effort: Whether a failure of this step was tolerated
        exit_code: Exit status reported by the action (None if it raised)
        started_at: When step execution started (None if skipped)
        completed_at: When step execution completed (None if skipped)
        outputs: Declared output values (visible to later steps of the same instance)
        error: Error details if status is failed
    """
    step_id: str
    action: Action
    status: StepStatus
    best_effort: bool = False
    exit_code: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    outputs: dict[str, Any] = field(default_factory=dict)
    error: Optional[dict[str, Any]] = None

    def __post_init__(self):
        if self.status in (StepStatus.SUCCEEDED, StepStatus.FAILED):
            if self.started_at is None or self.completed_at is None:
                raise ValueError(f"{self.status.value} steps must have started_at and completed_at")
        if self.status == StepStatus.FAILED and self.error is None and self.exit_code in (None, 0):
            raise ValueError("Failed steps must carry an error or a non-zero exit_code")

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate execution duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "step_id": self.step_id,
            "action": self.action.value,
            "status": self.status.value,
        }
        if self.best_effort:
            result["best_effort"] = True
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.outputs:
            result["outputs"] = self.outputs
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepResult":
        """Deserialize from dictionary."""
        return cls(
            step_id=data["step_id"],
            action=Action.from_string(data["action"]),
            status=StepStatus(data["status"]),
            best_effort=data.get("best_effort", False),
            exit_code=data.get("exit_code"),
            started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
            outputs=data.get("outputs", {}),
            error=data.get("error"),
        )
