"""
JobInstance schema - one concrete execution of a JobTemplate.

A JobInstance is produced by matrix expansion: the template bound to one
axis value, with @matrix.* and @ctx.* refs resolved and step conditions
evaluated. Each instance owns its step list, params and results; nothing
mutable is shared between siblings.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .actions import Action
from .step_result import StepResult, StepStatus


class InstanceStatus(str, Enum):
    """Lifecycle status of a job instance."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (InstanceStatus.SUCCEEDED, InstanceStatus.FAILED, InstanceStatus.SKIPPED)


class SkipReason(str, Enum):
    """Why an instance was skipped instead of run."""
    DEPENDENCY_FAILED = "dependency_failed"
    PREDICATE_FALSE = "predicate_false"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StepInstance:
    """
    A step bound to one instance, ready for execution.

    Expansion-time refs are resolved; @steps.* refs remain for run time.

    Attributes:
        step_id: Unique identifier for the step
        action: The action to execute
        params: Resolved parameters (may still contain @steps.* refs)
        env: Extra environment variables
        best_effort: If true, failure does not halt the instance
        timeout_s: Step-level timeout in seconds
        compiled_skip: True if the step's condition evaluated to false
    """
    step_id: str
    action: Action
    params: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    best_effort: bool = False
    timeout_s: int = 300
    compiled_skip: bool = False


@dataclass
class JobInstance:
    """
    One job template bound to one matrix value.

    Attributes:
        instance_id: Unique id within the run, e.g. "build[ubuntu]"
        template_name: Parent template name
        matrix_value: Axis value, or None for a template without a matrix
        steps: Fixed, ordered steps for this instance
        status: Current lifecycle status
        step_results: Ordered results, appended as steps finish
        skip_reason: Set when status is skipped
        error: Error details when the instance failed outside a step
        started_at / completed_at: Execution timestamps
    """
    instance_id: str
    template_name: str
    matrix_value: Optional[str] = None
    steps: tuple[StepInstance, ...] = field(default_factory=tuple)
    status: InstanceStatus = InstanceStatus.QUEUED
    step_results: list[StepResult] = field(default_factory=list)
    skip_reason: Optional[SkipReason] = None
    error: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def label(self) -> str:
        """Matrix label used to key artifacts (template name when no axis)."""
        return self.matrix_value if self.matrix_value is not None else self.template_name

    def get_step(self, step_id: str) -> Optional[StepInstance]:
        """Get a step by ID."""
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def get_result(self, step_id: str) -> Optional[StepResult]:
        for result in self.step_results:
            if result.step_id == step_id:
                return result
        return None

    def get_failed_steps(self) -> tuple[StepResult, ...]:
        """Get all failed step results (including best-effort failures)."""
        return tuple(r for r in self.step_results if r.status == StepStatus.FAILED)

    def skip(self, reason: SkipReason) -> None:
        self.status = InstanceStatus.SKIPPED
        self.skip_reason = reason

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "instance_id": self.instance_id,
            "template_name": self.template_name,
            "matrix_value": self.matrix_value,
            "status": self.status.value,
            "steps": [r.to_dict() for r in self.step_results],
        }
        if self.skip_reason is not None:
            result["skip_reason"] = self.skip_reason.value
        if self.error is not None:
            result["error"] = self.error
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        return result
