"""
RunRecord schema - one invocation of a pipeline.

A RunRecord is created when a trigger starts a run and updated when the
run reaches a terminal status. It captures the trigger context, the
per-instance outcomes and the release gate result.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from shipwright.utils import utcnow

# ULID type alias for documentation
ULID = str

TAG_REF_PREFIX = "refs/tags/"


class EventKind(str, Enum):
    """Kind of external event that triggered a run."""
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    TAG = "tag"


class RunStatus(str, Enum):
    """Status of a run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)


@dataclass(frozen=True)
class TriggerContext:
    """
    The invocation context of a run.

    Attributes:
        event_kind: push, pull_request or tag
        ref: Full git ref, e.g. "refs/heads/master" or "refs/tags/v1.2.3"
    """
    event_kind: EventKind
    ref: str

    def __post_init__(self):
        if not self.ref:
            raise ValueError("Trigger ref must not be empty")

    @property
    def is_tag(self) -> bool:
        return self.ref.startswith(TAG_REF_PREFIX)

    @property
    def tag(self) -> Optional[str]:
        """Tag name for tag refs ("refs/tags/v1.2.3" -> "v1.2.3"), else None."""
        if self.is_tag:
            return self.ref[len(TAG_REF_PREFIX):]
        return None

    @classmethod
    def from_ref(cls, ref: str, event_kind: Optional[str] = None) -> "TriggerContext":
        """Build a context, inferring the event kind from the ref when absent."""
        if event_kind is None:
            kind = EventKind.TAG if ref.startswith(TAG_REF_PREFIX) else EventKind.PUSH
        else:
            kind = EventKind(event_kind)
        return cls(event_kind=kind, ref=ref)

    def to_dict(self) -> dict[str, Any]:
        return {"event_kind": self.event_kind.value, "ref": self.ref}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TriggerContext":
        return cls(event_kind=EventKind(data["event_kind"]), ref=data["ref"])


@dataclass
class RunRecord:
    """
    A record of a pipeline run.

    The run_id is a ULID providing both uniqueness and time-ordering.

    Attributes:
        run_id: ULID uniquely identifying this run
        pipeline_id: The pipeline being run
        pipeline_sha256: Content hash of the pipeline definition
        trigger: Trigger context
        started_at: When the run started
        completed_at: When the run reached a terminal status
        status: pending, running, succeeded, failed, cancelled
        jobs: Per-instance outcomes (serialized JobInstances)
        release: Serialized release gate result, if the gate ran
        errors: Error messages collected from failed instances
    """
    run_id: ULID
    pipeline_id: str
    pipeline_sha256: str
    trigger: TriggerContext
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.PENDING
    jobs: list[dict[str, Any]] = field(default_factory=list)
    release: Optional[dict[str, Any]] = None
    errors: list[str] = field(default_factory=list)

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "pipeline_id": self.pipeline_id,
            "pipeline_sha256": self.pipeline_sha256,
            "trigger": self.trigger.to_dict(),
            "started_at": self.started_at.isoformat(),
            "status": self.status.value,
            "jobs": self.jobs,
        }
        if self.completed_at:
            result["completed_at"] = self.completed_at.isoformat()
            result["duration_ms"] = self.duration_ms
        if self.release is not None:
            result["release"] = self.release
        if self.errors:
            result["errors"] = self.errors
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunRecord":
        """Deserialize from dictionary."""
        completed_at = None
        if data.get("completed_at"):
            completed_at = datetime.fromisoformat(data["completed_at"])
        return cls(
            run_id=data["run_id"],
            pipeline_id=data["pipeline_id"],
            pipeline_sha256=data.get("pipeline_sha256", ""),
            trigger=TriggerContext.from_dict(data["trigger"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=completed_at,
            status=RunStatus(data.get("status", "pending")),
            jobs=data.get("jobs", []),
            release=data.get("release"),
            errors=data.get("errors", []),
        )
