"""
shipwright.schemas - Data records for the orchestration layer.

PipelineDef -> JobTemplate -> JobInstance -> StepManifest -> StepResult
RunRecord   -> TriggerContext, ReleaseRecord, GateResult

Lifecycle:
1. PipelineDef/JobTemplate: Static declaration with @matrix.*, @ctx.*, @steps.* refs
2. JobInstance: Template bound to one matrix value, expansion-time refs resolved
3. StepManifest: Dispatchable unit handed to an action handler
4. StepResult: Outcome of one step (status, exit code, outputs)
5. RunRecord: One pipeline invocation with its trigger and final status
6. ReleaseRecord/GateResult: The release gate's draft and terminal state
"""

from .actions import Action, ActionCategory
from .job_def import (
    StepDef,
    AssetSpec,
    ReleaseSpec,
    JobTemplate,
    PipelineDef,
)
from .job_instance import (
    JobInstance,
    StepInstance,
    InstanceStatus,
    SkipReason,
)
from .step_result import StepResult, StepStatus
from .step_manifest import StepManifest
from .run_record import (
    RunRecord,
    RunStatus,
    TriggerContext,
    EventKind,
    ULID,
)
from .release import (
    ReleaseRecord,
    ReleaseAsset,
    GateState,
    GateResult,
)

__all__ = [
    # Actions
    "Action",
    "ActionCategory",
    # Declarations
    "StepDef",
    "AssetSpec",
    "ReleaseSpec",
    "JobTemplate",
    "PipelineDef",
    # Instances
    "JobInstance",
    "StepInstance",
    "InstanceStatus",
    "SkipReason",
    # Steps
    "StepResult",
    "StepStatus",
    "StepManifest",
    # Runs
    "RunRecord",
    "RunStatus",
    "TriggerContext",
    "EventKind",
    "ULID",
    # Releases
    "ReleaseRecord",
    "ReleaseAsset",
    "GateState",
    "GateResult",
]
