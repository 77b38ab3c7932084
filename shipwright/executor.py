"""
Stage Executor - Run the ordered steps of one JobInstance.

The StageExecutor implements:
- Handler dispatch for every step via HandlerRegistry
- Run-time reference resolution (@steps.* refs from earlier step outputs)
- best_effort semantics (failure logged, instance continues)
- Per-instance isolated workspaces

Execution flow for one instance:
1. Create the workspace <work_root>/<run_id>/<instance_id>
2. For each step, in declared order:
   a. Record compile-time skips (false if condition)
   b. Resolve @steps.* references from earlier outputs of this instance
   c. Create StepManifest
   d. Dispatch through HandlerRegistry
   e. Record StepResult (outputs available via @steps.<step_id>.*)
3. On the first non-best-effort failure, mark the instance failed and
   record the remaining steps as skipped

Step outputs are kept in a mapping local to one execute() call, so they
are never visible to sibling instances.
"""

import logging
import re
from pathlib import Path
from typing import Any, Optional

from shipwright.handlers import HandlerRegistry
from shipwright.schemas import (
    InstanceStatus,
    JobInstance,
    StepInstance,
    StepManifest,
    StepResult,
    StepStatus,
)
from shipwright.utils import utcnow

logger = logging.getLogger(__name__)


# Reference pattern for @steps.* references
STEPS_REF_PATTERN = re.compile(r"@steps\.([a-zA-Z_][a-zA-Z0-9_.\-]*)")


def _resolve_step_refs(value: Any, step_outputs: dict[str, dict[str, Any]]) -> Any:
    """
    Resolve @steps.* references in a value using earlier step outputs.

    @steps.step_id.key resolves to step_outputs["step_id"]["key"]

    Args:
        value: The value containing potential @steps.* references
        step_outputs: Dictionary mapping step_id to step outputs

    Returns:
        The resolved value (strings for resolved refs)

    Raises:
        ValueError: If a reference cannot be resolved
    """
    if isinstance(value, str):
        if value.startswith("@steps."):
            match = STEPS_REF_PATTERN.fullmatch(value)
            if match:
                parts = match.group(1).split(".")
                step_id = parts[0]

                if step_id not in step_outputs:
                    raise ValueError(f"@steps reference to unknown or unfinished step: {step_id}")

                result: Any = step_outputs[step_id]
                for part in parts[1:]:
                    if isinstance(result, dict) and part in result:
                        result = result[part]
                    else:
                        raise ValueError(
                            f"@steps reference path not found: {value} (missing '{part}')"
                        )
                return str(result)
        return value
    elif isinstance(value, dict):
        return {k: _resolve_step_refs(v, step_outputs) for k, v in value.items()}
    else:
        return value


class StageExecutor:
    """
    Execution engine for a single JobInstance.

    Usage:
        registry = HandlerRegistry.create_default(artifact_store=store)
        executor = StageExecutor(handlers=registry, work_root=Path("/tmp/work"))

        executor.execute(instance, run_id)
        assert instance.status == InstanceStatus.SUCCEEDED
    """

    def __init__(self, handlers: HandlerRegistry, work_root: Path | str):
        """
        Initialize the executor.

        Args:
            handlers: HandlerRegistry for step dispatch
            work_root: Root directory for per-instance workspaces
        """
        self._handlers = handlers
        self._work_root = Path(work_root)

    def workspace_for(self, run_id: str, instance: JobInstance) -> Path:
        return self._work_root / run_id / instance.instance_id

    def execute(self, instance: JobInstance, run_id: str) -> JobInstance:
        """
        Execute all steps of an instance, updating it in place.

        Args:
            instance: The JobInstance to execute
            run_id: The run ULID

        Returns:
            The same instance, with status succeeded or failed
        """
        workspace = self.workspace_for(run_id, instance)
        workspace.mkdir(parents=True, exist_ok=True)

        instance.status = InstanceStatus.RUNNING
        instance.started_at = utcnow()
        logger.info(f"[{instance.instance_id}] started", extra={"run_id": run_id, "instance": instance.instance_id})

        step_outputs: dict[str, dict[str, Any]] = {}
        failed_step: Optional[StepResult] = None

        for step in instance.steps:
            if failed_step is not None or step.compiled_skip:
                instance.step_results.append(StepResult(
                    step_id=step.step_id,
                    action=step.action,
                    status=StepStatus.SKIPPED,
                    best_effort=step.best_effort,
                ))
                continue

            result = self._execute_step(step, instance, run_id, workspace, step_outputs)
            instance.step_results.append(result)

            if result.status == StepStatus.SUCCEEDED:
                step_outputs[step.step_id] = result.outputs
            elif step.best_effort:
                logger.warning(
                    f"[{instance.instance_id}] best-effort step '{step.step_id}' failed "
                    f"({self._describe_failure(result)}); continuing"
                )
                step_outputs[step.step_id] = result.outputs
            else:
                failed_step = result

        instance.completed_at = utcnow()
        if failed_step is not None:
            instance.status = InstanceStatus.FAILED
            instance.error = {
                "step_id": failed_step.step_id,
                "exit_code": failed_step.exit_code,
                **(failed_step.error or {}),
            }
            logger.error(
                f"[{instance.instance_id}] failed at step '{failed_step.step_id}' "
                f"({self._describe_failure(failed_step)})",
                extra={"run_id": run_id, "instance": instance.instance_id},
            )
        else:
            instance.status = InstanceStatus.SUCCEEDED
            logger.info(f"[{instance.instance_id}] succeeded", extra={"run_id": run_id, "instance": instance.instance_id})

        return instance

    def _execute_step(
        self,
        step: StepInstance,
        instance: JobInstance,
        run_id: str,
        workspace: Path,
        step_outputs: dict[str, dict[str, Any]],
    ) -> StepResult:
        """
        Execute a single step; handler exceptions become a failed result.
        """
        started_at = utcnow()
        try:
            manifest = StepManifest.from_action(
                run_id=run_id,
                instance_id=instance.instance_id,
                step_id=step.step_id,
                action=step.action,
                resolved_params=_resolve_step_refs(step.params, step_outputs),
                env=_resolve_step_refs(step.env, step_outputs),
                workspace=str(workspace),
                label=instance.label,
                timeout_s=step.timeout_s,
            )
            logger.debug(f"[{instance.instance_id}] step '{step.step_id}' -> {step.action.value}")
            action_result = self._handlers.dispatch(manifest)
        except Exception as e:
            return StepResult(
                step_id=step.step_id,
                action=step.action,
                status=StepStatus.FAILED,
                best_effort=step.best_effort,
                started_at=started_at,
                completed_at=utcnow(),
                error={"type": type(e).__name__, "message": str(e)},
            )

        return StepResult(
            step_id=step.step_id,
            action=step.action,
            status=StepStatus.SUCCEEDED if action_result.ok else StepStatus.FAILED,
            best_effort=step.best_effort,
            exit_code=action_result.exit_code,
            started_at=started_at,
            completed_at=utcnow(),
            outputs=dict(action_result.outputs),
        )

    @staticmethod
    def _describe_failure(result: StepResult) -> str:
        if result.error is not None:
            return f"{result.error['type']}: {result.error['message']}"
        return f"exit code {result.exit_code}"
