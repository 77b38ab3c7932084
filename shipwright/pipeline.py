"""Pipeline runner - one run of a pipeline from trigger to terminal status.

This module ties the components together:
1. Validate the job graph (cycles) and expand every template across its
   matrix; definition errors are raised before a run is created
2. Create and persist the RunRecord
3. Schedule instances on the JobGraphScheduler; step jobs go to the
   StageExecutor, the release job goes to the ReleaseGate
4. Derive the run status and persist the final RunRecord

Run status:
- cancelled: cancellation was requested
- failed: any instance failed, or was skipped because a dependency failed
- succeeded: otherwise (a release skipped by its predicate is not a failure)
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from shipwright.artifacts import ArtifactStore, FileArtifactStore
from shipwright.config import ShipwrightConfig
from shipwright.executor import StageExecutor
from shipwright.handlers import HandlerRegistry
from shipwright.matrix import expand_all
from shipwright.registry import PipelineRegistry
from shipwright.release import FileReleasePublisher, ReleaseGate, ReleasePredicate, ReleasePublisher
from shipwright.run_store import FileRunStore, RunStore, generate_ulid
from shipwright.scheduler import JobGraphScheduler
from shipwright.schemas import (
    GateResult,
    GateState,
    InstanceStatus,
    JobInstance,
    JobTemplate,
    PipelineDef,
    RunRecord,
    RunStatus,
    SkipReason,
    TriggerContext,
)
from shipwright.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Result of executing a pipeline.

    - run_id: run identifier
    - pipeline_id: pipeline identifier
    - status: terminal run status
    - instances: every job instance with its final status and step results
    - gate: release gate outcome, if the release job ran
    - duration_ms: total execution time
    """
    run_id: str
    pipeline_id: str
    status: RunStatus
    instances: list[JobInstance] = field(default_factory=list)
    gate: Optional[GateResult] = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def published(self) -> bool:
        return self.gate is not None and self.gate.state == GateState.PUBLISHED

    def get_instance(self, instance_id: str) -> Optional[JobInstance]:
        for instance in self.instances:
            if instance.instance_id == instance_id:
                return instance
        return None

    @property
    def failures(self) -> list[dict[str, Any]]:
        return [
            {"instance_id": i.instance_id, "error": i.error}
            for i in self.instances
            if i.status == InstanceStatus.FAILED
        ]

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "pipeline_id": self.pipeline_id,
            "status": self.status.value,
            "instances": [i.to_dict() for i in self.instances],
            "duration_ms": self.duration_ms,
        }
        if self.gate is not None:
            result["release"] = self.gate.to_dict()
        return result


def run_status(instances: list[JobInstance], cancelled: bool) -> RunStatus:
    """Derive the terminal run status from instance outcomes."""
    if cancelled:
        return RunStatus.CANCELLED
    for instance in instances:
        if instance.status == InstanceStatus.FAILED:
            return RunStatus.FAILED
        if instance.status == InstanceStatus.SKIPPED and instance.skip_reason == SkipReason.DEPENDENCY_FAILED:
            return RunStatus.FAILED
    return RunStatus.SUCCEEDED


class PipelineRun:
    """
    One invocation of a pipeline.

    Collaborators default to file-backed implementations rooted at the
    configured directories; tests inject in-memory ones.

    Usage:
        run = PipelineRun(pipeline, TriggerContext.from_ref("refs/tags/v1.2.3"))
        result = run.execute()

        # From another thread:
        run.cancel()
    """

    def __init__(
        self,
        pipeline: PipelineDef,
        trigger: TriggerContext,
        config: Optional[ShipwrightConfig] = None,
        artifact_store: Optional[ArtifactStore] = None,
        publisher: Optional[ReleasePublisher] = None,
        run_store: Optional[RunStore] = None,
        handlers: Optional[HandlerRegistry] = None,
        predicate: Optional[ReleasePredicate] = None,
        max_workers: Optional[int] = None,
        progress_callback: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            pipeline: The pipeline definition
            trigger: Trigger context of this run
            config: Runtime configuration (defaults to ShipwrightConfig())
            artifact_store: Run-scoped store; its run_id becomes the run id
            publisher: Release publisher
            run_store: Store for RunRecords
            handlers: Step dispatch table (defaults to the built-in handlers)
            predicate: Overrides the release tag-prefix predicate
            max_workers: Concurrency limit (defaults to config.max_workers)
            progress_callback: Optional callback(event, **kwargs).
                Events: 'run_start', 'job_start', 'job_ok', 'job_fail', 'run_done'
        """
        self.pipeline = pipeline
        self.trigger = trigger
        self.config = config or ShipwrightConfig()

        if artifact_store is None:
            artifact_store = FileArtifactStore(self.config.path("artifact_root"), generate_ulid())
        self.artifact_store = artifact_store
        self.run_id = artifact_store.run_id

        self._publisher = publisher or FileReleasePublisher(self.config.path("release_root"))
        self._run_store = run_store or FileRunStore(self.config.path("run_root"))
        if handlers is None:
            source_dir = self.config.path("source_dir") if self.config.source_dir else None
            handlers = HandlerRegistry.create_default(artifact_store, source_dir=source_dir)
        self._predicate = predicate
        self._max_workers = max_workers or self.config.max_workers
        self._progress_callback = progress_callback

        self._cancel_event = threading.Event()
        self._executor = StageExecutor(handlers, self.config.path("work_root"))
        self._gate = ReleaseGate(
            self._publisher,
            artifact_store,
            default_tag_prefix=self.config.tag_prefix,
            cancel_event=self._cancel_event,
        )
        self._gate_result: Optional[GateResult] = None

    def cancel(self) -> None:
        """Stop scheduling new instances; running instances finish."""
        if not self._cancel_event.is_set():
            logger.warning(f"Run {self.run_id}: cancellation requested", extra={"run_id": self.run_id})
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _emit(self, event: str, **kwargs) -> None:
        if self._progress_callback:
            self._progress_callback(event, **kwargs)

    def execute(self) -> PipelineResult:
        """
        Run the pipeline to a terminal status.

        Raises:
            GraphCycleError: If the job graph has a cycle (no run is created)
            PipelineDefinitionError: If a matrix, reference or condition is invalid
        """
        scheduler = JobGraphScheduler(
            self.pipeline.jobs,
            runner=self._run_instance,
            max_workers=self._max_workers,
            cancel_event=self._cancel_event,
        )
        scheduler.validate()
        instances = expand_all(self.pipeline.jobs, self.trigger)

        record = RunRecord(
            run_id=self.run_id,
            pipeline_id=self.pipeline.pipeline_id,
            pipeline_sha256=PipelineRegistry.compute_hash(self.pipeline),
            trigger=self.trigger,
            status=RunStatus.RUNNING,
        )
        self._run_store.save_run(record)

        total = sum(len(v) for v in instances.values())
        logger.info(
            f"Starting pipeline {self.pipeline.pipeline_id} (run {self.run_id}, ref {self.trigger.ref})",
            extra={"run_id": self.run_id, "event": "run.start"},
        )
        logger.info(f"  jobs: {len(self.pipeline.jobs)}, instances: {total}, workers: {self._max_workers}")
        self._emit("run_start", run_id=self.run_id, total=total)

        start_time = time.time()
        ordered = scheduler.run(instances)
        status = run_status(ordered, self.cancelled)

        record.status = status
        record.completed_at = utcnow()
        record.jobs = [i.to_dict() for i in ordered]
        record.release = self._gate_result.to_dict() if self._gate_result is not None else None
        record.errors = [
            f"{i.instance_id}: {(i.error or {}).get('message') or 'failed'}"
            for i in ordered
            if i.status == InstanceStatus.FAILED
        ]
        self._run_store.save_run(record)

        result = PipelineResult(
            run_id=self.run_id,
            pipeline_id=self.pipeline.pipeline_id,
            status=status,
            instances=ordered,
            gate=self._gate_result,
            duration_ms=int((time.time() - start_time) * 1000),
        )

        log = logger.info if status == RunStatus.SUCCEEDED else logger.error
        log(
            f"Pipeline {self.pipeline.pipeline_id}: status={status.value}, "
            f"instances={total}, failed={len(result.failures)}, duration={result.duration_ms}ms",
            extra={"run_id": self.run_id, "event": "run.done"},
        )
        self._emit("run_done", run_id=self.run_id, status=status.value)
        return result

    def _run_instance(self, instance: JobInstance) -> None:
        template = self.pipeline.get_job(instance.template_name)
        self._emit("job_start", instance_id=instance.instance_id)

        if template is not None and template.is_release:
            self._run_release(instance, template)
        else:
            self._executor.execute(instance, self.run_id)

        if instance.status == InstanceStatus.FAILED:
            self._emit("job_fail", instance_id=instance.instance_id, error=instance.error)
        else:
            self._emit("job_ok", instance_id=instance.instance_id, status=instance.status.value)

    def _run_release(self, instance: JobInstance, template: JobTemplate) -> None:
        instance.status = InstanceStatus.RUNNING
        instance.started_at = utcnow()

        gate_result = self._gate.run(template.release, self.trigger, predicate=self._predicate)
        self._gate_result = gate_result

        if gate_result.state == GateState.PUBLISHED:
            instance.status = InstanceStatus.SUCCEEDED
        elif gate_result.state == GateState.SKIPPED:
            instance.skip(SkipReason.PREDICATE_FALSE)
        else:
            instance.status = InstanceStatus.FAILED
            instance.error = gate_result.error
        instance.completed_at = utcnow()


def run_pipeline(
    pipeline: PipelineDef,
    trigger: TriggerContext,
    config: Optional[ShipwrightConfig] = None,
    **kwargs: Any,
) -> PipelineResult:
    """Execute one run of a pipeline.

    Args:
        pipeline: The pipeline definition
        trigger: Trigger context (event kind and ref)
        config: Runtime configuration
        **kwargs: Passed to PipelineRun (artifact_store, publisher, run_store,
            handlers, predicate, max_workers, progress_callback)

    Returns:
        PipelineResult with the run status and per-instance outcomes
    """
    return PipelineRun(pipeline, trigger, config=config, **kwargs).execute()
