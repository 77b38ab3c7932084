"""
Job Graph Scheduler - Run expanded job instances over the dependency DAG.

The scheduler:
- Rejects cyclic graphs before any instance runs (GraphCycleError)
- Submits every instance whose predecessor templates are satisfied to a
  bounded worker pool, so independent instances run concurrently
- Skips dependents whose predecessors failed (DEPENDENCY_FAILED)
- Stops scheduling on cancellation (CANCELLED), letting running
  instances finish

Gating per predecessor template:
- fail_fast=true: satisfied when every instance succeeded; blocked as
  soon as any instance failed or was skipped
- fail_fast=false: waits until every sibling is terminal; satisfied if at
  least one succeeded, blocked otherwise

Siblings are never cancelled because another sibling failed. Instances
skipped because a release predicate was false count as satisfied.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import Enum
from graphlib import CycleError, TopologicalSorter
from typing import Callable, Optional

from shipwright.errors import GraphCycleError
from shipwright.schemas import InstanceStatus, JobInstance, JobTemplate, SkipReason
from shipwright.utils import utcnow

logger = logging.getLogger(__name__)


# Runs one instance to a terminal status, updating it in place
InstanceRunner = Callable[[JobInstance], None]


class Gate(str, Enum):
    """Scheduling decision for a template whose instances have not started."""
    READY = "ready"
    WAIT = "wait"
    BLOCKED = "blocked"


def topological_order(templates: list[JobTemplate] | tuple[JobTemplate, ...]) -> list[str]:
    """
    Compute a topological order of template names.

    Raises:
        GraphCycleError: If the dependency graph contains a cycle
    """
    graph = {t.name: set(t.depends_on) for t in templates}
    try:
        return list(TopologicalSorter(graph).static_order())
    except CycleError as e:
        cycle = list(e.args[1]) if len(e.args) > 1 else []
        # graphlib reports the cycle in reverse dependency direction
        raise GraphCycleError(list(reversed(cycle))) from e


def _satisfies(template: JobTemplate, instances: list[JobInstance]) -> Gate:
    def ok(i: JobInstance) -> bool:
        return i.status == InstanceStatus.SUCCEEDED or (
            i.status == InstanceStatus.SKIPPED and i.skip_reason == SkipReason.PREDICATE_FALSE
        )

    if template.fail_fast:
        if any(i.status.is_terminal and not ok(i) for i in instances):
            return Gate.BLOCKED
        if all(ok(i) for i in instances):
            return Gate.READY
        return Gate.WAIT

    if not all(i.status.is_terminal for i in instances):
        return Gate.WAIT
    return Gate.READY if any(ok(i) for i in instances) else Gate.BLOCKED


class JobGraphScheduler:
    """
    Concurrent scheduler for the job graph of one run.

    Usage:
        scheduler = JobGraphScheduler(templates, runner=executor_runner, max_workers=4)
        scheduler.validate()  # raises GraphCycleError
        instances = scheduler.run(expand_all(templates, context))
    """

    def __init__(
        self,
        templates: list[JobTemplate] | tuple[JobTemplate, ...],
        runner: InstanceRunner,
        max_workers: int = 4,
        cancel_event: Optional[threading.Event] = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._templates = {t.name: t for t in templates}
        self._runner = runner
        self._max_workers = max_workers
        self._cancel_event = cancel_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def validate(self) -> list[str]:
        """
        Check the graph is acyclic.

        Returns:
            Template names in topological order
        """
        return topological_order(list(self._templates.values()))

    def decide(self, name: str, instances: dict[str, list[JobInstance]]) -> Gate:
        """Combine the gates of every predecessor template of `name`."""
        gates = [
            _satisfies(self._templates[dep], instances[dep])
            for dep in self._templates[name].depends_on
        ]
        if Gate.BLOCKED in gates:
            return Gate.BLOCKED
        if Gate.WAIT in gates:
            return Gate.WAIT
        return Gate.READY

    def run(self, instances: dict[str, list[JobInstance]]) -> list[JobInstance]:
        """
        Run every instance to a terminal status.

        Args:
            instances: Template name -> expanded instances (all QUEUED)

        Returns:
            All instances, grouped by template in topological order

        Raises:
            GraphCycleError: If the graph is cyclic (nothing runs)
        """
        order = self.validate()
        pending = list(order)
        futures: dict[Future, JobInstance] = {}

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="shipwright") as pool:
            while pending or futures:
                if self.cancelled:
                    for name in pending:
                        self._skip_all(instances[name], SkipReason.CANCELLED)
                    pending = []
                else:
                    pending = self._schedule(pending, instances, pool, futures)

                if not futures:
                    if pending:
                        raise RuntimeError(f"Scheduler stalled with pending jobs: {pending}")
                    break

                done, _ = wait(futures, return_when=FIRST_COMPLETED)
                for future in done:
                    futures.pop(future)

        return [instance for name in order for instance in instances[name]]

    def _schedule(
        self,
        pending: list[str],
        instances: dict[str, list[JobInstance]],
        pool: ThreadPoolExecutor,
        futures: dict[Future, JobInstance],
    ) -> list[str]:
        """Submit ready templates and skip blocked ones; returns still-pending names."""
        progressed = True
        while progressed:
            progressed = False
            for name in list(pending):
                gate = self.decide(name, instances)
                if gate == Gate.WAIT:
                    continue
                pending.remove(name)
                progressed = True
                if gate == Gate.BLOCKED:
                    logger.warning(f"Job '{name}' skipped: a dependency failed", extra={"job": name})
                    self._skip_all(instances[name], SkipReason.DEPENDENCY_FAILED)
                else:
                    for instance in instances[name]:
                        futures[pool.submit(self._run_instance, instance)] = instance
        return pending

    def _run_instance(self, instance: JobInstance) -> None:
        if self.cancelled:
            self._skip_all([instance], SkipReason.CANCELLED)
            return

        try:
            self._runner(instance)
        except Exception as e:
            logger.exception(f"[{instance.instance_id}] runner raised {type(e).__name__}")
            instance.status = InstanceStatus.FAILED
            instance.error = {"type": type(e).__name__, "message": str(e)}
            instance.completed_at = utcnow()
            return

        if not instance.status.is_terminal:
            instance.status = InstanceStatus.FAILED
            instance.error = {"type": "RuntimeError", "message": "runner returned without a terminal status"}
            instance.completed_at = utcnow()

    @staticmethod
    def _skip_all(instances: list[JobInstance], reason: SkipReason) -> None:
        for instance in instances:
            if instance.status == InstanceStatus.QUEUED:
                instance.skip(reason)
                instance.completed_at = utcnow()
