"""
Error classes for shipwright.

Errors are raised at component boundaries and recorded exactly once where
they are caught:
- Executor: step-level errors become StepResult.error
- Scheduler: runner errors become JobInstance.error
- Release gate: store/publisher errors become GateResult.error

Definition errors (malformed matrix, dependency cycles) are fatal at
submission time and propagate to the caller before any instance runs.
"""


class ShipwrightError(Exception):
    """Base exception for shipwright."""
    pass


class PipelineDefinitionError(ShipwrightError):
    """A pipeline or job template is malformed."""
    pass


class MatrixError(PipelineDefinitionError):
    """
    A matrix axis is malformed.

    Raised at expansion time for empty identifiers or duplicate values.
    """
    pass


class GraphCycleError(PipelineDefinitionError):
    """
    The job dependency graph contains a cycle.

    Attributes:
        cycle: Job names along the detected cycle (first == last)
    """

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class ArtifactError(ShipwrightError):
    """Base class for artifact store errors."""

    def __init__(self, key, message: str):
        self.key = key
        super().__init__(message)


class ArtifactNotFoundError(ArtifactError):
    """The artifact key has not been published in this run."""

    def __init__(self, key):
        super().__init__(key, f"Artifact not found: {key}")


class DuplicateArtifactError(ArtifactError):
    """The artifact key was already published (write-once)."""

    def __init__(self, key):
        super().__init__(key, f"Artifact already exists: {key}")


class ReleaseError(ShipwrightError):
    """Base class for release gate and publisher errors."""
    pass


class ReleaseExistsError(ReleaseError):
    """A release for this tag already exists; it is never overwritten."""

    def __init__(self, tag: str):
        self.tag = tag
        super().__init__(f"Release already exists for tag: {tag}")


class PartialAssetError(ReleaseError):
    """
    One or more required artifacts could not be fetched for a release.

    The draft release is left in place for inspection.
    """

    def __init__(self, tag: str, missing: list[str]):
        self.tag = tag
        self.missing = list(missing)
        super().__init__(
            f"Release {tag}: missing artifacts: {', '.join(self.missing)}"
        )


class RunCancelledError(ShipwrightError):
    """The run was cancelled while this operation was in progress."""
    pass
