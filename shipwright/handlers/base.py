"""
Base handler protocol and common implementations.

Handlers execute StepManifests dispatched by the StageExecutor. Each
handler covers one action category (source, toolchain, shell, archive,
artifact) and reports an exit status plus declared outputs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from shipwright.schemas import StepManifest


@dataclass(frozen=True)
class ActionResult:
    """
    Result of one action.

    Attributes:
        exit_code: 0 on success, non-zero on failure
        outputs: Declared output values, visible to later steps as
            @steps.<step_id>.<key>
    """
    exit_code: int = 0
    outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Handler(ABC):
    """
    Abstract base class for action handlers.

    Handlers receive StepManifests and execute the corresponding action.
    Raising an exception is equivalent to a failed step; the executor
    records the exception type and message.
    """

    @abstractmethod
    def execute(self, manifest: StepManifest) -> ActionResult:
        """
        Execute a step manifest.

        Args:
            manifest: The StepManifest containing action details

        Returns:
            The action's exit status and outputs
        """
        pass


class NoOpHandler(Handler):
    """
    No-op handler for testing and dry-run mode.

    Succeeds without executing anything.
    """

    def execute(self, manifest: StepManifest) -> ActionResult:
        return ActionResult(outputs={
            "status": "noop",
            "action": manifest.action.value,
        })


def workspace_path(manifest: StepManifest, relative: str) -> Path:
    """
    Resolve a path param inside the instance workspace.

    Raises:
        ValueError: If the path escapes the workspace
    """
    workspace = Path(manifest.workspace).resolve()
    path = (workspace / relative).resolve()
    if path != workspace and workspace not in path.parents:
        raise ValueError(f"Path escapes the workspace: {relative}")
    return path
