"""
StepManifest schema - the dispatchable unit for step execution.

A StepManifest captures everything a handler needs to run one step:
fully resolved params, the instance workspace and the artifact label.
"""

from dataclasses import dataclass, field
from typing import Any

from .actions import Action


@dataclass(frozen=True)
class StepManifest:
    """
    A dispatchable manifest for one step of one instance.

    Attributes:
        run_id: ULID of the run this step belongs to
        instance_id: Job instance executing the step
        step_id: Identifier of the step within the job
        backend: Handler key derived from the action category
        action: The action to execute
        resolved_params: Fully resolved parameters (no refs left)
        env: Extra environment variables
        workspace: Isolated working directory of the instance
        label: Matrix label of the instance (default artifact label)
        timeout_s: Step timeout in seconds
    """
    run_id: str
    instance_id: str
    step_id: str
    backend: str
    action: Action
    resolved_params: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    workspace: str = ""
    label: str = ""
    timeout_s: int = 300

    def __post_init__(self):
        if self.backend != self.action.backend:
            raise ValueError(
                f"Backend mismatch: action '{self.action.value}' expects backend "
                f"'{self.action.backend}', but got '{self.backend}'"
            )

    @classmethod
    def from_action(
        cls,
        run_id: str,
        instance_id: str,
        step_id: str,
        action: Action,
        resolved_params: dict[str, str],
        env: dict[str, str],
        workspace: str,
        label: str,
        timeout_s: int = 300,
    ) -> "StepManifest":
        """Create a StepManifest, deriving the backend from the action."""
        return cls(
            run_id=run_id,
            instance_id=instance_id,
            step_id=step_id,
            backend=action.backend,
            action=action,
            resolved_params=resolved_params,
            env=env,
            workspace=workspace,
            label=label,
            timeout_s=timeout_s,
        )

    def param(self, name: str, default: Any = None) -> Any:
        return self.resolved_params.get(name, default)

    def require(self, name: str) -> str:
        """Get a required param, raising ValueError if absent or empty."""
        value = self.resolved_params.get(name)
        if not value:
            raise ValueError(f"{self.action.value}: missing required param '{name}'")
        return value

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "instance_id": self.instance_id,
            "step_id": self.step_id,
            "backend": self.backend,
            "action": self.action.value,
            "resolved_params": self.resolved_params,
            "env": self.env,
            "workspace": self.workspace,
            "label": self.label,
            "timeout_s": self.timeout_s,
        }
