"""
Pipeline declaration schemas.

A PipelineDef is the static, version-controlled definition of a pipeline:
a set of JobTemplates with dependency edges. Step params may contain
@matrix.*, @ctx.* refs (resolved at expansion) and @steps.* refs
(resolved at run time within one instance).
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from shipwright.errors import PipelineDefinitionError

from .actions import Action


DEFAULT_TIMEOUT_S = 300


def _string_map(value: Any, what: str) -> dict[str, str]:
    """Coerce a declaration mapping to string->string."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise PipelineDefinitionError(f"{what} must be a mapping, got {type(value).__name__}")
    return {str(k): str(v) for k, v in value.items()}


def _render_template(template: str, what: str, **fields: str) -> str:
    """Fill a release template with a sample tag so bad placeholders fail at load time."""
    try:
        return template.format(tag="v0.0.0", **fields)
    except (KeyError, IndexError, ValueError) as e:
        raise PipelineDefinitionError(f"Invalid release {what} template {template!r}: {e!r}")


@dataclass(frozen=True)
class StepDef:
    """
    A step definition within a JobTemplate.

    Attributes:
        step_id: Unique identifier for the step within the job
        action: The action to execute
        params: Action parameters (string -> string), may contain refs
        env: Extra environment variables for the action
        best_effort: If true, a failure is logged and the job continues
        timeout_s: Step-level timeout in seconds
        if_: Expansion-time condition (@matrix.* and @ctx.* only)
    """
    step_id: str
    action: Action
    params: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    best_effort: bool = False
    timeout_s: int = DEFAULT_TIMEOUT_S
    if_: Optional[str] = None

    def __post_init__(self):
        if not self.step_id:
            raise PipelineDefinitionError("Step is missing step_id")
        if self.if_ and "@steps." in self.if_:
            raise PipelineDefinitionError(
                f"Step '{self.step_id}': if condition must be decidable at expansion. "
                f"@steps.* references are not allowed."
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "action": self.action.value,
            "params": dict(self.params),
            **({"env": dict(self.env)} if self.env else {}),
            **({"best_effort": True} if self.best_effort else {}),
            "timeout_s": self.timeout_s,
            **({"if": self.if_} if self.if_ else {}),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepDef":
        step_id = data.get("step_id") or data.get("name")
        try:
            action = Action.from_string(data["action"])
        except KeyError:
            raise PipelineDefinitionError(f"Step '{step_id}': missing 'action'")
        except ValueError as e:
            raise PipelineDefinitionError(f"Step '{step_id}': {e}")
        return cls(
            step_id=step_id,
            action=action,
            params=_string_map(data.get("params"), f"Step '{step_id}' params"),
            env=_string_map(data.get("env"), f"Step '{step_id}' env"),
            best_effort=bool(data.get("best_effort", False)),
            timeout_s=int(data.get("timeout_s", DEFAULT_TIMEOUT_S)),
            if_=data.get("if"),
        )


@dataclass(frozen=True)
class AssetSpec:
    """
    One release asset, sourced from an artifact key.

    Attributes:
        label: Matrix label of the producing instance
        artifact: Artifact name within that label
        name: Asset name template ({tag}, {label} placeholders)
        content_type: Explicit content type of the asset
    """
    label: str
    artifact: str
    name: str
    content_type: str = "application/octet-stream"

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "artifact": self.artifact,
            "name": self.name,
            "content_type": self.content_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssetSpec":
        missing = [k for k in ("label", "artifact", "name") if not data.get(k)]
        if missing:
            raise PipelineDefinitionError(f"Release asset missing fields: {missing}")
        return cls(
            label=str(data["label"]),
            artifact=str(data["artifact"]),
            name=str(data["name"]),
            content_type=str(data.get("content_type", "application/octet-stream")),
        )


@dataclass(frozen=True)
class ReleaseSpec:
    """
    Release gate configuration for a terminal job.

    Attributes:
        tag_prefix: Trigger predicate: ref must start with this prefix
            (None means use the configured default)
        title: Release title template ({tag} placeholder)
        draft: Always true; a human promotes the draft
        prerelease: Mark the release as a prerelease
        assets: Ordered assets to attach
    """
    title: str = "{tag}"
    tag_prefix: Optional[str] = None
    draft: bool = True
    prerelease: bool = False
    assets: tuple[AssetSpec, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.draft:
            raise PipelineDefinitionError(
                "Releases are always created as drafts; draft: false is not supported"
            )
        _render_template(self.title, "title")
        names = [_render_template(a.name, "asset name", label=a.label) for a in self.assets]
        if len(names) != len(set(names)):
            raise PipelineDefinitionError(f"Duplicate release asset names: {names}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            **({"tag_prefix": self.tag_prefix} if self.tag_prefix else {}),
            "draft": self.draft,
            "prerelease": self.prerelease,
            "assets": [a.to_dict() for a in self.assets],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReleaseSpec":
        return cls(
            title=str(data.get("title", "{tag}")),
            tag_prefix=data.get("tag_prefix"),
            draft=bool(data.get("draft", True)),
            prerelease=bool(data.get("prerelease", False)),
            assets=tuple(AssetSpec.from_dict(a) for a in data.get("assets", [])),
        )


@dataclass(frozen=True)
class JobTemplate:
    """
    A named, reusable job definition.

    Attributes:
        name: Unique job name within the pipeline
        steps: Ordered step definitions (empty for release jobs)
        matrix: Ordered axis values; empty means a single instance
        fail_fast: If true, one failed instance blocks dependents at once
        depends_on: Names of upstream job templates
        release: Release gate configuration (mutually exclusive with steps)
    """
    name: str
    steps: tuple[StepDef, ...] = field(default_factory=tuple)
    matrix: tuple[str, ...] = field(default_factory=tuple)
    fail_fast: bool = True
    depends_on: frozenset[str] = field(default_factory=frozenset)
    release: Optional[ReleaseSpec] = None

    def __post_init__(self):
        if not self.name:
            raise PipelineDefinitionError("Job is missing name")
        step_ids = [s.step_id for s in self.steps]
        if len(step_ids) != len(set(step_ids)):
            duplicates = {sid for sid in step_ids if step_ids.count(sid) > 1}
            raise PipelineDefinitionError(f"Job '{self.name}': duplicate step IDs: {duplicates}")
        if self.release is not None and self.steps:
            raise PipelineDefinitionError(
                f"Job '{self.name}': a release job cannot declare steps"
            )
        if self.release is not None and self.matrix:
            raise PipelineDefinitionError(
                f"Job '{self.name}': a release job cannot declare a matrix"
            )
        if self.name in self.depends_on:
            raise PipelineDefinitionError(f"Job '{self.name}' depends on itself")

    @property
    def is_release(self) -> bool:
        return self.release is not None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        if self.matrix:
            result["matrix"] = list(self.matrix)
        if not self.fail_fast:
            result["fail_fast"] = False
        if self.depends_on:
            result["depends_on"] = sorted(self.depends_on)
        if self.release is not None:
            result["release"] = self.release.to_dict()
        else:
            result["steps"] = [s.to_dict() for s in self.steps]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobTemplate":
        name = data.get("name")
        depends_on = data.get("depends_on") or []
        if isinstance(depends_on, str):
            depends_on = [depends_on]
        matrix = data.get("matrix") or []
        if not isinstance(matrix, list):
            raise PipelineDefinitionError(f"Job '{name}': matrix must be a list")
        release = data.get("release")
        return cls(
            name=name,
            steps=tuple(StepDef.from_dict(s) for s in data.get("steps", [])),
            matrix=tuple("" if v is None else str(v) for v in matrix),
            fail_fast=bool(data.get("fail_fast", True)),
            depends_on=frozenset(depends_on),
            release=ReleaseSpec.from_dict(release) if release is not None else None,
        )


@dataclass(frozen=True)
class PipelineDef:
    """
    A pipeline definition: job templates forming a dependency graph.

    Unknown dependency names are rejected here; cycles are rejected by
    the scheduler at submission time.
    """
    pipeline_id: str
    version: str
    jobs: tuple[JobTemplate, ...] = field(default_factory=tuple)

    def __post_init__(self):
        names = [j.name for j in self.jobs]
        if len(names) != len(set(names)):
            duplicates = {n for n in names if names.count(n) > 1}
            raise PipelineDefinitionError(f"Duplicate job names: {duplicates}")
        known = set(names)
        for job in self.jobs:
            unknown = job.depends_on - known
            if unknown:
                raise PipelineDefinitionError(
                    f"Job '{job.name}' depends on unknown jobs: {sorted(unknown)}"
                )
        release_jobs = [j.name for j in self.jobs if j.is_release]
        if len(release_jobs) > 1:
            raise PipelineDefinitionError(f"At most one release job is allowed, found: {release_jobs}")

    def get_job(self, name: str) -> Optional[JobTemplate]:
        """Get a job template by name."""
        for job in self.jobs:
            if job.name == name:
                return job
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_id": self.pipeline_id,
            "version": self.version,
            "jobs": [j.to_dict() for j in self.jobs],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineDef":
        if "pipeline_id" not in data:
            raise PipelineDefinitionError("Pipeline is missing pipeline_id")
        return cls(
            pipeline_id=data["pipeline_id"],
            version=str(data.get("version", "0.0.0")),
            jobs=tuple(JobTemplate.from_dict(j) for j in data.get("jobs", [])),
        )
