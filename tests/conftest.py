"""Shared fixtures for shipwright tests.

Handlers are replaced by scripted fakes so tests never depend on a real
toolchain. The artifact handler stays real so artifact routing between
instances goes through an actual ArtifactStore.
"""

import threading
import time

import pytest

from shipwright.artifacts import InMemoryArtifactStore
from shipwright.config import ShipwrightConfig
from shipwright.handlers import ActionResult, Handler, HandlerRegistry
from shipwright.handlers.base import workspace_path
from shipwright.release import InMemoryReleasePublisher
from shipwright.run_store import InMemoryRunStore, generate_ulid
from shipwright.schemas import (
    Action,
    AssetSpec,
    JobTemplate,
    PipelineDef,
    ReleaseSpec,
    StepDef,
    TriggerContext,
)

PLATFORMS = ("linux", "macos", "windows")


class ScriptedHandler(Handler):
    """
    Stand-in for shell/toolchain handlers.

    Args:
        failures: (label, step_id) -> non-zero exit code
        raises: (label, step_id) -> exception to raise
        delays: label -> seconds to sleep before returning
        on_call: callback(manifest) invoked on every call
    """

    def __init__(self, failures=None, raises=None, delays=None, on_call=None):
        self.failures = dict(failures or {})
        self.raises = dict(raises or {})
        self.delays = dict(delays or {})
        self.on_call = on_call
        self.calls = []
        self._lock = threading.Lock()

    def execute(self, manifest):
        with self._lock:
            self.calls.append((manifest.instance_id, manifest.step_id))
        if self.on_call is not None:
            self.on_call(manifest)
        if manifest.label in self.delays:
            time.sleep(self.delays[manifest.label])

        key = (manifest.label, manifest.step_id)
        if key in self.raises:
            raise self.raises[key]
        exit_code = self.failures.get(key, 0)
        return ActionResult(exit_code=exit_code, outputs={"exit_code": exit_code, **manifest.resolved_params})

    def calls_for(self, instance_id):
        with self._lock:
            return [step_id for iid, step_id in self.calls if iid == instance_id]


class WritingArchiveHandler(Handler):
    """Writes a small per-label file instead of packaging real build output."""

    def execute(self, manifest):
        output = workspace_path(manifest, manifest.require("output"))
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(f"{manifest.label}:{output.name}".encode())
        return ActionResult(outputs={"path": str(output), "content_type": "application/gzip"})


def make_registry(store, shell=None):
    """NoOp handlers everywhere, scripted shell, fake archive, real artifact handler."""
    registry = HandlerRegistry.create_noop(artifact_store=store)
    registry.register("shell", shell or ScriptedHandler())
    registry.register("archive", WritingArchiveHandler())
    return registry


def build_template(
    name="build",
    matrix=PLATFORMS,
    fail_fast=True,
    depends_on=(),
    upload_if=None,
):
    return JobTemplate(
        name=name,
        matrix=tuple(matrix),
        fail_fast=fail_fast,
        depends_on=frozenset(depends_on),
        steps=(
            StepDef(step_id="checkout", action=Action.SOURCE_CHECKOUT),
            StepDef(step_id="test", action=Action.SHELL_RUN, params={"run": "make test"}),
            StepDef(
                step_id="package",
                action=Action.ARCHIVE_CREATE,
                params={"format": "tar.gz", "output": "app.tar.gz", "source": "."},
            ),
            StepDef(
                step_id="upload",
                action=Action.ARTIFACT_UPLOAD,
                params={"name": "asset", "path": "@steps.package.path"},
                if_=upload_if,
            ),
        ),
    )


def release_template(labels=PLATFORMS, depends_on=("build",), tag_prefix=None):
    return JobTemplate(
        name="publish",
        depends_on=frozenset(depends_on),
        release=ReleaseSpec(
            title="app-{tag}",
            tag_prefix=tag_prefix,
            assets=tuple(
                AssetSpec(
                    label=label,
                    artifact="asset",
                    name="app-{tag}-{label}.tar.gz",
                    content_type="application/gzip",
                )
                for label in labels
            ),
        ),
    )


def release_pipeline(fail_fast=True, upload_if=None):
    """Three platform builds feeding one release job."""
    return PipelineDef(
        pipeline_id="app",
        version="1.0",
        jobs=(
            build_template(fail_fast=fail_fast, upload_if=upload_if),
            release_template(),
        ),
    )


@pytest.fixture
def config(tmp_path):
    return ShipwrightConfig(
        max_workers=3,
        work_root=str(tmp_path / "work"),
        artifact_root=str(tmp_path / "artifacts"),
        release_root=str(tmp_path / "releases"),
        run_root=str(tmp_path / "runs"),
        source_dir=str(tmp_path / "src"),
    )


@pytest.fixture
def artifact_store():
    return InMemoryArtifactStore(generate_ulid())


@pytest.fixture
def publisher():
    return InMemoryReleasePublisher()


@pytest.fixture
def run_store():
    return InMemoryRunStore()


@pytest.fixture
def tag_trigger():
    return TriggerContext.from_ref("refs/tags/v1.2.3")


@pytest.fixture
def branch_trigger():
    return TriggerContext.from_ref("refs/heads/master")
