"""
Artifact handler for artifact.upload and artifact.download.

This is the only route between a step's local outputs and the run's
Artifact Store. Upload publishes a workspace file under
(label, name); download fetches a published artifact into the workspace.
"""

import logging
from typing import Optional

from shipwright.artifacts import ArtifactKey, ArtifactStore
from shipwright.handlers.archive import CONTENT_TYPES
from shipwright.handlers.base import ActionResult, Handler, workspace_path
from shipwright.schemas import Action, StepManifest

logger = logging.getLogger(__name__)


def guess_content_type(filename: str) -> Optional[str]:
    if filename.endswith((".tar.gz", ".tgz")):
        return CONTENT_TYPES["tar.gz"]
    if filename.endswith(".zip"):
        return CONTENT_TYPES["zip"]
    return None


class ArtifactHandler(Handler):
    """Handler for artifact.* actions."""

    def __init__(self, store: ArtifactStore):
        self._store = store

    def execute(self, manifest: StepManifest) -> ActionResult:
        if manifest.action == Action.ARTIFACT_UPLOAD:
            return self._upload(manifest)
        elif manifest.action == Action.ARTIFACT_DOWNLOAD:
            return self._download(manifest)
        raise ValueError(f"Unsupported artifact action: {manifest.action.value}")

    def _upload(self, manifest: StepManifest) -> ActionResult:
        """
        Params:
            name: str - Artifact name
            path: str - File to publish (relative to the workspace)
            label: str - Artifact label (default: instance label)
            content_type: str - Content type (default: inferred from path)
        """
        key = ArtifactKey(label=manifest.param("label") or manifest.label, name=manifest.require("name"))
        path = workspace_path(manifest, manifest.require("path"))
        if not path.is_file():
            raise FileNotFoundError(f"Artifact source not found: {manifest.require('path')}")

        content_type = (
            manifest.param("content_type")
            or guess_content_type(path.name)
            or "application/octet-stream"
        )
        artifact = self._store.put(key, path.read_bytes(), content_type)
        logger.info(f"[{manifest.instance_id}] uploaded artifact {key} ({artifact.size} bytes)")

        return ActionResult(outputs={"key": str(key), "size": artifact.size})

    def _download(self, manifest: StepManifest) -> ActionResult:
        """
        Params:
            name: str - Artifact name
            label: str - Artifact label (default: instance label)
            path: str - Destination (relative to the workspace, default: name)
        """
        name = manifest.require("name")
        key = ArtifactKey(label=manifest.param("label") or manifest.label, name=name)
        artifact = self._store.get(key)

        dest = workspace_path(manifest, manifest.param("path") or name)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(artifact.blob)

        return ActionResult(outputs={"path": str(dest), "content_type": artifact.content_type})
