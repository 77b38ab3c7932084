"""
Source handler for source.checkout.

Copies the source tree into the instance workspace so every instance
builds in its own isolated environment.
"""

import logging
import shutil
from pathlib import Path

from shipwright.handlers.base import ActionResult, Handler, workspace_path
from shipwright.schemas import Action, StepManifest

logger = logging.getLogger(__name__)

IGNORED = shutil.ignore_patterns(".git", "__pycache__", "target", ".venv")


class SourceHandler(Handler):
    """Handler for source.* actions."""

    def __init__(self, source_dir: Path):
        self._source_dir = Path(source_dir)

    def execute(self, manifest: StepManifest) -> ActionResult:
        if manifest.action != Action.SOURCE_CHECKOUT:
            raise ValueError(f"Unsupported source action: {manifest.action.value}")

        source = Path(manifest.param("path") or self._source_dir).expanduser()
        if not source.is_dir():
            raise FileNotFoundError(f"Source directory not found: {source}")

        dest = workspace_path(manifest, manifest.param("dest", "."))
        shutil.copytree(source, dest, ignore=IGNORED, dirs_exist_ok=True)
        logger.debug(f"[{manifest.instance_id}] checked out {source} into {dest}")

        return ActionResult(outputs={"workspace": str(dest), "source": str(source)})
