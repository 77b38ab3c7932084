"""
Archive handler for archive.create.

Packages build outputs into a per-platform archive inside the workspace.

Params:
    format: "tar.gz" or "zip" (default: inferred from output name, else tar.gz)
    output: Archive path relative to the workspace
    source: Whitespace-separated paths relative to the workspace
"""

import logging
import tarfile
import zipfile
from pathlib import Path

from shipwright.handlers.base import ActionResult, Handler, workspace_path
from shipwright.schemas import Action, StepManifest

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "tar.gz": "application/gzip",
    "zip": "application/zip",
}


def infer_format(output: str) -> str:
    if output.endswith(".zip"):
        return "zip"
    return "tar.gz"


class ArchiveHandler(Handler):
    """Handler for archive.* actions."""

    def execute(self, manifest: StepManifest) -> ActionResult:
        if manifest.action != Action.ARCHIVE_CREATE:
            raise ValueError(f"Unsupported archive action: {manifest.action.value}")

        output_name = manifest.require("output")
        fmt = manifest.param("format") or infer_format(output_name)
        if fmt not in CONTENT_TYPES:
            raise ValueError(f"Unsupported archive format: {fmt}")

        workspace = Path(manifest.workspace).resolve()
        sources = [workspace_path(manifest, s) for s in manifest.require("source").split()]
        missing = [str(s.relative_to(workspace)) for s in sources if not s.exists()]
        if missing:
            raise FileNotFoundError(f"Archive sources not found: {missing}")

        output = workspace_path(manifest, output_name)
        output.parent.mkdir(parents=True, exist_ok=True)

        if fmt == "zip":
            self._write_zip(output, sources, workspace)
        else:
            with tarfile.open(output, "w:gz") as tar:
                for src in sources:
                    tar.add(src, arcname=str(src.relative_to(workspace)))

        logger.debug(f"[{manifest.instance_id}] created {fmt} archive {output}")
        return ActionResult(outputs={
            "path": str(output),
            "content_type": CONTENT_TYPES[fmt],
        })

    def _write_zip(self, output: Path, sources: list[Path], workspace: Path) -> None:
        with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for src in sources:
                files = [src] if src.is_file() else sorted(p for p in src.rglob("*") if p.is_file())
                for path in files:
                    zf.write(path, arcname=str(path.relative_to(workspace)))
