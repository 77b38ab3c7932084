"""
Shell handler for shell.run.

Runs a command in the instance workspace with subprocess and reports its
exit status. The command itself (compile, test, format check) is opaque
to the orchestrator.
"""

import logging
import os
import subprocess

from shipwright.handlers.base import ActionResult, Handler, workspace_path
from shipwright.schemas import Action, StepManifest

logger = logging.getLogger(__name__)

# Exit status reported when a command exceeds its step timeout
TIMEOUT_EXIT_CODE = 124

# Number of trailing output characters kept as a step output
OUTPUT_TAIL_CHARS = 4000


class ShellHandler(Handler):
    """Handler for shell.* actions."""

    def execute(self, manifest: StepManifest) -> ActionResult:
        if manifest.action != Action.SHELL_RUN:
            raise ValueError(f"Unsupported shell action: {manifest.action.value}")
        return self.run_command(manifest, manifest.require("run"))

    def run_command(self, manifest: StepManifest, command: str) -> ActionResult:
        """
        Run a shell command in the workspace.

        Params:
            cwd: str - Working directory relative to the workspace (optional)
        """
        cwd = workspace_path(manifest, manifest.param("cwd", "."))
        env = {**os.environ, **manifest.env}

        logger.debug(f"[{manifest.instance_id}] $ {command}")
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=manifest.timeout_s,
            )
        except subprocess.TimeoutExpired:
            logger.error(
                f"[{manifest.instance_id}] step {manifest.step_id} timed out after {manifest.timeout_s}s"
            )
            return ActionResult(
                exit_code=TIMEOUT_EXIT_CODE,
                outputs={"timed_out": True},
            )

        output = (proc.stdout or "") + (proc.stderr or "")
        if proc.returncode != 0:
            logger.debug(f"[{manifest.instance_id}] {manifest.step_id} output:\n{output[-OUTPUT_TAIL_CHARS:]}")

        return ActionResult(
            exit_code=proc.returncode,
            outputs={
                "exit_code": proc.returncode,
                "stdout": (proc.stdout or "")[-OUTPUT_TAIL_CHARS:],
            },
        )
