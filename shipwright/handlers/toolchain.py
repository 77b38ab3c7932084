"""
Toolchain handler for toolchain.install.

Toolchain provisioning is an external collaborator: when the step gives
a `run` command it is delegated to the shell handler, otherwise the
request is recorded and assumed to be satisfied by the environment.
"""

import logging

from shipwright.handlers.base import ActionResult, Handler
from shipwright.handlers.shell import ShellHandler
from shipwright.schemas import Action, StepManifest

logger = logging.getLogger(__name__)


class ToolchainHandler(Handler):
    """Handler for toolchain.* actions."""

    def __init__(self, shell: ShellHandler):
        self._shell = shell

    def execute(self, manifest: StepManifest) -> ActionResult:
        if manifest.action != Action.TOOLCHAIN_INSTALL:
            raise ValueError(f"Unsupported toolchain action: {manifest.action.value}")

        toolchain = manifest.param("toolchain", "default")
        components = manifest.param("components", "")
        command = manifest.param("run")

        if command:
            result = self._shell.run_command(manifest, command)
            return ActionResult(
                exit_code=result.exit_code,
                outputs={**result.outputs, "toolchain": toolchain},
            )

        logger.info(
            f"[{manifest.instance_id}] toolchain '{toolchain}' requested"
            + (f" with components: {components}" if components else "")
            + " (provided by environment)"
        )
        return ActionResult(outputs={"toolchain": toolchain, "components": components})
