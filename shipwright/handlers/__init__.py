"""
Handlers module - the execution dispatch table for step actions.

Each action category maps to one handler:
- source: SourceHandler (workspace checkout)
- toolchain: ToolchainHandler (external tooling, optionally via shell)
- shell: ShellHandler (commands in the workspace)
- archive: ArchiveHandler (tar.gz / zip packaging)
- artifact: ArtifactHandler (publish to / fetch from the Artifact Store)

Usage:
    from shipwright.handlers import HandlerRegistry

    registry = HandlerRegistry.create_default(artifact_store=store)
    result = registry.dispatch(manifest)
"""

from shipwright.handlers.base import ActionResult, Handler, NoOpHandler
from shipwright.handlers.registry import HandlerRegistry
from shipwright.handlers.archive import ArchiveHandler
from shipwright.handlers.artifact import ArtifactHandler
from shipwright.handlers.shell import ShellHandler
from shipwright.handlers.source import SourceHandler
from shipwright.handlers.toolchain import ToolchainHandler

__all__ = [
    "ActionResult",
    "Handler",
    "NoOpHandler",
    "HandlerRegistry",
    "ArchiveHandler",
    "ArtifactHandler",
    "ShellHandler",
    "SourceHandler",
    "ToolchainHandler",
]
