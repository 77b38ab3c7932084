"""
Handler Registry - the execution dispatch table for step actions.

Maps action categories (source, toolchain, shell, archive, artifact) to
Handler implementations. The StageExecutor dispatches every StepManifest
through the registry by its backend key.
"""

from pathlib import Path
from typing import TYPE_CHECKING, Optional

from shipwright.handlers.base import ActionResult, Handler, NoOpHandler
from shipwright.schemas import ActionCategory, StepManifest

if TYPE_CHECKING:
    from shipwright.artifacts import ArtifactStore


class HandlerRegistry:
    """
    Registry for handler dispatch by action category.

    Usage:
        registry = HandlerRegistry()
        registry.register("shell", ShellHandler())

        result = registry.dispatch(manifest)

        # Or use factory with defaults
        registry = HandlerRegistry.create_default(artifact_store=store)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, backend: str, handler: Handler) -> None:
        """
        Register a handler for an action category.

        Args:
            backend: Category name (e.g. shell, artifact)
            handler: Handler instance for this category
        """
        self._handlers[backend] = handler

    def get(self, backend: str) -> Handler:
        """
        Get handler for an action category.

        Raises:
            KeyError: If no handler registered for this category
        """
        if backend not in self._handlers:
            registered = list(self._handlers.keys())
            raise KeyError(
                f"No handler registered for backend: {backend}. "
                f"Registered: {registered}"
            )
        return self._handlers[backend]

    def has(self, backend: str) -> bool:
        return backend in self._handlers

    def list_backends(self) -> list[str]:
        return list(self._handlers.keys())

    def dispatch(self, manifest: StepManifest) -> ActionResult:
        """
        Dispatch a manifest to the appropriate handler.

        Raises:
            KeyError: If no handler registered for the manifest's backend
        """
        handler = self.get(manifest.backend)
        return handler.execute(manifest)

    @classmethod
    def create_default(
        cls,
        artifact_store: "ArtifactStore",
        source_dir: Optional[Path] = None,
    ) -> "HandlerRegistry":
        """
        Create a registry with the built-in handlers.

        Args:
            artifact_store: Run-scoped store used by artifact.* actions
            source_dir: Source tree copied by source.checkout (default: cwd)

        Returns:
            Configured HandlerRegistry
        """
        from shipwright.handlers.archive import ArchiveHandler
        from shipwright.handlers.artifact import ArtifactHandler
        from shipwright.handlers.shell import ShellHandler
        from shipwright.handlers.source import SourceHandler
        from shipwright.handlers.toolchain import ToolchainHandler

        shell = ShellHandler()
        registry = cls()
        registry.register(ActionCategory.SOURCE.value, SourceHandler(source_dir or Path.cwd()))
        registry.register(ActionCategory.TOOLCHAIN.value, ToolchainHandler(shell))
        registry.register(ActionCategory.SHELL.value, shell)
        registry.register(ActionCategory.ARCHIVE.value, ArchiveHandler())
        registry.register(ActionCategory.ARTIFACT.value, ArtifactHandler(artifact_store))
        return registry

    @classmethod
    def create_noop(cls, artifact_store: Optional["ArtifactStore"] = None) -> "HandlerRegistry":
        """
        Create a registry with NoOp handlers for every category.

        Artifact actions still go to the real store when one is given, so
        artifact routing can be exercised without running any commands.
        """
        registry = cls()
        for category in ActionCategory:
            registry.register(category.value, NoOpHandler())
        if artifact_store is not None:
            from shipwright.handlers.artifact import ArtifactHandler
            registry.register(ActionCategory.ARTIFACT.value, ArtifactHandler(artifact_store))
        return registry
