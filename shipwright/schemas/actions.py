"""
Action enum defining the step taxonomy for shipwright.

Actions are named {category}.{verb}. The category is the dispatch key
into the HandlerRegistry:
- source.*    -> source: prepare the instance workspace
- toolchain.* -> toolchain: install build tooling (external collaborator)
- shell.*     -> shell: run a command in the workspace
- archive.*   -> archive: package files into a per-platform archive
- artifact.*  -> artifact: publish to / fetch from the Artifact Store
"""

from enum import Enum


class ActionCategory(str, Enum):
    """High-level action categories (one handler per category)."""
    SOURCE = "source"
    TOOLCHAIN = "toolchain"
    SHELL = "shell"
    ARCHIVE = "archive"
    ARTIFACT = "artifact"


class Action(str, Enum):
    """
    Enumeration of all valid step actions.

    Naming convention: {category}.{verb}
    """
    SOURCE_CHECKOUT = "source.checkout"
    TOOLCHAIN_INSTALL = "toolchain.install"
    SHELL_RUN = "shell.run"
    ARCHIVE_CREATE = "archive.create"
    ARTIFACT_UPLOAD = "artifact.upload"
    ARTIFACT_DOWNLOAD = "artifact.download"

    @property
    def category(self) -> ActionCategory:
        """Get the category of this action."""
        prefix = self.value.split(".")[0]
        return ActionCategory(prefix)

    @property
    def backend(self) -> str:
        """Handler registry key for this action."""
        return self.category.value

    @property
    def publishes_artifact(self) -> bool:
        """True for the only action that writes into the Artifact Store."""
        return self is Action.ARTIFACT_UPLOAD

    @classmethod
    def from_string(cls, value: str) -> "Action":
        """Parse an Action from its string value."""
        for action in cls:
            if action.value == value:
                return action
        raise ValueError(f"Unknown action: {value}")
