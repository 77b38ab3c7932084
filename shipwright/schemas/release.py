"""
Release schemas - the release record and the gate's outcome.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from shipwright.utils import utcnow


class GateState(str, Enum):
    """
    Release gate states.

    Idle -> Evaluating -> Skipped
                       -> Drafting -> AssetsAttaching -> Published
                                   -> Failed          -> Failed
    """
    IDLE = "idle"
    EVALUATING = "evaluating"
    SKIPPED = "skipped"
    DRAFTING = "drafting"
    ASSETS_ATTACHING = "assets_attaching"
    PUBLISHED = "published"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GateState.SKIPPED, GateState.PUBLISHED, GateState.FAILED)


@dataclass(frozen=True)
class ReleaseAsset:
    """
    One asset attached to a release.

    Attributes:
        name: Asset file name shown on the release
        content_type: Explicit content type
        source_artifact_key: "label/artifact" key the blob came from
        size: Blob size in bytes
    """
    name: str
    content_type: str
    source_artifact_key: str
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "content_type": self.content_type,
            "source_artifact_key": self.source_artifact_key,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReleaseAsset":
        return cls(
            name=data["name"],
            content_type=data["content_type"],
            source_artifact_key=data["source_artifact_key"],
            size=data.get("size", 0),
        )


@dataclass
class ReleaseRecord:
    """
    A (draft) release aggregating all platform artifacts.

    Attributes:
        tag: Release tag (e.g. "v1.2.3")
        title: Release title
        draft: Always true when created by the gate
        prerelease: Prerelease flag
        assets: Ordered attached assets
        created_at: When the draft was created
    """
    tag: str
    title: str
    draft: bool = True
    prerelease: bool = False
    assets: list[ReleaseAsset] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def get_asset(self, name: str) -> Optional[ReleaseAsset]:
        for asset in self.assets:
            if asset.name == name:
                return asset
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tag": self.tag,
            "title": self.title,
            "draft": self.draft,
            "prerelease": self.prerelease,
            "assets": [a.to_dict() for a in self.assets],
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReleaseRecord":
        return cls(
            tag=data["tag"],
            title=data["title"],
            draft=data.get("draft", True),
            prerelease=data.get("prerelease", False),
            assets=[ReleaseAsset.from_dict(a) for a in data.get("assets", [])],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class GateResult:
    """
    Outcome of one release gate evaluation.

    Attributes:
        state: Terminal gate state
        history: States visited, in order
        record: The release record (present once drafting succeeded)
        error: Error details when state is failed
    """
    state: GateState = GateState.IDLE
    history: list[GateState] = field(default_factory=lambda: [GateState.IDLE])
    record: Optional[ReleaseRecord] = None
    error: Optional[dict[str, Any]] = None

    def transition(self, state: GateState) -> None:
        self.state = state
        self.history.append(state)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "state": self.state.value,
            "history": [s.value for s in self.history],
        }
        if self.record is not None:
            result["record"] = self.record.to_dict()
        if self.error is not None:
            result["error"] = self.error
        return result
