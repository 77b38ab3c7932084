"""
Release Gate & Publisher.

The ReleaseGate is the conditional terminal stage of a pipeline:

    Idle -> Evaluating -> Skipped
                       -> Drafting -> AssetsAttaching -> Published
                                   -> Failed          -> Failed

- Evaluating: apply the trigger predicate to the run's ref. False is a
  normal Skipped outcome, not an error.
- Drafting: create a draft ReleaseRecord for the tag. An existing release
  for the tag fails loudly (never overwritten).
- AssetsAttaching: fetch every declared artifact first; if any is missing
  the gate fails and the draft stays in place for inspection. Only a
  complete asset set is attached.
- Published: all assets attached. The record stays a draft; a human
  promotes it.

Publishers:
- In-memory (for testing)
- File-based (<release_root>/<tag>/release.json + assets/)
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from shipwright.artifacts import Artifact, ArtifactKey, ArtifactStore
from shipwright.errors import (
    ArtifactNotFoundError,
    PartialAssetError,
    ReleaseError,
    ReleaseExistsError,
    RunCancelledError,
    ShipwrightError,
)
from shipwright.schemas import (
    AssetSpec,
    GateResult,
    GateState,
    ReleaseAsset,
    ReleaseRecord,
    ReleaseSpec,
    TriggerContext,
)

logger = logging.getLogger(__name__)


DEFAULT_TAG_PREFIX = "refs/tags/v"

# Boolean function of the trigger ref
ReleasePredicate = Callable[[str], bool]


def tag_predicate(prefix: str = DEFAULT_TAG_PREFIX) -> ReleasePredicate:
    """Default predicate: the ref begins with a version-tag prefix."""

    def predicate(ref: str) -> bool:
        return ref.startswith(prefix)

    return predicate


def release_tag(context: TriggerContext) -> str:
    """Tag name for a release: "refs/tags/v1.2.3" -> "v1.2.3"."""
    return context.tag or context.ref.rsplit("/", 1)[-1]


def _validate_tag(tag: str) -> None:
    if not tag or "/" in tag or "\\" in tag or tag in (".", ".."):
        raise ReleaseError(f"Invalid release tag: {tag!r}")


# =============================================================================
# Publishers
# =============================================================================


class ReleasePublisher(ABC):
    """
    Abstract base class for release hosting.

    create_release() must be an atomic create-if-absent on the tag.
    """

    @abstractmethod
    def create_release(self, tag: str, title: str, prerelease: bool = False) -> ReleaseRecord:
        """
        Create a draft release.

        Raises:
            ReleaseExistsError: If a release for the tag already exists
        """
        pass

    @abstractmethod
    def upload_asset(self, tag: str, asset: ReleaseAsset, blob: bytes) -> ReleaseRecord:
        """
        Attach an asset to an existing release.

        Raises:
            ReleaseError: If the release does not exist or the asset name is taken
        """
        pass

    @abstractmethod
    def get_release(self, tag: str) -> Optional[ReleaseRecord]:
        pass

    @abstractmethod
    def list_releases(self) -> list[ReleaseRecord]:
        pass


class InMemoryReleasePublisher(ReleasePublisher):
    """In-memory publisher for testing."""

    def __init__(self):
        self._releases: dict[str, ReleaseRecord] = {}
        self._blobs: dict[tuple[str, str], bytes] = {}
        self._lock = threading.Lock()

    def create_release(self, tag: str, title: str, prerelease: bool = False) -> ReleaseRecord:
        _validate_tag(tag)
        record = ReleaseRecord(tag=tag, title=title, draft=True, prerelease=prerelease)
        with self._lock:
            existing = self._releases.setdefault(tag, record)
        if existing is not record:
            raise ReleaseExistsError(tag)
        return record

    def upload_asset(self, tag: str, asset: ReleaseAsset, blob: bytes) -> ReleaseRecord:
        with self._lock:
            record = self._releases.get(tag)
            if record is None:
                raise ReleaseError(f"No release for tag: {tag}")
            if record.get_asset(asset.name) is not None:
                raise ReleaseError(f"Release {tag}: asset already attached: {asset.name}")
            record.assets.append(asset)
            self._blobs[(tag, asset.name)] = bytes(blob)
            return record

    def get_release(self, tag: str) -> Optional[ReleaseRecord]:
        with self._lock:
            return self._releases.get(tag)

    def get_asset_blob(self, tag: str, name: str) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get((tag, name))

    def list_releases(self) -> list[ReleaseRecord]:
        with self._lock:
            return list(self._releases.values())


class FileReleasePublisher(ReleasePublisher):
    """
    File-based publisher.

    Layout:
        release_root/
            {tag}/
                release.json
                assets/
                    {asset_name}

    The tag directory is created with exist_ok=False, so two drafts for
    the same tag cannot both be created.
    """

    RECORD_FILENAME = "release.json"

    def __init__(self, release_root: Path | str):
        self._root = Path(release_root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _release_dir(self, tag: str) -> Path:
        _validate_tag(tag)
        return self._root / tag

    def _write(self, record: ReleaseRecord) -> None:
        path = self._release_dir(record.tag) / self.RECORD_FILENAME
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w") as f:
            json.dump(record.to_dict(), f, indent=2)
        tmp.replace(path)

    def create_release(self, tag: str, title: str, prerelease: bool = False) -> ReleaseRecord:
        release_dir = self._release_dir(tag)
        try:
            release_dir.mkdir(exist_ok=False)
        except FileExistsError as e:
            raise ReleaseExistsError(tag) from e

        (release_dir / "assets").mkdir()
        record = ReleaseRecord(tag=tag, title=title, draft=True, prerelease=prerelease)
        self._write(record)
        return record

    def upload_asset(self, tag: str, asset: ReleaseAsset, blob: bytes) -> ReleaseRecord:
        with self._lock:
            record = self.get_release(tag)
            if record is None:
                raise ReleaseError(f"No release for tag: {tag}")
            if record.get_asset(asset.name) is not None:
                raise ReleaseError(f"Release {tag}: asset already attached: {asset.name}")
            asset_path = self._release_dir(tag) / "assets" / asset.name
            asset_path.write_bytes(blob)
            record.assets.append(asset)
            self._write(record)
            return record

    def get_release(self, tag: str) -> Optional[ReleaseRecord]:
        path = self._release_dir(tag) / self.RECORD_FILENAME
        if not path.exists():
            return None
        with open(path) as f:
            return ReleaseRecord.from_dict(json.load(f))

    def asset_path(self, tag: str, name: str) -> Path:
        return self._release_dir(tag) / "assets" / name

    def list_releases(self) -> list[ReleaseRecord]:
        records = []
        for path in sorted(self._root.glob(f"*/{self.RECORD_FILENAME}")):
            with open(path) as f:
                records.append(ReleaseRecord.from_dict(json.load(f)))
        return records


# =============================================================================
# Gate
# =============================================================================


class ReleaseGate:
    """
    Drives one release through the gate state machine.

    Usage:
        gate = ReleaseGate(publisher, artifact_store)
        result = gate.run(spec, context)
        if result.state == GateState.PUBLISHED:
            print(result.record.assets)
    """

    def __init__(
        self,
        publisher: ReleasePublisher,
        artifact_store: ArtifactStore,
        default_tag_prefix: str = DEFAULT_TAG_PREFIX,
        cancel_event: Optional[threading.Event] = None,
    ):
        self._publisher = publisher
        self._store = artifact_store
        self._default_tag_prefix = default_tag_prefix
        self._cancel_event = cancel_event or threading.Event()

    def _transition(self, result: GateResult, state: GateState) -> None:
        result.transition(state)
        logger.info(f"Release gate -> {state.value}", extra={"event": f"gate.{state.value}"})

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise RunCancelledError("Run cancelled; release gate aborted")

    def run(
        self,
        spec: ReleaseSpec,
        context: TriggerContext,
        predicate: Optional[ReleasePredicate] = None,
    ) -> GateResult:
        """
        Evaluate the gate and, if the predicate holds, publish a draft release.

        Args:
            spec: Release configuration of the gate job
            context: Trigger context of the run
            predicate: Overrides the tag-prefix predicate

        Returns:
            GateResult in a terminal state (skipped, published or failed)
        """
        result = GateResult()
        tag = None
        try:
            self._transition(result, GateState.EVALUATING)
            self._check_cancelled()
            if predicate is None:
                predicate = tag_predicate(spec.tag_prefix or self._default_tag_prefix)
            if not predicate(context.ref):
                logger.info(f"Release skipped: ref {context.ref} does not match the release predicate")
                self._transition(result, GateState.SKIPPED)
                return result

            tag = release_tag(context)
            self._transition(result, GateState.DRAFTING)
            self._check_cancelled()
            result.record = self._publisher.create_release(
                tag=tag,
                title=spec.title.format(tag=tag),
                prerelease=spec.prerelease,
            )

            self._transition(result, GateState.ASSETS_ATTACHING)
            fetched = self._fetch_assets(tag, spec.assets)
            for asset_spec, artifact in fetched:
                self._check_cancelled()
                asset = ReleaseAsset(
                    name=asset_spec.name.format(tag=tag, label=asset_spec.label),
                    content_type=asset_spec.content_type,
                    source_artifact_key=str(artifact.key),
                    size=artifact.size,
                )
                result.record = self._publisher.upload_asset(tag, asset, artifact.blob)
                logger.info(f"Release {tag}: attached {asset.name} ({asset.size} bytes)")

            self._check_cancelled()
            self._transition(result, GateState.PUBLISHED)
        except (ShipwrightError, OSError, KeyError, IndexError, ValueError) as e:
            logger.error(f"Release gate failed: {e}")
            result.error = {"type": type(e).__name__, "message": str(e)}
            if tag is not None and result.record is not None:
                result.record = self._publisher.get_release(tag) or result.record
            self._transition(result, GateState.FAILED)

        return result

    def _fetch_assets(
        self,
        tag: str,
        assets: tuple[AssetSpec, ...],
    ) -> list[tuple[AssetSpec, Artifact]]:
        """
        Fetch every declared artifact before anything is attached.

        Raises:
            PartialAssetError: If any artifact is missing
        """
        fetched = []
        missing = []
        for asset_spec in assets:
            key = ArtifactKey(label=asset_spec.label, name=asset_spec.artifact)
            try:
                fetched.append((asset_spec, self._store.get(key)))
            except ArtifactNotFoundError:
                missing.append(str(key))
        if missing:
            raise PartialAssetError(tag, missing)
        return fetched
