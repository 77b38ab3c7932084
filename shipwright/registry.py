"""
PipelineRegistry - Load and validate PipelineDefs from storage.

The registry provides:
- Loading PipelineDefs from YAML or JSON files in a definitions directory
- Loading a definition from an explicit file path
- Caching loaded definitions
- Content-addressable lookup via SHA256 hash
"""

import hashlib
import json
from pathlib import Path
from typing import Optional

import yaml

from shipwright.errors import PipelineDefinitionError, ShipwrightError
from shipwright.schemas import PipelineDef


DEFINITION_SUFFIXES = (".yaml", ".yml", ".json")


class PipelineNotFoundError(ShipwrightError):
    """Raised when a pipeline definition is not found."""
    pass


class PipelineValidationError(PipelineDefinitionError):
    """Raised when a pipeline definition file fails validation."""
    pass


class PipelineRegistry:
    """
    Registry for loading and caching PipelineDefs.

    Example directory structure:
        definitions/
            ci.yaml
            nightly/
                nightly.json
    """

    def __init__(self, definitions_dir: Path | str):
        """
        Initialize the registry.

        Args:
            definitions_dir: Directory containing pipeline definition files
        """
        self._definitions_dir = Path(definitions_dir)
        self._cache: dict[str, PipelineDef] = {}
        self._hash_index: dict[str, str] = {}  # sha256 -> pipeline_id

    @property
    def definitions_dir(self) -> Path:
        return self._definitions_dir

    def load(self, pipeline_id: str) -> PipelineDef:
        """
        Load a PipelineDef by ID.

        Searches for {pipeline_id}.yaml, .yml or .json in the definitions
        directory tree. YAML files are preferred over JSON when both exist.

        Raises:
            PipelineNotFoundError: If no definition file exists
            PipelineValidationError: If the definition is invalid or its
                pipeline_id does not match the file name
        """
        if pipeline_id in self._cache:
            return self._cache[pipeline_id]

        def_path = self._find_definition(pipeline_id)
        if def_path is None:
            raise PipelineNotFoundError(f"Pipeline definition not found: {pipeline_id}")

        pipeline = self.load_file(def_path)
        if pipeline.pipeline_id != pipeline_id:
            raise PipelineValidationError(
                f"Pipeline ID mismatch: file is '{pipeline_id}' but pipeline_id is '{pipeline.pipeline_id}'"
            )

        self._cache[pipeline_id] = pipeline
        self._hash_index[self.compute_hash(pipeline)] = pipeline_id
        return pipeline

    def load_file(self, path: Path | str) -> PipelineDef:
        """
        Load a PipelineDef from an explicit file path.

        Raises:
            PipelineNotFoundError: If the file does not exist
            PipelineValidationError: If parsing or validation fails
        """
        path = Path(path)
        if not path.exists():
            raise PipelineNotFoundError(f"Pipeline definition not found: {path}")

        try:
            data = self._read(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise PipelineValidationError(f"Failed to load {path}: {e}")

        if not isinstance(data, dict):
            raise PipelineValidationError(f"Invalid pipeline in {path}: expected a mapping")

        try:
            return PipelineDef.from_dict(data)
        except (PipelineDefinitionError, TypeError, ValueError) as e:
            raise PipelineValidationError(f"Invalid pipeline in {path}: {e}")

    def resolve(self, name_or_path: str) -> PipelineDef:
        """Load by file path if one exists, else by pipeline ID."""
        candidate = Path(name_or_path)
        if candidate.suffix.lower() in DEFINITION_SUFFIXES and candidate.exists():
            return self.load_file(candidate)
        return self.load(name_or_path)

    def _read(self, path: Path) -> dict:
        suffix = path.suffix.lower()
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                return yaml.safe_load(f)
            elif suffix == ".json":
                return json.load(f)
            else:
                raise ValueError(f"Unsupported file format: {suffix}")

    def load_by_hash(self, sha256: str) -> Optional[PipelineDef]:
        pipeline_id = self._hash_index.get(sha256)
        if pipeline_id is None:
            return None
        return self._cache.get(pipeline_id)

    def list_pipelines(self) -> list[str]:
        """
        List all available pipeline IDs.

        Returns:
            Sorted list of pipeline IDs found in the definitions directory
        """
        if not self._definitions_dir.exists():
            return []

        pipeline_ids = set()
        for suffix in DEFINITION_SUFFIXES:
            for f in self._definitions_dir.glob(f"**/*{suffix}"):
                pipeline_ids.add(f.stem)
        return sorted(pipeline_ids)

    def _find_definition(self, pipeline_id: str) -> Optional[Path]:
        for suffix in DEFINITION_SUFFIXES:
            filename = f"{pipeline_id}{suffix}"

            root_path = self._definitions_dir / filename
            if root_path.exists():
                return root_path

            matches = sorted(self._definitions_dir.glob(f"**/{filename}"))
            if matches:
                return matches[0]

        return None

    @staticmethod
    def compute_hash(pipeline: PipelineDef) -> str:
        """
        Compute SHA256 hash of a PipelineDef for content addressing.

        Uses canonical JSON serialization (sorted keys, compact encoding).
        """
        canonical = json.dumps(pipeline.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hash_index.clear()
