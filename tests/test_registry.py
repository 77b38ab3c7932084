"""Tests for PipelineRegistry."""

import json

import pytest
import yaml

from shipwright.cli import DEFINITIONS_DIR
from shipwright.registry import (
    PipelineNotFoundError,
    PipelineRegistry,
    PipelineValidationError,
)


def write_pipeline(path, pipeline_id="demo", **extra):
    data = {
        "pipeline_id": pipeline_id,
        "version": "1.0",
        "jobs": [
            {"name": "build", "matrix": ["linux", "macos"], "steps": [
                {"step_id": "test", "action": "shell.run", "params": {"run": "true"}},
            ]},
        ],
        **extra,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".json":
        path.write_text(json.dumps(data))
    else:
        path.write_text(yaml.safe_dump(data))
    return path


class TestPipelineRegistry:
    """Loading and caching definitions."""

    def test_load_yaml(self, tmp_path):
        write_pipeline(tmp_path / "demo.yaml")
        pipeline = PipelineRegistry(tmp_path).load("demo")
        assert pipeline.pipeline_id == "demo"
        assert pipeline.get_job("build").matrix == ("linux", "macos")

    def test_load_json_in_subdirectory(self, tmp_path):
        write_pipeline(tmp_path / "nested" / "demo.json")
        assert PipelineRegistry(tmp_path).load("demo").version == "1.0"

    def test_not_found(self, tmp_path):
        with pytest.raises(PipelineNotFoundError):
            PipelineRegistry(tmp_path).load("missing")

    def test_id_mismatch(self, tmp_path):
        write_pipeline(tmp_path / "demo.yaml", pipeline_id="other")
        with pytest.raises(PipelineValidationError, match="Pipeline ID mismatch"):
            PipelineRegistry(tmp_path).load("demo")

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("jobs: [unclosed")
        with pytest.raises(PipelineValidationError, match="Failed to load"):
            PipelineRegistry(tmp_path).load("broken")

    def test_invalid_definition(self, tmp_path):
        write_pipeline(tmp_path / "demo.yaml", jobs=[{"name": "a", "depends_on": ["ghost"]}])
        with pytest.raises(PipelineValidationError, match="unknown jobs"):
            PipelineRegistry(tmp_path).load("demo")

    def test_not_a_mapping(self, tmp_path):
        (tmp_path / "list.yaml").write_text("- a\n")
        with pytest.raises(PipelineValidationError, match="expected a mapping"):
            PipelineRegistry(tmp_path).load("list")

    def test_cache_and_hash(self, tmp_path):
        write_pipeline(tmp_path / "demo.yaml")
        registry = PipelineRegistry(tmp_path)
        pipeline = registry.load("demo")

        assert registry.load("demo") is pipeline
        digest = PipelineRegistry.compute_hash(pipeline)
        assert len(digest) == 64
        assert registry.load_by_hash(digest) is pipeline
        registry.clear_cache()
        assert registry.load_by_hash(digest) is None

    def test_resolve_by_path(self, tmp_path):
        path = write_pipeline(tmp_path / "elsewhere" / "anything.yml", pipeline_id="demo")
        pipeline = PipelineRegistry(tmp_path / "defs").resolve(str(path))
        assert pipeline.pipeline_id == "demo"

    def test_list_pipelines(self, tmp_path):
        write_pipeline(tmp_path / "a.yaml", pipeline_id="a")
        write_pipeline(tmp_path / "sub" / "b.json", pipeline_id="b")
        assert PipelineRegistry(tmp_path).list_pipelines() == ["a", "b"]
        assert PipelineRegistry(tmp_path / "missing").list_pipelines() == []


class TestPackagedDefinitions:
    """The bundled ci pipeline."""

    def test_ci_pipeline(self):
        pipeline = PipelineRegistry(DEFINITIONS_DIR).load("ci")

        unix = pipeline.get_job("build_unix")
        assert unix.matrix == ("ubuntu", "macOS")
        assert unix.fail_fast is False
        assert [s.step_id for s in unix.steps] == [
            "checkout", "toolchain", "fmt", "test", "build", "package", "upload",
        ]

        publish = pipeline.get_job("publish")
        assert publish.depends_on == frozenset({"build_unix", "build_win"})
        assert publish.release.title == "g-flite-{tag}"
        assert [(a.label, a.content_type) for a in publish.release.assets] == [
            ("ubuntu", "application/gzip"),
            ("macOS", "application/gzip"),
            ("windows", "application/zip"),
        ]
