"""Tests for the built-in action handlers."""

import tarfile
import zipfile
from pathlib import Path

import pytest

from shipwright.artifacts import ArtifactKey, InMemoryArtifactStore
from shipwright.errors import ArtifactNotFoundError
from shipwright.handlers import (
    ArchiveHandler,
    ArtifactHandler,
    HandlerRegistry,
    NoOpHandler,
    ShellHandler,
    SourceHandler,
    ToolchainHandler,
)
from shipwright.handlers.artifact import guess_content_type
from shipwright.handlers.shell import TIMEOUT_EXIT_CODE
from shipwright.schemas import Action, StepManifest


def manifest(action, workspace, label="linux", timeout_s=300, env=None, **params):
    return StepManifest.from_action(
        run_id="run1",
        instance_id=f"build[{label}]",
        step_id="step",
        action=action,
        resolved_params=params,
        env=env or {},
        workspace=str(workspace),
        label=label,
        timeout_s=timeout_s,
    )


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "ws"
    path.mkdir()
    return path


@pytest.fixture
def store():
    return InMemoryArtifactStore("run1")


class TestShellHandler:
    """shell.run with real subprocesses."""

    def test_success(self, workspace):
        result = ShellHandler().execute(manifest(Action.SHELL_RUN, workspace, run="echo hello"))
        assert result.ok
        assert result.outputs["stdout"].strip() == "hello"

    def test_non_zero_exit(self, workspace):
        result = ShellHandler().execute(manifest(Action.SHELL_RUN, workspace, run="exit 3"))
        assert result.exit_code == 3
        assert not result.ok

    def test_runs_in_workspace_with_env(self, workspace):
        (workspace / "marker.txt").write_text("x")
        result = ShellHandler().execute(manifest(
            Action.SHELL_RUN, workspace, env={"VCPKGRS_DYNAMIC": "1"},
            run="ls marker.txt && echo $VCPKGRS_DYNAMIC",
        ))
        assert result.ok
        assert result.outputs["stdout"].split() == ["marker.txt", "1"]

    def test_timeout(self, workspace):
        result = ShellHandler().execute(manifest(Action.SHELL_RUN, workspace, timeout_s=1, run="sleep 3"))
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert result.outputs["timed_out"] is True

    def test_undecodable_output(self, workspace):
        result = ShellHandler().execute(manifest(Action.SHELL_RUN, workspace, run="printf '\\377\\376'; exit 0"))
        assert result.ok
        assert result.exit_code == 0

    def test_cwd_cannot_escape_workspace(self, workspace):
        with pytest.raises(ValueError, match="escapes the workspace"):
            ShellHandler().execute(manifest(Action.SHELL_RUN, workspace, run="true", cwd="../.."))

    def test_missing_command(self, workspace):
        with pytest.raises(ValueError, match="missing required param 'run'"):
            ShellHandler().execute(manifest(Action.SHELL_RUN, workspace))


class TestToolchainHandler:
    """toolchain.install."""

    def test_provided_by_environment(self, workspace):
        handler = ToolchainHandler(ShellHandler())
        result = handler.execute(manifest(
            Action.TOOLCHAIN_INSTALL, workspace, toolchain="stable", components="rustfmt",
        ))
        assert result.ok
        assert result.outputs == {"toolchain": "stable", "components": "rustfmt"}

    def test_delegates_run_to_shell(self, workspace):
        handler = ToolchainHandler(ShellHandler())
        result = handler.execute(manifest(Action.TOOLCHAIN_INSTALL, workspace, toolchain="stable", run="exit 2"))
        assert result.exit_code == 2
        assert result.outputs["toolchain"] == "stable"


class TestSourceHandler:
    """source.checkout."""

    def test_copies_tree_without_git(self, tmp_path, workspace):
        src = tmp_path / "src"
        (src / "lib").mkdir(parents=True)
        (src / "lib" / "main.rs").write_text("fn main() {}")
        (src / ".git").mkdir()
        (src / ".git" / "HEAD").write_text("ref")

        result = SourceHandler(src).execute(manifest(Action.SOURCE_CHECKOUT, workspace))

        assert (workspace / "lib" / "main.rs").read_text() == "fn main() {}"
        assert not (workspace / ".git").exists()
        assert result.outputs["source"] == str(src)

    def test_missing_source(self, tmp_path, workspace):
        with pytest.raises(FileNotFoundError):
            SourceHandler(tmp_path / "nope").execute(manifest(Action.SOURCE_CHECKOUT, workspace))


class TestArchiveHandler:
    """archive.create."""

    @pytest.fixture
    def built(self, workspace):
        release = workspace / "target" / "release"
        release.mkdir(parents=True)
        (release / "g_flite").write_bytes(b"\x7fELF")
        return workspace

    def test_tar_gz(self, built):
        result = ArchiveHandler().execute(manifest(
            Action.ARCHIVE_CREATE, built, output="g-flite.tar.gz", source="target/release/g_flite",
        ))

        assert result.outputs["content_type"] == "application/gzip"
        with tarfile.open(result.outputs["path"]) as tar:
            assert tar.getnames() == ["target/release/g_flite"]

    def test_zip(self, built):
        result = ArchiveHandler().execute(manifest(
            Action.ARCHIVE_CREATE, built, output="g-flite.zip", source="target",
        ))

        assert result.outputs["content_type"] == "application/zip"
        with zipfile.ZipFile(result.outputs["path"]) as zf:
            assert zf.namelist() == ["target/release/g_flite"]

    def test_explicit_unknown_format(self, built):
        with pytest.raises(ValueError, match="Unsupported archive format"):
            ArchiveHandler().execute(manifest(
                Action.ARCHIVE_CREATE, built, output="a.rar", source="target", format="rar",
            ))

    def test_missing_source(self, workspace):
        with pytest.raises(FileNotFoundError, match="target/release/g_flite"):
            ArchiveHandler().execute(manifest(
                Action.ARCHIVE_CREATE, workspace, output="g.tar.gz", source="target/release/g_flite",
            ))


class TestArtifactHandler:
    """artifact.upload and artifact.download."""

    def test_upload_uses_instance_label(self, workspace, store):
        (workspace / "g-flite.tar.gz").write_bytes(b"archive")

        result = ArtifactHandler(store).execute(manifest(
            Action.ARTIFACT_UPLOAD, workspace, label="ubuntu", name="asset", path="g-flite.tar.gz",
        ))

        assert result.outputs == {"key": "ubuntu/asset", "size": 7}
        artifact = store.get(ArtifactKey("ubuntu", "asset"))
        assert artifact.blob == b"archive"
        assert artifact.content_type == "application/gzip"

    def test_upload_label_override(self, workspace, store):
        (workspace / "g.zip").write_bytes(b"zip")
        step = StepManifest.from_action(
            run_id="run1",
            instance_id="build_win",
            step_id="upload",
            action=Action.ARTIFACT_UPLOAD,
            resolved_params={"name": "asset", "path": "g.zip", "label": "windows"},
            env={},
            workspace=str(workspace),
            label="build_win",
        )

        ArtifactHandler(store).execute(step)

        assert store.get(ArtifactKey("windows", "asset")).content_type == "application/zip"

    def test_upload_missing_file(self, workspace, store):
        with pytest.raises(FileNotFoundError):
            ArtifactHandler(store).execute(manifest(
                Action.ARTIFACT_UPLOAD, workspace, name="asset", path="missing.tar.gz",
            ))
        assert store.keys() == []

    def test_download(self, workspace, store):
        store.put(ArtifactKey("linux", "asset"), b"data", "application/gzip")

        result = ArtifactHandler(store).execute(manifest(
            Action.ARTIFACT_DOWNLOAD, workspace, name="asset", path="in/asset.tar.gz",
        ))

        assert Path(result.outputs["path"]).read_bytes() == b"data"
        assert result.outputs["content_type"] == "application/gzip"

    def test_download_missing(self, workspace, store):
        with pytest.raises(ArtifactNotFoundError):
            ArtifactHandler(store).execute(manifest(Action.ARTIFACT_DOWNLOAD, workspace, name="asset"))

    @pytest.mark.parametrize("filename,expected", [
        ("a.tar.gz", "application/gzip"),
        ("a.tgz", "application/gzip"),
        ("a.zip", "application/zip"),
        ("a.bin", None),
    ])
    def test_guess_content_type(self, filename, expected):
        assert guess_content_type(filename) == expected


class TestHandlerRegistry:
    """Dispatch table."""

    def test_create_default(self, store):
        registry = HandlerRegistry.create_default(store)
        assert sorted(registry.list_backends()) == ["archive", "artifact", "shell", "source", "toolchain"]
        assert isinstance(registry.get("shell"), ShellHandler)

    def test_create_noop_routes_artifacts_to_store(self, store):
        registry = HandlerRegistry.create_noop(store)
        assert isinstance(registry.get("shell"), NoOpHandler)
        assert isinstance(registry.get("artifact"), ArtifactHandler)
        assert isinstance(HandlerRegistry.create_noop().get("artifact"), NoOpHandler)

    def test_unknown_backend(self):
        with pytest.raises(KeyError, match="No handler registered"):
            HandlerRegistry().get("shell")

    def test_dispatch(self, workspace):
        registry = HandlerRegistry.create_noop()
        result = registry.dispatch(manifest(Action.SHELL_RUN, workspace, run="anything"))
        assert result.outputs == {"status": "noop", "action": "shell.run"}
