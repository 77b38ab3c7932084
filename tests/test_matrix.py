"""Tests for matrix expansion."""

import pytest

from shipwright.errors import MatrixError, PipelineDefinitionError
from shipwright.matrix import (
    _evaluate_condition,
    _resolve_value,
    expand_all,
    expand_template,
    instance_id_for,
    validate_axis,
)
from shipwright.schemas import (
    Action,
    InstanceStatus,
    JobTemplate,
    StepDef,
    TriggerContext,
)


TAG = TriggerContext.from_ref("refs/tags/v1.2.3")
BRANCH = TriggerContext.from_ref("refs/heads/master")


def template(matrix=("ubuntu", "macOS"), steps=None, name="build"):
    return JobTemplate(
        name=name,
        matrix=tuple(matrix),
        steps=steps if steps is not None else (
            StepDef(step_id="test", action=Action.SHELL_RUN, params={"run": "cargo test"}),
            StepDef(
                step_id="upload",
                action=Action.ARTIFACT_UPLOAD,
                params={"name": "asset", "label": "@matrix.label", "path": "@steps.package.path"},
            ),
        ),
    )


class TestExpandTemplate:
    """Expansion of one template."""

    def test_one_instance_per_axis_value(self):
        instances = expand_template(template(matrix=("ubuntu", "macOS", "windows")), TAG)

        assert [i.instance_id for i in instances] == ["build[ubuntu]", "build[macOS]", "build[windows]"]
        assert [i.matrix_value for i in instances] == ["ubuntu", "macOS", "windows"]
        assert all(i.status == InstanceStatus.QUEUED for i in instances)
        assert all(i.template_name == "build" for i in instances)

    def test_instances_share_no_mutable_state(self):
        first, second = expand_template(template(), TAG)

        assert first.step_results is not second.step_results
        assert first.steps[0].params is not second.steps[0].params
        first.step_results.append("marker")
        first.steps[0].params["run"] = "changed"
        assert second.step_results == []
        assert second.steps[0].params["run"] == "cargo test"

    def test_empty_axis_gives_single_instance(self):
        instances = expand_template(template(matrix=()), TAG)

        assert len(instances) == 1
        assert instances[0].matrix_value is None
        assert instances[0].instance_id == "build"
        assert instances[0].label == "build"

    def test_matrix_refs_resolved(self):
        instances = expand_template(template(), TAG)
        assert [i.steps[1].params["label"] for i in instances] == ["ubuntu", "macOS"]

    def test_step_refs_preserved(self):
        instance = expand_template(template(), TAG)[0]
        assert instance.steps[1].params["path"] == "@steps.package.path"

    def test_ctx_refs_resolved(self):
        steps = (
            StepDef(
                step_id="note",
                action=Action.SHELL_RUN,
                params={"run": "echo", "tag": "@ctx.tag", "ref": "@ctx.ref", "kind": "@ctx.event_kind"},
            ),
        )
        params = expand_template(template(matrix=(), steps=steps), TAG)[0].steps[0].params
        assert params == {"run": "echo", "tag": "v1.2.3", "ref": "refs/tags/v1.2.3", "kind": "tag"}

        branch_params = expand_template(template(matrix=(), steps=steps), BRANCH)[0].steps[0].params
        assert branch_params["tag"] == ""

    def test_env_refs_resolved(self):
        steps = (
            StepDef(step_id="s", action=Action.SHELL_RUN, params={"run": "x"}, env={"PLATFORM": "@matrix.value"}),
        )
        instances = expand_template(template(steps=steps), TAG)
        assert [i.steps[0].env["PLATFORM"] for i in instances] == ["ubuntu", "macOS"]

    def test_conditions_compile_to_skips(self):
        steps = (
            StepDef(step_id="openssl", action=Action.SHELL_RUN, params={"run": "vcpkg"},
                    if_="@matrix.value == 'windows'"),
            StepDef(step_id="build", action=Action.SHELL_RUN, params={"run": "cargo build"}),
        )
        instances = expand_template(template(matrix=("ubuntu", "windows"), steps=steps), TAG)

        assert instances[0].get_step("openssl").compiled_skip is True
        assert instances[1].get_step("openssl").compiled_skip is False
        assert instances[0].get_step("build").compiled_skip is False

    def test_unknown_reference_rejected(self):
        steps = (StepDef(step_id="s", action=Action.SHELL_RUN, params={"run": "@matrix.os"}),)
        with pytest.raises(PipelineDefinitionError, match="Reference path not found"):
            expand_template(template(steps=steps), TAG)

    def test_bad_condition_names_step(self):
        steps = (StepDef(step_id="s", action=Action.SHELL_RUN, params={"run": "x"}, if_="whenever"),)
        with pytest.raises(PipelineDefinitionError, match="Step 's'"):
            expand_template(template(steps=steps), TAG)


class TestAxisValidation:
    """Malformed axes are rejected at expansion time."""

    def test_duplicate_values(self):
        with pytest.raises(MatrixError, match="duplicate matrix values"):
            validate_axis(template(matrix=("ubuntu", "ubuntu")))

    def test_empty_value(self):
        with pytest.raises(MatrixError, match="empty value"):
            validate_axis(template(matrix=("ubuntu", " ")))

    @pytest.mark.parametrize("value", ["linux/arm64", "win\\x64", "..", " macOS", "ubuntu "])
    def test_malformed_value(self, value):
        """Values that cannot key an artifact are rejected before anything runs."""
        with pytest.raises(MatrixError, match="matrix value"):
            validate_axis(template(matrix=("ubuntu", value)))

    def test_expand_all_validates_every_axis_first(self):
        templates = [template(name="good"), template(name="bad", matrix=("a", "a"))]
        with pytest.raises(MatrixError):
            expand_all(templates, TAG)

    def test_expand_all(self):
        result = expand_all([template(name="unix"), template(name="win", matrix=())], TAG)
        assert list(result) == ["unix", "win"]
        assert len(result["unix"]) == 2
        assert len(result["win"]) == 1


class TestConditions:
    """Expansion-time condition evaluation."""

    NAMESPACES = {
        "matrix": {"value": "windows", "label": "windows"},
        "ctx": {"ref": "refs/tags/v1.0.0", "event_kind": "tag", "tag": "v1.0.0"},
    }

    def test_equality(self):
        assert _evaluate_condition("@matrix.value == 'windows'", self.NAMESPACES) is True
        assert _evaluate_condition("@matrix.value == \"ubuntu\"", self.NAMESPACES) is False

    def test_inequality(self):
        assert _evaluate_condition("@ctx.event_kind != 'pull_request'", self.NAMESPACES) is True

    def test_truthiness(self):
        assert _evaluate_condition("@ctx.tag", self.NAMESPACES) is True
        namespaces = {**self.NAMESPACES, "ctx": {**self.NAMESPACES["ctx"], "tag": None}}
        assert _evaluate_condition("@ctx.tag", namespaces) is False

    def test_resolve_value_leaves_partial_strings(self):
        assert _resolve_value("build @matrix.value", self.NAMESPACES) == "build @matrix.value"
        assert _resolve_value("@matrix.value", self.NAMESPACES) == "windows"


def test_instance_id_for():
    assert instance_id_for("build", None) == "build"
    assert instance_id_for("build", "macOS") == "build[macOS]"
