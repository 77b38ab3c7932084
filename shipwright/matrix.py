"""
Matrix Expander - Transform JobTemplate + trigger context into JobInstances.

Expansion binds a template to each value of its matrix axis. For every
instance it resolves:
- @matrix.* references (value, label)
- @ctx.* references from the trigger context (ref, event_kind, tag)
- if_ conditions (expansion-time only, no @steps.* refs allowed)

@steps.* references are preserved for run-time resolution by the executor.

The resulting JobInstances have fixed step lists and their own copies of
every parameter mapping, so siblings share no mutable state.
"""

import re
from typing import Any, Optional

from shipwright.errors import MatrixError, PipelineDefinitionError
from shipwright.schemas import (
    JobInstance,
    JobTemplate,
    StepDef,
    StepInstance,
    TriggerContext,
)


# Reference pattern: @namespace.path.to.value
REF_PATTERN = re.compile(r"@(matrix|ctx|steps)\.([a-zA-Z_][a-zA-Z0-9_.\-]*)")


def validate_axis(template: JobTemplate) -> None:
    """
    Reject malformed matrix axes.

    Raises:
        MatrixError: On empty, malformed (path separators, surrounding
            whitespace) or duplicate values
    """
    axis = template.matrix
    for value in axis:
        if not isinstance(value, str) or not value.strip():
            raise MatrixError(f"Job '{template.name}': matrix contains an empty value")
        if value != value.strip():
            raise MatrixError(f"Job '{template.name}': matrix value has surrounding whitespace: {value!r}")
        if "/" in value or "\\" in value or value in (".", ".."):
            raise MatrixError(f"Job '{template.name}': invalid matrix value: {value!r}")
    duplicates = sorted({v for v in axis if axis.count(v) > 1})
    if duplicates:
        raise MatrixError(f"Job '{template.name}': duplicate matrix values: {duplicates}")


def _expansion_namespace(
    template: JobTemplate,
    matrix_value: Optional[str],
    context: TriggerContext,
) -> dict[str, dict[str, Any]]:
    label = matrix_value if matrix_value is not None else template.name
    return {
        "matrix": {"value": matrix_value, "label": label},
        "ctx": {
            "ref": context.ref,
            "event_kind": context.event_kind.value,
            "tag": context.tag,
        },
    }


def _resolve_reference(ref: str, namespaces: dict[str, dict[str, Any]]) -> Any:
    """
    Resolve a single @matrix.* or @ctx.* reference.

    Raises:
        PipelineDefinitionError: If the reference cannot be resolved
    """
    match = REF_PATTERN.fullmatch(ref)
    if not match:
        raise PipelineDefinitionError(f"Invalid reference format: {ref}")

    namespace, path = match.group(1), match.group(2)
    if namespace == "steps":
        raise PipelineDefinitionError(
            f"@steps.* references cannot be resolved at expansion time: {ref}"
        )

    source = namespaces[namespace]
    if path not in source:
        raise PipelineDefinitionError(f"Reference path not found: {ref}")
    return source[path]


def _resolve_value(value: str, namespaces: dict[str, dict[str, Any]]) -> str:
    """Resolve a full-string expansion-time ref; other strings pass through."""
    if value.startswith("@"):
        match = REF_PATTERN.fullmatch(value)
        if match and match.group(1) != "steps":
            resolved = _resolve_reference(value, namespaces)
            return "" if resolved is None else str(resolved)
    return value


def _parse_literal(s: str) -> Any:
    """Parse a literal value from a condition operand."""
    s = s.strip()

    if (s.startswith("'") and s.endswith("'")) or (s.startswith('"') and s.endswith('"')):
        return s[1:-1]

    if s.lower() == "true":
        return True
    if s.lower() == "false":
        return False
    if s.lower() in ("none", "null"):
        return None

    return s


def _evaluate_condition(condition: str, namespaces: dict[str, dict[str, Any]]) -> bool:
    """
    Evaluate an expansion-time condition.

    Supported forms:
    - "@ctx.tag"                         -> truthiness of the value
    - "@matrix.value == 'windows'"       -> equality
    - "@ctx.event_kind != 'pull_request'" -> inequality

    Raises:
        PipelineDefinitionError: If the condition cannot be evaluated
    """
    condition = condition.strip()

    if REF_PATTERN.fullmatch(condition):
        return bool(_resolve_reference(condition, namespaces))

    for op, op_func in (
        ("==", lambda a, b: a == b),
        ("!=", lambda a, b: a != b),
    ):
        if op in condition:
            left, right = (part.strip() for part in condition.split(op, 1))
            left_val = _resolve_reference(left, namespaces) if left.startswith("@") else _parse_literal(left)
            right_val = _resolve_reference(right, namespaces) if right.startswith("@") else _parse_literal(right)
            return op_func(left_val, right_val)

    raise PipelineDefinitionError(f"Cannot evaluate condition: {condition}")


def _expand_step(step_def: StepDef, namespaces: dict[str, dict[str, Any]]) -> StepInstance:
    compiled_skip = False
    if step_def.if_ is not None:
        try:
            compiled_skip = not _evaluate_condition(step_def.if_, namespaces)
        except PipelineDefinitionError as e:
            raise PipelineDefinitionError(f"Step '{step_def.step_id}': {e}") from e

    return StepInstance(
        step_id=step_def.step_id,
        action=step_def.action,
        params={k: _resolve_value(v, namespaces) for k, v in step_def.params.items()},
        env={k: _resolve_value(v, namespaces) for k, v in step_def.env.items()},
        best_effort=step_def.best_effort,
        timeout_s=step_def.timeout_s,
        compiled_skip=compiled_skip,
    )


def instance_id_for(template_name: str, matrix_value: Optional[str]) -> str:
    """Stable instance id: "name" or "name[value]"."""
    if matrix_value is None:
        return template_name
    return f"{template_name}[{matrix_value}]"


def expand_template(template: JobTemplate, context: TriggerContext) -> list[JobInstance]:
    """
    Expand one template across its matrix axis.

    An empty axis produces exactly one instance with a null axis value.

    Raises:
        MatrixError: If the axis is malformed (nothing is expanded)
        PipelineDefinitionError: If a reference or condition is invalid
    """
    validate_axis(template)

    values: list[Optional[str]] = list(template.matrix) or [None]
    instances = []
    for value in values:
        namespaces = _expansion_namespace(template, value, context)
        instances.append(JobInstance(
            instance_id=instance_id_for(template.name, value),
            template_name=template.name,
            matrix_value=value,
            steps=tuple(_expand_step(s, namespaces) for s in template.steps),
        ))
    return instances


def expand_all(
    templates: list[JobTemplate] | tuple[JobTemplate, ...],
    context: TriggerContext,
) -> dict[str, list[JobInstance]]:
    """
    Expand every template; all axes are validated before anything is returned.

    Returns:
        Mapping of template name to its instances, in axis order
    """
    for template in templates:
        validate_axis(template)
    return {t.name: expand_template(t, context) for t in templates}
