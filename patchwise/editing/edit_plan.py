"""
Edit plan model — a typed, validated description of file changes.

Two JSON shapes are accepted from the model:

* the step plan ``{"version": 1, "steps": [...]}``, one file per step,
  each step declaring ``modify``, ``create`` or ``delete``;
* the compact plan ``{"targetFiles": [...], "fileEdits": [...]}``.

Both are parsed into pydantic models and returned as a tagged result
(:class:`PlanValid` or :class:`PlanInvalid`) so callers never inspect raw
JSON.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError,
    field_validator, model_validator,
)

from ..errors import PlanValidationError
from ..llm_utils import load_json_lenient
from ..workspace import is_safe_rel_path, normalize_rel_path

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

class _Op(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ReplaceRangeOp(_Op):
    """Replace lines ``start_line..end_line`` (1-based, inclusive)."""
    kind: Literal["replace_range"] = "replace_range"
    start_line: int = Field(alias="startLine", ge=1)
    end_line: int = Field(alias="endLine", ge=1)
    new_text: str = Field(alias="newText")

    @model_validator(mode="after")
    def check_range(self) -> "ReplaceRangeOp":
        if self.end_line < self.start_line:
            raise ValueError("endLine must be >= startLine")
        return self


class InsertAfterOp(_Op):
    """Insert after an exact substring *anchor* or after 1-based *line*."""
    kind: Literal["insert_after"] = "insert_after"
    anchor: Optional[str] = None
    line: Optional[int] = Field(default=None, ge=0)
    new_text: str = Field(alias="newText")

    @model_validator(mode="after")
    def exactly_one_target(self) -> "InsertAfterOp":
        if (self.anchor is None) == (self.line is None):
            raise ValueError("insert_after needs exactly one of anchor or line")
        if self.anchor is not None and not self.anchor:
            raise ValueError("insert_after anchor must not be empty")
        return self


class SearchAndReplaceOp(_Op):
    kind: Literal["search_and_replace"] = "search_and_replace"
    search: str = Field(min_length=1)
    replace: str
    all: bool = False


class AppendOp(_Op):
    kind: Literal["append"] = "append"
    new_text: str = Field(alias="newText")


class PrependOp(_Op):
    kind: Literal["prepend"] = "prepend"
    new_text: str = Field(alias="newText")


EditOp = Annotated[
    Union[ReplaceRangeOp, InsertAfterOp, SearchAndReplaceOp, AppendOp, PrependOp],
    Field(discriminator="kind"),
]

# Kinds the persisted step-plan schema allows
StepOp = Annotated[
    Union[ReplaceRangeOp, SearchAndReplaceOp, AppendOp, PrependOp],
    Field(discriminator="kind"),
]

_STEP_OP_KINDS = ("replace_range", "search_and_replace", "append", "prepend")


def _check_path(value: str) -> str:
    path = normalize_rel_path(value or "")
    if not is_safe_rel_path(path):
        raise ValueError(f"invalid filePath: {value}")
    return path


# ---------------------------------------------------------------------------
# Compact plan: targetFiles + fileEdits
# ---------------------------------------------------------------------------

class FileEditPlan(BaseModel):
    """Ordered operations for one file; each sees the previous one's output."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    path: str = Field(validation_alias=AliasChoices("path", "filePath", "file_path"))
    operations: List[EditOp] = Field(default_factory=list)

    @field_validator("path")
    @classmethod
    def normalize_path(cls, v: str) -> str:
        return _check_path(v)


class EditPlan(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    target_files: List[str] = Field(alias="targetFiles")
    file_edits: List[FileEditPlan] = Field(alias="fileEdits")

    @field_validator("target_files")
    @classmethod
    def normalize_targets(cls, v: List[str]) -> List[str]:
        return [_check_path(p) for p in v]

    def edits_for(self, path: str) -> List[FileEditPlan]:
        key = normalize_rel_path(path)
        return [fe for fe in self.file_edits if fe.path == key]


# ---------------------------------------------------------------------------
# Step plan (persisted schema)
# ---------------------------------------------------------------------------

class PlanStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    file_path: str = Field(validation_alias=AliasChoices("filePath", "path", "file_path"),
                           serialization_alias="filePath")
    operation: Literal["modify", "create", "delete"] = "modify"
    summary: str = ""
    rationale: str = ""
    operations: List[StepOp] = Field(default_factory=list)

    @field_validator("file_path")
    @classmethod
    def normalize_path(cls, v: str) -> str:
        return _check_path(v)


class StepPlan(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: Literal[1] = 1
    steps: List[PlanStep]

    def touched_paths(self) -> List[str]:
        seen: List[str] = []
        for step in self.steps:
            if step.file_path not in seen:
                seen.append(step.file_path)
        return seen

    def to_edit_plan(self, targets: Optional[List[str]] = None) -> EditPlan:
        """Group non-delete steps into an :class:`EditPlan` per file."""
        target_files = [normalize_rel_path(t) for t in targets] if targets else self.touched_paths()
        file_edits = [
            FileEditPlan(path=step.file_path, operations=list(step.operations))
            for step in self.steps if step.operation != "delete"
        ]
        return EditPlan(target_files=target_files, file_edits=file_edits)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


# ---------------------------------------------------------------------------
# Tagged validation result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlanValid(Generic[T]):
    value: T
    ok: Literal[True] = True


@dataclass(frozen=True)
class PlanInvalid:
    error: PlanValidationError
    ok: Literal[False] = False


PlanValidation = Union[PlanValid[T], PlanInvalid]


def _invalid(code: str, message: str, field: Optional[str] = None,
             step_index: Optional[int] = None) -> PlanInvalid:
    logger.info("[EditPlan] invalid plan (%s): %s", code, message)
    return PlanInvalid(PlanValidationError(code, message, field=field, step_index=step_index))


def _first_error(exc: ValidationError) -> tuple[str, str]:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return loc, err.get("msg", str(exc))


_step_op_adapter: TypeAdapter = TypeAdapter(StepOp)
_edit_op_adapter: TypeAdapter = TypeAdapter(EditOp)


def _normalize_targets(targets: Optional[List[str]]) -> Optional[set[str]]:
    if not targets:
        return None
    return {normalize_rel_path(t) for t in targets}


def validate_step_plan(data: Any, targets: Optional[List[str]] = None,
                       allow_new_files: bool = False) -> PlanValidation[StepPlan]:
    """Validate an already-decoded step plan.

    When *targets* is given every step must touch a declared target, except
    ``create`` steps when *allow_new_files* is set.
    """
    if not isinstance(data, dict):
        return _invalid("not_object", "plan must be an object")
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list):
        return _invalid("missing_steps", "plan.steps must be an array", field="steps")
    if not raw_steps:
        return _invalid("empty_steps", "plan.steps must not be empty", field="steps")

    allowed = _normalize_targets(targets)
    steps: List[PlanStep] = []
    for i, raw in enumerate(raw_steps):
        if not isinstance(raw, dict):
            return _invalid("bad_step", "step must be an object", step_index=i)

        raw_path = raw.get("filePath", raw.get("path", raw.get("file_path")))
        if not isinstance(raw_path, str) or not is_safe_rel_path(raw_path):
            return _invalid("bad_path", f"invalid filePath: {raw_path}",
                            field="filePath", step_index=i)

        operation = raw.get("operation")
        if operation not in ("modify", "create", "delete"):
            operation = "modify"
        ops_raw = raw.get("operations")
        if ops_raw is None:
            ops_raw = []
        if not isinstance(ops_raw, list):
            return _invalid("bad_operations", "operations must be an array",
                            field="operations", step_index=i)
        if operation == "delete" and ops_raw:
            return _invalid("bad_operations", "delete step must have operations=[]",
                            field="operations", step_index=i)
        if operation != "delete" and not ops_raw:
            return _invalid("bad_operations", "create/modify step must have operations",
                            field="operations", step_index=i)

        ops = []
        for j, op in enumerate(ops_raw):
            kind = op.get("kind") if isinstance(op, dict) else None
            if kind not in _STEP_OP_KINDS:
                return _invalid("bad_operations", f"unknown operation kind: {kind}",
                                field=f"operations.{j}.kind", step_index=i)
            try:
                ops.append(_step_op_adapter.validate_python(op))
            except ValidationError as exc:
                loc, msg = _first_error(exc)
                return _invalid("bad_operations", msg,
                                field=f"operations.{j}.{loc}".rstrip("."), step_index=i)

        step_id = raw.get("id")
        try:
            step = PlanStep(
                id=step_id.strip() if isinstance(step_id, str) and step_id.strip() else f"step-{i + 1}",
                file_path=raw_path,
                operation=operation,
                summary=raw.get("summary") if isinstance(raw.get("summary"), str) else "",
                rationale=raw.get("rationale") if isinstance(raw.get("rationale"), str) else "",
                operations=ops,
            )
        except ValidationError as exc:
            loc, msg = _first_error(exc)
            return _invalid("bad_step", msg, field=loc, step_index=i)

        if allowed is not None and step.file_path not in allowed:
            if not (allow_new_files and step.operation == "create"):
                return _invalid("unknown_target",
                                f"step touches undeclared file: {step.file_path}",
                                field="filePath", step_index=i)
        steps.append(step)

    return PlanValid(StepPlan(version=1, steps=steps))


def parse_step_plan(raw: str, targets: Optional[List[str]] = None,
                    allow_new_files: bool = False) -> PlanValidation[StepPlan]:
    """Decode model output and validate it as a step plan."""
    data, err = load_json_lenient(raw)
    if data is None:
        return _invalid("not_json", f"plan is not valid JSON: {err}")
    return validate_step_plan(data, targets, allow_new_files=allow_new_files)


def validate_edit_plan(data: Any) -> PlanValidation[EditPlan]:
    """Validate the compact ``{targetFiles, fileEdits}`` shape."""
    if not isinstance(data, dict):
        return _invalid("not_object", "plan must be an object")
    if not isinstance(data.get("fileEdits"), list):
        return _invalid("missing_steps", "plan.fileEdits must be an array", field="fileEdits")
    if not data["fileEdits"]:
        return _invalid("empty_steps", "plan.fileEdits must not be empty", field="fileEdits")
    try:
        plan = EditPlan.model_validate(data)
    except ValidationError as exc:
        loc, msg = _first_error(exc)
        if "path" in loc or "targetFiles" in loc or "target_files" in loc:
            code = "bad_path"
        elif "operations" in loc:
            code = "bad_operations"
        else:
            code = "bad_step"
        return _invalid(code, msg, field=loc)

    declared = set(plan.target_files)
    for i, fe in enumerate(plan.file_edits):
        if fe.path not in declared:
            return _invalid("unknown_target", f"edit for undeclared file: {fe.path}",
                            field="fileEdits.path", step_index=i)
        if not fe.operations:
            return _invalid("bad_operations", "file edit must have operations",
                            field="fileEdits.operations", step_index=i)
    return PlanValid(plan)


def parse_edit_plan(raw: str) -> PlanValidation[EditPlan]:
    data, err = load_json_lenient(raw)
    if data is None:
        return _invalid("not_json", f"plan is not valid JSON: {err}")
    return validate_edit_plan(data)


def parse_edit_op(data: Any) -> EditOp:
    """Validate a single operation of any kind; raises ``ValidationError``."""
    return _edit_op_adapter.validate_python(data)
