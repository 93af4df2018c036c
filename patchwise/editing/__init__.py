"""Edit plans, diff parsing/emission and the patch generation cascade."""

from .edit_plan import (
    EditOp, StepOp, ReplaceRangeOp, InsertAfterOp, SearchAndReplaceOp, AppendOp, PrependOp,
    FileEditPlan, EditPlan, PlanStep, StepPlan, PlanValid, PlanInvalid, PlanValidation,
    validate_step_plan, parse_step_plan, validate_edit_plan, parse_edit_plan, parse_edit_op,
)
from .plan_engine import (
    EditPlanEngine, FileSnapshot, StepPreview, StepApplyResult, PlanApplyResult,
    FileChangeResult, apply_operation, apply_operations, apply_edit_plan, build_patch,
)
from .diff_parser import (
    extract_unified_diff, extract_explanation, paths_from_patch, split_patch_by_file,
    cap_patch_lines,
)
from .unified_diff import create_file_patch, create_patch, apply_unified_diff, count_changes
from .prompts import SourceFile, EditRequest
from .cascade import PatchGenerator, PlanAndPatch
