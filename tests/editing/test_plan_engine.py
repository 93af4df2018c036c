"""Tests for deterministic operation application and the workspace engine."""

import pytest

from patchwise.editing.edit_plan import (
    AppendOp, EditPlan, FileEditPlan, InsertAfterOp, PrependOp, ReplaceRangeOp,
    SearchAndReplaceOp, validate_step_plan,
)
from patchwise.editing.plan_engine import (
    EditPlanEngine, FileChangeResult, apply_edit_plan, apply_operation, apply_operations,
    build_patch,
)
from patchwise.editing.unified_diff import create_file_patch
from patchwise.errors import EditApplyError
from patchwise.workspace import LocalWorkspace


CONTENT = "line1\nline2\nline3"


class TestApplyOperation:
    def test_replace_range(self):
        op = ReplaceRangeOp(start_line=2, end_line=2, new_text="TWO")
        assert apply_operation(CONTENT, op) == "line1\nTWO\nline3"

    def test_replace_range_multi_line_replacement(self):
        op = ReplaceRangeOp(start_line=1, end_line=2, new_text="a\nb\nc")
        assert apply_operation(CONTENT, op) == "a\nb\nc\nline3"

    def test_replace_range_clamps_end(self):
        op = ReplaceRangeOp(start_line=3, end_line=99, new_text="end")
        assert apply_operation(CONTENT, op) == "line1\nline2\nend"

    def test_search_and_replace_first_only(self):
        op = SearchAndReplaceOp(search="line", replace="row")
        assert apply_operation(CONTENT, op) == "row1\nline2\nline3"

    def test_search_and_replace_all(self):
        op = SearchAndReplaceOp(search="line", replace="row", all=True)
        assert apply_operation(CONTENT, op) == "row1\nrow2\nrow3"

    def test_search_not_found_raises(self):
        with pytest.raises(EditApplyError):
            apply_operation(CONTENT, SearchAndReplaceOp(search="missing", replace="x"))

    def test_append_and_prepend(self):
        assert apply_operation(CONTENT, AppendOp(new_text="line4")) == CONTENT + "\nline4"
        assert apply_operation(CONTENT, PrependOp(new_text="line0")) == "line0\n" + CONTENT

    def test_append_and_prepend_on_empty_content(self):
        assert apply_operation("", AppendOp(new_text="x")) == "x"
        assert apply_operation("", PrependOp(new_text="x")) == "x"

    def test_insert_after_anchor(self):
        op = InsertAfterOp(anchor="line1", new_text="\nline1.5")
        assert apply_operation(CONTENT, op) == "line1\nline1.5\nline2\nline3"

    def test_insert_after_missing_anchor_raises(self):
        op = InsertAfterOp(anchor="nowhere", new_text="x")
        with pytest.raises(EditApplyError, match="anchor not found"):
            apply_operation(CONTENT, op)

    def test_insert_after_line(self):
        op = InsertAfterOp(line=1, new_text="inserted")
        assert apply_operation(CONTENT, op) == "line1\ninserted\nline2\nline3"

    def test_crlf_lines_are_split(self):
        op = ReplaceRangeOp(start_line=2, end_line=2, new_text="B")
        assert apply_operation("a\r\nb\r\nc", op) == "a\nB\nc"


def test_operations_chain_in_order():
    ops = [
        SearchAndReplaceOp(search="line2", replace="middle"),
        SearchAndReplaceOp(search="middle", replace="centre"),
        AppendOp(new_text="tail"),
    ]
    assert apply_operations(CONTENT, ops) == "line1\ncentre\nline3\ntail"


def test_apply_operations_is_deterministic():
    ops = [ReplaceRangeOp(start_line=1, end_line=1, new_text="x"), AppendOp(new_text="y")]
    assert apply_operations(CONTENT, ops) == apply_operations(CONTENT, ops)


class TestEditPlanHelpers:
    def test_apply_edit_plan_chains_entries_for_same_path(self):
        plan = EditPlan(target_files=["a.py"], file_edits=[
            FileEditPlan(path="a.py", operations=[AppendOp(new_text="two")]),
            FileEditPlan(path="a.py", operations=[AppendOp(new_text="three")]),
        ])
        changes = apply_edit_plan(plan, {"a.py": "one"})
        assert changes == [FileChangeResult(path="a.py", original="one",
                                            proposed="one\ntwo\nthree")]

    def test_build_patch_skips_unchanged(self):
        changes = [
            FileChangeResult(path="a.py", original="x\n", proposed="y\n"),
            FileChangeResult(path="b.py", original="same\n", proposed="same\n"),
        ]
        patch = build_patch(changes)
        assert "--- a/a.py" in patch
        assert "b.py" not in patch


# ── Workspace engine ──────────────────────────────────────────


@pytest.fixture
def ws(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("def greet():\n    return 'hi'\n",
                                              encoding="utf-8")
    (tmp_path / "src" / "old.py").write_text("legacy = True\n", encoding="utf-8")
    return LocalWorkspace(str(tmp_path))


def _plan(*steps):
    result = validate_step_plan({"version": 1, "steps": list(steps)})
    assert result.ok
    return result.value


class TestEditPlanEngine:
    def test_preview_does_not_write(self, ws):
        engine = EditPlanEngine(ws)
        plan = _plan({"id": "s1", "filePath": "src/app.py", "operations": [
            {"kind": "search_and_replace", "search": "'hi'", "replace": "'hello'"}]})
        preview = engine.preview_step(plan.steps[0])
        assert "'hello'" in preview.new_text
        assert "'hi'" in ws.read_file("src/app.py")

    def test_apply_plan_then_revert(self, ws):
        engine = EditPlanEngine(ws)
        plan = _plan(
            {"id": "s1", "filePath": "src/app.py", "operations": [
                {"kind": "search_and_replace", "search": "'hi'", "replace": "'hello'"}]},
            {"id": "s2", "filePath": "src/new.py", "operation": "create", "operations": [
                {"kind": "append", "newText": "NEW = 1\n"}]},
            {"id": "s3", "filePath": "src/old.py", "operation": "delete", "operations": []},
        )
        result = engine.apply_plan(plan)
        assert result.success
        assert result.applied == ["src/app.py", "src/new.py", "src/old.py"]
        assert "'hello'" in ws.read_file("src/app.py")
        assert ws.read_file("src/new.py") == "NEW = 1\n"
        assert not ws.exists("src/old.py")

        reverted = engine.revert(result.before_snapshots)
        assert reverted.success
        assert ws.read_file("src/app.py") == "def greet():\n    return 'hi'\n"
        assert not ws.exists("src/new.py")
        assert ws.read_file("src/old.py") == "legacy = True\n"

    def test_apply_plan_stops_on_first_failure(self, ws):
        engine = EditPlanEngine(ws)
        plan = _plan(
            {"id": "s1", "filePath": "src/app.py", "operations": [
                {"kind": "search_and_replace", "search": "absent", "replace": "x"}]},
            {"id": "s2", "filePath": "src/old.py", "operations": [
                {"kind": "append", "newText": "more = 1"}]},
        )
        result = engine.apply_plan(plan)
        assert not result.success
        assert result.failed[0][0] == "src/app.py"
        assert result.applied == []
        assert ws.read_file("src/old.py") == "legacy = True\n"

    def test_apply_patch_writes_all_files(self, ws):
        engine = EditPlanEngine(ws)
        original = ws.read_file("src/app.py")
        patch = "\n".join([
            create_file_patch("src/app.py", original, original.replace("'hi'", "'hey'")),
            create_file_patch("src/old.py", "legacy = True\n", "legacy = False\n"),
        ])
        result = engine.apply_patch(patch)
        assert result.success
        assert sorted(result.applied) == ["src/app.py", "src/old.py"]
        assert "'hey'" in ws.read_file("src/app.py")
        assert ws.read_file("src/old.py") == "legacy = False\n"

    def test_apply_patch_is_all_or_nothing(self, ws):
        engine = EditPlanEngine(ws)
        original = ws.read_file("src/app.py")
        patch = "\n".join([
            create_file_patch("src/app.py", original, original.replace("'hi'", "'hey'")),
            create_file_patch("src/old.py", "something else\n", "changed\n"),
        ])
        result = engine.apply_patch(patch)
        assert not result.success
        assert result.failed[0][0] == "src/old.py"
        assert ws.read_file("src/app.py") == original

    def test_apply_patch_creates_new_file(self, ws):
        engine = EditPlanEngine(ws)
        result = engine.apply_patch(create_file_patch("docs/notes.md", "", "# Notes\n"))
        assert result.success
        assert ws.read_file("docs/notes.md") == "# Notes\n"
        engine.revert(result.before_snapshots)
        assert not ws.exists("docs/notes.md")
