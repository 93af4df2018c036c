"""Tests for the patch generation cascade and its tier fallbacks."""

import asyncio
import json

import pytest

from patchwise.editing.cascade import PatchGenerator
from patchwise.editing.edit_plan import EditPlan, StepPlan
from patchwise.editing.prompts import (
    DEFAULT_PLAN, STRICT_DIFF_INSTRUCTION, STRICT_JSON_INSTRUCTION, EditRequest, SourceFile,
)
from patchwise.errors import LLMError, RunCancelledError
from patchwise.runs import PhaseDeadlines, RunRegistry


APP = "def greet():\n    return 'hi'\n"
HELLO = "def greet():\n    return 'hello'\n"

STEP_PLAN = json.dumps({"version": 1, "steps": [{
    "id": "step-1", "filePath": "src/app.py", "operation": "modify",
    "operations": [{"kind": "search_and_replace", "search": "'hi'", "replace": "'hello'"}],
}]})

MODEL_DIFF = (
    "Switch the greeting.\n\n```diff\n"
    "--- a/src/app.py\n+++ b/src/app.py\n@@ -1,2 +1,2 @@\n"
    " def greet():\n-    return 'hi'\n+    return 'hello'\n```"
)

# Well-formed, but its context is not in src/app.py
STALE_DIFF = (
    "--- a/src/app.py\n+++ b/src/app.py\n@@ -1,2 +1,2 @@\n"
    " def hello():\n-    return 'yo'\n+    return 'hey'"
)


def _request(prompt="make greet say hello"):
    return EditRequest(prompt=prompt, files=[SourceFile("src/app.py", APP)])


def _run(generator, req=None, cancel_after=None):
    run = RunRegistry().create_run("run-test")

    async def scenario():
        if cancel_after is not None:
            asyncio.get_running_loop().call_later(cancel_after, run.token.cancel)
        return await generator.generate(req or _request(), run)

    return asyncio.run(scenario())


class TestEditPlanTier:
    def test_step_plan_is_applied_locally(self, scripted_backend):
        backend = scripted_backend(completions=["Change the greeting.", STEP_PLAN])
        result = _run(PatchGenerator(backend))

        assert result.tier == "edit_plan"
        assert result.explanation == "Change the greeting."
        assert isinstance(result.edit_plan, StepPlan)
        assert "-    return 'hi'" in result.patch
        assert "+    return 'hello'" in result.patch
        assert result.file_changes[0].proposed == HELLO
        assert not result.partial

    def test_planning_call_is_streamed_and_short(self, scripted_backend):
        backend = scripted_backend(completions=["plan", STEP_PLAN])
        _run(PatchGenerator(backend))
        _prompt, streaming, options = backend.completion_calls[0]
        assert streaming is True
        assert options.max_tokens == 256

    def test_invalid_json_retries_strict(self, scripted_backend):
        backend = scripted_backend(completions=["plan", "not json at all", STEP_PLAN])
        result = _run(PatchGenerator(backend))

        assert result.tier == "edit_plan"
        first, retry = backend.completion_calls[1], backend.completion_calls[2]
        assert first[1] is True
        assert first[2].temperature == pytest.approx(0.6)
        assert retry[0].endswith(STRICT_JSON_INSTRUCTION)
        assert retry[1] is False
        assert retry[2].temperature == 0.1

    def test_plan_that_does_not_apply_is_retried(self, scripted_backend):
        missing = STEP_PLAN.replace("'hi'", "'absent'")
        backend = scripted_backend(completions=["plan", missing, STEP_PLAN])
        result = _run(PatchGenerator(backend))
        assert result.tier == "edit_plan"
        assert len(backend.completion_calls) == 3

    def test_compact_plan_is_accepted(self, scripted_backend):
        compact = json.dumps({
            "targetFiles": ["src/app.py"],
            "fileEdits": [{"path": "src/app.py", "operations": [
                {"kind": "insert_after", "anchor": "def greet():", "newText": "\n    \"\"\"Say hi.\"\"\""}]}],
        })
        backend = scripted_backend(completions=["plan", compact])
        result = _run(PatchGenerator(backend))
        assert result.tier == "edit_plan"
        assert isinstance(result.edit_plan, EditPlan)
        assert '+    """Say hi."""' in result.patch

    def test_compact_plan_with_missing_anchor_is_retried(self, scripted_backend):
        def compact(anchor):
            return json.dumps({
                "targetFiles": ["src/app.py"],
                "fileEdits": [{"path": "src/app.py", "operations": [
                    {"kind": "insert_after", "anchor": anchor, "newText": "\n    pass"}]}],
            })

        backend = scripted_backend(completions=["plan", compact("def absent():"),
                                                compact("def greet():")])
        result = _run(PatchGenerator(backend))
        assert result.tier == "edit_plan"
        assert len(backend.completion_calls) == 3
        assert result.file_changes[0].proposed.startswith("def greet():\n    pass\n")

    def test_compact_plan_with_undeclared_target_is_rejected(self, scripted_backend):
        compact = json.dumps({
            "targetFiles": ["src/other.py"],
            "fileEdits": [{"path": "src/other.py", "operations": [
                {"kind": "append", "newText": "x = 1"}]}],
        })
        backend = scripted_backend(completions=["plan", compact, compact, MODEL_DIFF])
        assert _run(PatchGenerator(backend)).tier == "model_diff"


class TestModelDiffTier:
    def test_falls_back_to_model_diff(self, scripted_backend):
        backend = scripted_backend(completions=["plan", "junk", "junk", MODEL_DIFF])
        result = _run(PatchGenerator(backend))

        assert result.tier == "model_diff"
        assert result.explanation == "Switch the greeting."
        assert result.patch.startswith("--- a/src/app.py")
        assert result.file_changes[0].proposed == HELLO
        assert result.capped_patch is None
        _prompt, streaming, _options = backend.completion_calls[3]
        assert streaming is False

    def test_strict_retry_for_diff(self, scripted_backend):
        backend = scripted_backend(completions=["plan", "junk", "junk", "no diff here",
                                                MODEL_DIFF])
        result = _run(PatchGenerator(backend))
        assert result.tier == "model_diff"
        assert backend.completion_calls[4][0].endswith(STRICT_DIFF_INSTRUCTION)

    def test_long_diff_is_flagged_partial(self, scripted_backend):
        backend = scripted_backend(completions=["plan", "junk", "junk", MODEL_DIFF])
        result = _run(PatchGenerator(backend, fallback_diff_max_lines=3))

        assert result.partial is True
        assert result.capped_patch.split("\n") == result.patch.split("\n")[:3]
        assert "+    return 'hello'" in result.patch

    def test_diff_outside_workspace_is_rejected(self, scripted_backend):
        escaping = "--- a/../secret\n+++ b/../secret\n@@ -1 +1 @@\n-a\n+b"
        backend = scripted_backend(
            completions=["plan", "junk", "junk", escaping, escaping],
            chats=["def greet():\n    return 'hello'"],
        )
        result = _run(PatchGenerator(backend))
        assert result.tier == "whole_file"

    def test_diff_that_does_not_apply_is_retried(self, scripted_backend):
        backend = scripted_backend(completions=["plan", "junk", "junk", STALE_DIFF, MODEL_DIFF])
        result = _run(PatchGenerator(backend))

        assert result.tier == "model_diff"
        assert result.file_changes[0].proposed == HELLO
        assert backend.completion_calls[4][0].endswith(STRICT_DIFF_INSTRUCTION)

    def test_diff_that_never_applies_escalates_to_whole_file(self, scripted_backend):
        backend = scripted_backend(
            completions=["plan", "junk", "junk", STALE_DIFF, STALE_DIFF],
            chats=["def greet():\n    return 'hello'"],
        )
        result = _run(PatchGenerator(backend))

        assert result.tier == "whole_file"
        assert result.file_changes[0].original == APP
        assert result.file_changes[0].proposed == HELLO
        assert "def hello():" not in result.patch

    def test_diff_timeout_escalates(self, scripted_backend):
        backend = scripted_backend(
            completions=["plan", "junk", "junk", (5, MODEL_DIFF)],
            chats=[HELLO],
        )
        deadlines = PhaseDeadlines(diff_generation=0.05)
        result = _run(PatchGenerator(backend, deadlines=deadlines))
        assert result.tier == "whole_file"


class TestWholeFileTier:
    def test_model_regenerates_file_and_keeps_final_newline(self, scripted_backend):
        backend = scripted_backend(chats=["def greet():\n    return 'hello'"])
        result = _run(PatchGenerator(backend))

        assert result.tier == "whole_file"
        assert result.explanation == DEFAULT_PLAN
        assert result.file_changes[0].proposed == HELLO
        _system, user_prompt, options = backend.chat_calls[0]
        assert "Plan: " + DEFAULT_PLAN in user_prompt
        assert options.temperature == 0.2

    def test_prepend_pattern_skips_the_model(self, scripted_backend):
        backend = scripted_backend()
        result = _run(PatchGenerator(backend), req=_request("add # header to top"))

        assert result.tier == "whole_file"
        assert result.file_changes[0].proposed == "# header\n" + APP
        assert backend.chat_calls == []

    def test_backend_errors_end_in_empty_result(self, scripted_backend):
        down = [LLMError("connection refused") for _ in range(5)]
        backend = scripted_backend(completions=down, chats=[LLMError("connection refused")])
        result = _run(PatchGenerator(backend))

        assert result.tier == "none"
        assert result.empty
        assert result.explanation == DEFAULT_PLAN

    def test_unchanged_content_gives_no_patch(self, scripted_backend):
        backend = scripted_backend(completions=["Nothing to do."], chats=[APP])
        result = _run(PatchGenerator(backend))
        assert result.tier == "none"
        assert result.patch == ""
        assert result.explanation == "Nothing to do."


class TestGenerateFileEdit:
    def _edit(self, backend, original, instructions, is_new=False):
        run = RunRegistry().create_run("run-file")
        return asyncio.run(PatchGenerator(backend).generate_file_edit(
            "src/app.py", original, instructions, run, is_new=is_new))

    def test_strips_code_fence(self, scripted_backend):
        backend = scripted_backend(chats=["```python\nprint('x')\n```"])
        assert self._edit(backend, "print('y')\n", "print x") == "print('x')\n"

    def test_empty_reply_keeps_original(self, scripted_backend):
        backend = scripted_backend(chats=[""])
        assert self._edit(backend, APP, "do something") == APP

    def test_new_file_goes_to_model(self, scripted_backend):
        backend = scripted_backend(chats=["VALUE = 1"])
        assert self._edit(backend, "", "add VALUE to top", is_new=True) == "VALUE = 1"
        assert "NEW FILE" in backend.chat_calls[0][1]


class TestDeadlinesAndCancellation:
    def test_planning_timeout_uses_default_plan(self, scripted_backend):
        backend = scripted_backend(completions=[(5, "late plan"), STEP_PLAN])
        deadlines = PhaseDeadlines(planning=0.05)
        result = _run(PatchGenerator(backend, deadlines=deadlines))

        assert result.tier == "edit_plan"
        assert result.explanation == DEFAULT_PLAN
        assert "Plan: " + DEFAULT_PLAN in backend.completion_calls[1][0]

    def test_disabled_deadlines_wait_for_slow_backend(self, scripted_backend):
        backend = scripted_backend(completions=[(0.1, "slow plan"), STEP_PLAN])
        deadlines = PhaseDeadlines(planning=0.01, enabled=False)
        result = _run(PatchGenerator(backend, deadlines=deadlines))
        assert result.explanation == "slow plan"

    def test_cancel_propagates_out_of_cascade(self, scripted_backend):
        backend = scripted_backend(completions=["plan", (5, STEP_PLAN)])
        with pytest.raises(RunCancelledError):
            _run(PatchGenerator(backend), cancel_after=0.05)
        assert len(backend.completion_calls) == 2

    def test_progress_steps_are_reported(self, scripted_backend):
        class Recorder:
            def __init__(self):
                self.steps = []

            def step(self, phase, message, data=None):
                self.steps.append((phase, message))

        recorder = Recorder()
        backend = scripted_backend(completions=["plan", STEP_PLAN])
        _run(PatchGenerator(backend, progress=recorder))
        assert recorder.steps[0] == ("plan", "Planning changes")
        assert ("apply", "Applying edit plan locally") in recorder.steps
