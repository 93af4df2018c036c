"""Tests for pulling unified diffs out of model output."""

import pytest

from patchwise.editing.diff_parser import (
    cap_patch_lines, extract_explanation, extract_unified_diff, paths_from_patch,
    split_patch_by_file,
)
from patchwise.editing.unified_diff import apply_unified_diff, create_file_patch


DIFF = (
    "--- a/src/app.py\n"
    "+++ b/src/app.py\n"
    "@@ -1,2 +1,2 @@\n"
    " def greet():\n"
    "-    return 'hi'\n"
    "+    return 'hello'"
)


class TestExtractUnifiedDiff:
    def test_fenced_diff_with_prose(self):
        raw = f"Here is the fix.\n\n```diff\n{DIFF}\n```\nLet me know."
        assert extract_unified_diff(raw) == DIFF

    def test_bare_diff(self):
        assert extract_unified_diff(DIFF + "\n") == DIFF

    def test_trailing_prose_ends_the_diff(self):
        assert extract_unified_diff(DIFF + "\nThat should do it.") == DIFF

    def test_blank_line_after_hunk_ends_the_diff(self):
        raw = DIFF + "\n\n--- a/other.py\n+++ b/other.py\n@@ -1 +1 @@\n-a\n+b"
        assert extract_unified_diff(raw) == DIFF

    def test_no_header(self):
        assert extract_unified_diff("@@ -1 +1 @@\n-a\n+b") is None

    def test_header_without_hunk(self):
        assert extract_unified_diff("--- a/x.py\n+++ b/x.py\n") is None

    def test_header_without_a_b_prefixes(self):
        assert extract_unified_diff("--- x.py\n+++ x.py\n@@ -1 +1 @@\n-a\n+b") is None

    def test_empty(self):
        assert extract_unified_diff("") is None
        assert extract_unified_diff("Sorry, I cannot help with that.") is None

    def test_no_newline_marker_is_kept(self):
        raw = ("--- a/x.txt\n+++ b/x.txt\n@@ -1 +1 @@\n-a\n"
               "\\ No newline at end of file\n+b\n\\ No newline at end of file")
        assert extract_unified_diff(raw) == raw


class TestExplanation:
    def test_text_before_diff(self):
        raw = f"Rename the greeting.\nSecond line.\n\nMore detail.\n\n```diff\n{DIFF}\n```"
        assert extract_explanation(raw, DIFF) == "Rename the greeting.\nSecond line."

    def test_default_when_nothing_before(self):
        assert extract_explanation(DIFF, DIFF) == "No explanation provided."

    def test_without_patch_uses_whole_text(self):
        assert extract_explanation("Just words.", None) == "Just words."


def test_paths_from_patch():
    patch = DIFF + "\n--- a/lib/util.py\n+++ b/lib/util.py\n@@ -1 +1 @@\n-a\n+b"
    assert paths_from_patch(patch) == ["src/app.py", "lib/util.py"]


def test_split_patch_by_file():
    second = "--- a/lib/util.py\n+++ b/lib/util.py\n@@ -1 +1 @@\n-a\n+b"
    chunks = split_patch_by_file(DIFF + "\n" + second)
    assert list(chunks) == ["src/app.py", "lib/util.py"]
    assert chunks["lib/util.py"] == second
    assert chunks["src/app.py"] == DIFF


def test_cap_patch_lines():
    assert cap_patch_lines(DIFF, 10) == (DIFF, False)
    capped, was_capped = cap_patch_lines(DIFF, 3)
    assert was_capped
    assert capped.split("\n") == DIFF.split("\n")[:3]


class TestFencesInsideDiff:
    README = "# Title\n\nIntro.\n"
    README_WITH_CODE = README + "\n```python\nprint('hi')\n```\n"

    def test_bare_diff_adding_a_code_block(self):
        patch = create_file_patch("README.md", self.README, self.README_WITH_CODE)
        assert extract_unified_diff(patch) == patch

    def test_fenced_diff_adding_a_code_block(self):
        patch = create_file_patch("README.md", self.README, self.README_WITH_CODE)
        raw = f"Add an example.\n\n```diff\n{patch}\n```\nDone."
        assert extract_unified_diff(raw) == patch

    def test_prose_fence_before_a_bare_diff(self):
        raw = f"Run ```make``` after applying.\n{DIFF}"
        assert extract_unified_diff(raw) == DIFF


@pytest.mark.parametrize("path, before, after", [
    ("src/app.py", "def greet():\n    return 'hi'\n", "def greet():\n    return 'hello'\n"),
    ("notes.txt", "alpha\nbeta", "alpha\ngamma"),
    ("notes.txt", "alpha\nbeta\n", "alpha\nbeta"),
    ("win.txt", "one\r\ntwo\r\nthree\r\n", "one\r\n2\r\nthree\r\n"),
    ("win.txt", "one\r\ntwo\r\n", "one\r\ntwo\r\nthree\r\n"),
    ("spaced.py", "a = 1\n\n\nb = 2\n", "a = 1\n\nc = 3\n\nb = 2\n"),
    ("src/new.py", "", "VALUE = 1\n"),
    ("README.md", "# Title\n\nIntro.\n", "# Title\n\nIntro.\n\n```python\nprint('hi')\n```\n"),
    ("README.md", "# T\n\n```sh\nmake\n```\n\nEnd.\n", "# T\n\n```sh\nmake test\n```\n\nEnd.\n"),
])
def test_generated_diff_reparses_and_reproduces_target(path, before, after):
    patch = extract_unified_diff(create_file_patch(path, before, after))
    assert patch is not None
    assert paths_from_patch(patch) == [path]
    assert apply_unified_diff(before, patch) == after
