"""Tests for grounded summary validation and confidence scoring."""

from patchwise.summary.ground_truth import (
    FileGroundTruth, GroundTruthTotals, ProposalGroundTruth,
)
from patchwise.summary.models import ChangeSummary, FileChange
from patchwise.summary.validator import (
    bullet_is_grounded, fallback_summary, validate_and_fix_summary,
)


GT = ProposalGroundTruth(
    files=(FileGroundTruth("src/config.py", "modified", 1, 1,
                           ("read_config", "read_settings", "STRIPE_API_KEY")),),
    global_anchors=("read_config", "read_settings", "STRIPE_API_KEY", "/api/users"),
    totals=GroundTruthTotals(lines_added=1, lines_removed=1, file_count=1),
)
PROPOSED = "def load():\n    return read_settings(STRIPE_API_KEY)\n"


def _content(_path):
    return PROPOSED


def _validate(what, behavior, risks=(), title="Switch config loader"):
    summary = ChangeSummary(title=title, what_changed=what, behavior_after=behavior,
                            risks=list(risks))
    return validate_and_fix_summary(summary, GT, _content)


class TestBulletIsGrounded:
    paths = {"src/config.py"}
    anchors = {"read_config", "read_settings"}

    def test_path_mention(self):
        assert bullet_is_grounded("Reworked loading in src/config.py", self.paths, self.anchors)

    def test_anchor_and_generic_words(self):
        assert bullet_is_grounded("read_settings update", self.paths, self.anchors)

    def test_fuzzy_anchor_match(self):
        assert bullet_is_grounded("settings refactor", self.paths, self.anchors)

    def test_unknown_token(self):
        assert not bullet_is_grounded("Adds Redis caching", self.paths, self.anchors)

    def test_punctuation_is_ignored(self):
        assert bullet_is_grounded("`read_config()` refactor.", self.paths, self.anchors)


class TestValidateAndFixSummary:
    def test_all_grounded_is_high_confidence(self):
        result = _validate(["Replaced read_config in src/config.py", "read_settings update"],
                           ["STRIPE_API_KEY config"])
        assert result.confidence == "high"
        assert result.risks == []
        assert result.title == "Switch config loader"

    def test_ungrounded_bullets_dropped_and_demoted(self):
        result = _validate(
            ["Replaced read_config in src/config.py", "read_settings update", "Adds Redis caching"],
            ["STRIPE_API_KEY config", "Serves billing pages"],
        )
        assert result.what_changed == ["Replaced read_config in src/config.py",
                                       "read_settings update"]
        assert result.behavior_after == ["STRIPE_API_KEY config"]
        assert result.risks == ["Unverified: Serves billing pages"]
        assert result.confidence == "medium"

    def test_route_missing_from_proposed_content_is_demoted(self):
        result = _validate(["Replaced read_config in src/config.py", "read_settings update"],
                           ["read_settings route /api/users"])
        assert result.behavior_after == []
        assert result.risks == ["Unverified: read_settings route /api/users"]
        assert result.confidence == "medium"

    def test_more_than_half_removed_is_low(self):
        result = _validate(
            ["Replaced read_config in src/config.py", "Adds caching", "Uses Redis"],
            ["read_settings update", "Faster responses"],
        )
        assert result.what_changed == ["Replaced read_config in src/config.py"]
        assert result.confidence == "low"

    def test_no_surviving_what_changed_falls_back(self):
        result = _validate(["Adds caching"], ["read_settings update", "STRIPE_API_KEY config"],
                           risks=["Needs a migration"], title="Billing tweaks")
        assert result.title == "Billing tweaks"
        assert result.what_changed == ["Updated 1 file(s)."]
        assert result.behavior_after == ["Review file list for details."]
        assert result.risks == ["Needs a migration"]
        assert result.confidence == "low"

    def test_single_surviving_bullet_falls_back(self):
        result = _validate(["read_settings update"], ["Faster responses"])
        assert result.confidence == "low"
        assert result.risks == ["Unverified: Faster responses"]

    def test_risks_are_capped(self):
        result = _validate(
            ["Replaced read_config in src/config.py", "read_settings update"],
            ["STRIPE_API_KEY config", "One thing", "Two thing", "Three thing"],
            risks=["existing risk", "another risk"],
        )
        assert len(result.risks) == 4
        assert result.risks[:2] == ["existing risk", "another risk"]

    def test_files_always_from_ground_truth(self):
        summary = ChangeSummary(
            what_changed=["Replaced read_config in src/config.py", "read_settings update"],
            files=[FileChange(path="evil.py", change="New file")],
        )
        result = validate_and_fix_summary(summary, GT, _content)
        assert result.files == [FileChange(path="src/config.py", change="Modified (+1 -1)")]


def test_fallback_summary_defaults():
    result = fallback_summary(GT)
    assert result.title == "Updated 1 file(s)."
    assert result.confidence == "low"
    assert result.files[0].path == "src/config.py"


def test_fallback_rejects_long_title():
    assert fallback_summary(GT, title="x" * 81).title == "Updated 1 file(s)."
