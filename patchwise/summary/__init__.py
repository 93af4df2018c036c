"""Ground truth, grounded summary generation and validation."""

from .ground_truth import (
    FileGroundTruth, GroundTruthTotals, ProposalFile, ProposalGroundTruth,
    build_file_list_from_ground_truth, build_proposal_ground_truth,
)
from .models import ChangeSummary, FileChange
from .validator import GENERIC_WORDS, fallback_summary, validate_and_fix_summary
from .generator import generate_proposal_summary, parse_summary_response

__all__ = [
    "FileGroundTruth", "GroundTruthTotals", "ProposalFile", "ProposalGroundTruth",
    "build_file_list_from_ground_truth", "build_proposal_ground_truth",
    "ChangeSummary", "FileChange", "GENERIC_WORDS", "fallback_summary",
    "validate_and_fix_summary", "generate_proposal_summary", "parse_summary_response",
]
