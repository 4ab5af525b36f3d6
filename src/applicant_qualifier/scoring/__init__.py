"""Candidate scoring against the external scoring capability."""

from applicant_qualifier.scoring.capability import (
    OllamaScoringCapability,
    ScoringCapability,
    ScoringRequest,
)
from applicant_qualifier.scoring.client import (
    FallbackScorer,
    ScoringClient,
    clamp_score,
    parse_score_response,
)
from applicant_qualifier.scoring.prompts import PromptStrategy

__all__ = [
    "FallbackScorer",
    "OllamaScoringCapability",
    "PromptStrategy",
    "ScoringCapability",
    "ScoringClient",
    "ScoringRequest",
    "clamp_score",
    "parse_score_response",
]
