"""Data model for the qualification pipeline.

Every record here is a frozen dataclass: profiles, jobs, scores and
decisions are built once and never mutated as they flow through the
pipeline.  Only the credit ledger holds mutable state.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from applicant_qualifier.errors import ActionableError

# Summary strings that mark a fallback ScoreResult.  Fallback results have
# the same shape as real ones; these strings are how a reviewer spots them.
INSUFFICIENT_PROFILE_SUMMARY = "Insufficient profile information for a meaningful assessment."
TECHNICAL_FAILURE_SUMMARY = "Unable to score candidate due to a technical error."
MISSING_TEXT_PLACEHOLDER = "No assessment provided."


class Stage(StrEnum):
    """Candidate lifecycle stage."""

    SCREENING = "screening"
    DENIED = "denied"
    QUALIFIED = "qualified"
    SHORTLISTED = "shortlisted"
    INVITED = "invited"


class CreditType(StrEnum):
    CV_PROCESSING = "cv_processing"
    INTERVIEW = "interview"


# ---------------------------------------------------------------------------
# Job side
# ---------------------------------------------------------------------------

DEFAULT_SCORE_MATCHING = 30
DEFAULT_EMAIL_INVITE = 30
DEFAULT_AUTO_SHORTLIST = 70
DEFAULT_AUTO_DENIED = 30

# Accepted spellings for each threshold when loading from a job record.
_THRESHOLD_KEYS: dict[str, tuple[str, ...]] = {
    "score_matching": ("score_matching", "scoreMatching", "scoreMatchingThreshold"),
    "email_invite": ("email_invite", "emailInvite", "emailInviteThreshold"),
    "auto_shortlist": ("auto_shortlist", "autoShortlist", "autoShortlistThreshold"),
    "auto_denied": ("auto_denied", "autoDenied", "autoDeniedThreshold"),
}


@dataclass(frozen=True)
class ThresholdSet:
    """Four independent cut points on the 0–100 overall match score.

    No ordering between the four is enforced; the policy's evaluation
    order makes any combination deterministic.
    """

    score_matching: int = DEFAULT_SCORE_MATCHING
    email_invite: int = DEFAULT_EMAIL_INVITE
    auto_shortlist: int = DEFAULT_AUTO_SHORTLIST
    auto_denied: int = DEFAULT_AUTO_DENIED

    def __post_init__(self) -> None:
        for name in _THRESHOLD_KEYS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ActionableError.validation(
                    field_name=f"thresholds.{name}",
                    reason=f"is {value!r} — must be an integer",
                )
            if not 0 <= value <= 100:
                raise ActionableError.validation(
                    field_name=f"thresholds.{name}",
                    reason=f"is {value} — must be between 0 and 100",
                )

    @classmethod
    def from_mapping(
        cls,
        data: dict[str, Any] | None,
        *,
        defaults: ThresholdSet | None = None,
    ) -> ThresholdSet:
        """Build from a job record, falling back to *defaults* per missing key.

        Accepts snake_case, camelCase and the ``...Threshold`` column names.
        ``None`` values count as missing.
        """
        base = defaults or cls()
        data = data or {}
        values: dict[str, int] = {}
        for name, aliases in _THRESHOLD_KEYS.items():
            raw = next((data[k] for k in aliases if data.get(k) is not None), None)
            if raw is None:
                values[name] = getattr(base, name)
                continue
            if isinstance(raw, float) and raw.is_integer():
                raw = int(raw)
            values[name] = raw
        return cls(**values)


@dataclass(frozen=True)
class JobContext:
    """Read-only job definition supplied by the job store."""

    job_id: str
    title: str
    description: str = ""
    requirements: str = ""
    skills: tuple[str, ...] = ()
    thresholds: ThresholdSet = field(default_factory=ThresholdSet)
    custom_rules: str = ""


# ---------------------------------------------------------------------------
# Candidate side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawDocument:
    """One uploaded candidate document, before text extraction."""

    candidate_id: str
    content: bytes | str | None
    mime_type: str = "txt"
    display_name: str | None = None


@dataclass(frozen=True)
class CandidateProfile:
    candidate_id: str
    display_name: str
    raw_text: str
    word_count: int
    char_count: int


@dataclass(frozen=True)
class ScoreResult:
    """Scores for one candidate against one job, every number in [0, 100]."""

    candidate_id: str
    overall_match: int
    technical_skills: int
    experience: int
    cultural_fit: int
    summary: str
    reasoning: str
    strengths: tuple[str, ...] = ()
    improvement_areas: tuple[str, ...] = ()
    disqualified: bool = False
    disqualification_reason: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.summary in (INSUFFICIENT_PROFILE_SUMMARY, TECHNICAL_FAILURE_SUMMARY)

    @property
    def is_valid(self) -> bool:
        """All four numeric scores are integers in [0, 100]."""
        return all(
            isinstance(s, int) and 0 <= s <= 100
            for s in (
                self.overall_match,
                self.technical_skills,
                self.experience,
                self.cultural_fit,
            )
        )


@dataclass(frozen=True)
class CandidateDecision:
    """Terminal artifact of the pipeline, handed to the persistence layer."""

    candidate_id: str
    score_result: ScoreResult
    stage: Stage
    decided_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        score = asdict(self.score_result)
        score["strengths"] = list(self.score_result.strengths)
        score["improvement_areas"] = list(self.score_result.improvement_areas)
        return {
            "candidate_id": self.candidate_id,
            "stage": self.stage.value,
            "decided_at": self.decided_at.isoformat(),
            "score_result": score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CandidateDecision:
        score = dict(data["score_result"])
        score["strengths"] = tuple(score.get("strengths", ()))
        score["improvement_areas"] = tuple(score.get("improvement_areas", ()))
        return cls(
            candidate_id=data["candidate_id"],
            score_result=ScoreResult(**score),
            stage=Stage(data["stage"]),
            decided_at=datetime.fromisoformat(data["decided_at"]),
        )
