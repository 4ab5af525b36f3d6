"""Threshold policy — overall match score to lifecycle stage.

Every candidate starts in ``screening`` and leaves through exactly one
evaluation of the rules below, applied in order:

1. ``overall <  score_matching``  → ``denied``      (below the recording floor)
2. ``overall >= auto_shortlist``  → ``shortlisted``
3. ``overall <  auto_denied``     → ``denied``
4. ``overall >= email_invite``    → ``invited``     (eligible for an invitation)
5. otherwise                      → ``qualified``   (left for a human reviewer)

Lower bounds are exclusive and upper bounds inclusive, so a score equal
to a threshold gets the more favourable outcome at that boundary.  The
thresholds are independent knobs; the fixed evaluation order keeps any
combination of them deterministic.
"""

from __future__ import annotations

from datetime import UTC, datetime

from applicant_qualifier.models import (
    CandidateDecision,
    ScoreResult,
    Stage,
    ThresholdSet,
)

TERMINAL_STAGES = frozenset(
    {Stage.DENIED, Stage.QUALIFIED, Stage.SHORTLISTED, Stage.INVITED}
)


def decide_stage(thresholds: ThresholdSet, overall_match: int) -> Stage:
    """Map *overall_match* to a terminal stage.  Pure and total."""
    if overall_match < thresholds.score_matching:
        return Stage.DENIED
    if overall_match >= thresholds.auto_shortlist:
        return Stage.SHORTLISTED
    if overall_match < thresholds.auto_denied:
        return Stage.DENIED
    if overall_match >= thresholds.email_invite:
        return Stage.INVITED
    return Stage.QUALIFIED


def decide(
    thresholds: ThresholdSet,
    result: ScoreResult,
    *,
    decided_at: datetime | None = None,
) -> CandidateDecision:
    """Wrap :func:`decide_stage` into a :class:`CandidateDecision`."""
    return CandidateDecision(
        candidate_id=result.candidate_id,
        score_result=result,
        stage=decide_stage(thresholds, result.overall_match),
        decided_at=decided_at or datetime.now(UTC),
    )
