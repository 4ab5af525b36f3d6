"""Single-candidate scoring with degenerate-input and failure fallbacks.

The ScoringClient turns one ``(CandidateProfile, JobContext)`` pair into
one :class:`ScoreResult`, and it **never raises** for per-candidate
problems:

1. **Degenerate input** — profiles under ``min_chars`` characters or
   ``min_words`` words are scored locally in a low band without calling
   the capability.  An empty resume must not earn a noise score, and it
   is not worth a paid call.

2. **Defensive parsing** — the capability is not a typed boundary.  Each
   numeric field is parsed independently, rounded half-up, and clamped
   to [0, 100]; missing or non-finite values become 0; missing text gets
   a fixed placeholder.

3. **Failure fallback** — transport errors, timeouts and unparseable
   responses become an all-zero result with a technical-failure summary.
   The error is logged and swallowed so one bad candidate cannot fail
   the batch.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import random
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from applicant_qualifier.errors import ActionableError
from applicant_qualifier.models import (
    INSUFFICIENT_PROFILE_SUMMARY,
    MISSING_TEXT_PLACEHOLDER,
    TECHNICAL_FAILURE_SUMMARY,
    ScoreResult,
)
from applicant_qualifier.scoring.capability import ScoringRequest

if TYPE_CHECKING:
    from applicant_qualifier.models import CandidateProfile, JobContext
    from applicant_qualifier.scoring.capability import ScoringCapability

logger = logging.getLogger(__name__)

MIN_PROFILE_CHARS = 20
MIN_PROFILE_WORDS = 5
DEFAULT_TIMEOUT_SECONDS = 60.0

# Response keys accepted for each field, first match wins.
_OVERALL_KEYS = ("overallMatch", "overall_match", "overallScore", "score")
_TECHNICAL_KEYS = ("technicalSkills", "technical_skills", "technicalSkillsScore")
_EXPERIENCE_KEYS = ("experience", "experienceScore")
_CULTURAL_KEYS = ("culturalFit", "cultural_fit", "culturalFitScore")
_SUMMARY_KEYS = ("summary", "matchSummary")
_REASONING_KEYS = ("reasoning", "explanation")
_STRENGTH_KEYS = ("strengths", "strengthsHighlights")
_IMPROVEMENT_KEYS = ("improvementAreas", "improvement_areas")

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class FallbackScorer:
    """Seedable source of low-band scores for profiles too thin to assess.

    Scores vary between candidates so a page of empty resumes does not
    render as identical rows, but stay inside a fixed band:

    - technical skills and experience: 1–15
    - cultural fit: 1–9
    - overall: the 40/40/20 weighted mean of the three, so at most 14

    Pass ``seed`` (or a ``random.Random``) to make the sequence repeatable.
    """

    TECHNICAL_BAND = (1, 15)
    EXPERIENCE_BAND = (1, 15)
    CULTURAL_BAND = (1, 9)

    def __init__(self, seed: int | None = None, *, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random(seed)

    def insufficient_profile(self, candidate_id: str) -> ScoreResult:
        technical = self._rng.randint(*self.TECHNICAL_BAND)
        experience = self._rng.randint(*self.EXPERIENCE_BAND)
        cultural = self._rng.randint(*self.CULTURAL_BAND)
        overall = _round_half_up(technical * 0.4 + experience * 0.4 + cultural * 0.2)
        return ScoreResult(
            candidate_id=candidate_id,
            overall_match=overall,
            technical_skills=technical,
            experience=experience,
            cultural_fit=cultural,
            summary=INSUFFICIENT_PROFILE_SUMMARY,
            reasoning="The profile is too short to evaluate against the job requirements.",
        )

    @staticmethod
    def technical_failure(candidate_id: str) -> ScoreResult:
        return ScoreResult(
            candidate_id=candidate_id,
            overall_match=0,
            technical_skills=0,
            experience=0,
            cultural_fit=0,
            summary=TECHNICAL_FAILURE_SUMMARY,
            reasoning="The scoring service did not return a usable assessment.",
        )


class ScoringClient:
    """Scores one candidate against one job.

    Parameters
    ----------
    capability:
        The external scoring backend.  Called at most once per ``score()``.
    fallback:
        Source of degenerate-input and failure results.  Defaults to an
        unseeded :class:`FallbackScorer`.
    timeout:
        Per-call timeout in seconds.  Expiry is treated as a failure.
    """

    def __init__(
        self,
        capability: ScoringCapability,
        *,
        fallback: FallbackScorer | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        min_chars: int = MIN_PROFILE_CHARS,
        min_words: int = MIN_PROFILE_WORDS,
    ) -> None:
        self._capability = capability
        self._fallback = fallback or FallbackScorer()
        self._timeout = timeout
        self._min_chars = min_chars
        self._min_words = min_words

    def is_degenerate(self, profile: CandidateProfile) -> bool:
        return profile.char_count < self._min_chars or profile.word_count < self._min_words

    async def score(self, profile: CandidateProfile, job: JobContext) -> ScoreResult:
        """Return a :class:`ScoreResult` for *profile*; never raises."""
        if self.is_degenerate(profile):
            logger.info(
                "Profile %s too thin to score (%d chars, %d words) — using low-band fallback",
                profile.candidate_id,
                profile.char_count,
                profile.word_count,
            )
            return self._fallback.insufficient_profile(profile.candidate_id)

        request = build_request(profile, job)
        try:
            raw = await asyncio.wait_for(self._capability.score(request), timeout=self._timeout)
            return parse_score_response(profile.candidate_id, raw)
        except ActionableError as exc:
            logger.warning("Scoring failed for %s: %s", profile.candidate_id, exc.error)
        except Exception as exc:
            err = ActionableError.from_exception(exc, "scoring", "score")
            logger.warning("Scoring failed for %s: %s", profile.candidate_id, err.error)
        return self._fallback.technical_failure(profile.candidate_id)


def build_request(profile: CandidateProfile, job: JobContext) -> ScoringRequest:
    return ScoringRequest(
        job_title=job.title,
        job_description=job.description,
        job_requirements=job.requirements,
        job_skills=tuple(job.skills),
        candidate_profile_text=profile.raw_text,
        custom_rules=job.custom_rules,
    )


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def parse_score_response(candidate_id: str, raw: str | Mapping[str, Any]) -> ScoreResult:
    """Parse and sanitize a capability response.

    Accepts JSON text (optionally wrapped in markdown fences) or a decoded
    mapping.  Every numeric field is clamped into [0, 100] independently.
    A ``disqualified: true`` response zeroes all four scores.

    Raises:
        ExternalScoringError: the response is not a JSON object at all.
    """
    data = _decode(raw)

    overall = clamp_score(_first(data, _OVERALL_KEYS))
    technical = clamp_score(_first(data, _TECHNICAL_KEYS))
    experience = clamp_score(_first(data, _EXPERIENCE_KEYS))
    cultural = clamp_score(_first(data, _CULTURAL_KEYS))

    disqualified = data.get("disqualified") is True
    reason: str | None = None
    if disqualified:
        overall = technical = experience = cultural = 0
        reason = _text(data.get("disqualificationReason")) or None

    return ScoreResult(
        candidate_id=candidate_id,
        overall_match=overall,
        technical_skills=technical,
        experience=experience,
        cultural_fit=cultural,
        summary=_text(_first(data, _SUMMARY_KEYS)) or MISSING_TEXT_PLACEHOLDER,
        reasoning=_text(_first(data, _REASONING_KEYS)) or MISSING_TEXT_PLACEHOLDER,
        strengths=_string_list(_first(data, _STRENGTH_KEYS)),
        improvement_areas=_string_list(_first(data, _IMPROVEMENT_KEYS)),
        disqualified=disqualified,
        disqualification_reason=reason,
    )


def clamp_score(value: object) -> int:
    """Coerce *value* to an integer in [0, 100]; anything unusable is 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return 0
    if not isinstance(value, int | float):
        return 0
    if isinstance(value, int):
        return max(0, min(100, value))
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(0, min(100, _round_half_up(value)))


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _decode(raw: str | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    if not isinstance(raw, str):
        raise ActionableError.scoring(
            model="scoring",
            raw_error=f"unexpected response type {type(raw).__name__}",
        )
    text = _FENCE_RE.sub("", raw.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ActionableError.scoring(
            model="scoring", raw_error=f"response is not valid JSON: {exc}"
        ) from None
    if not isinstance(data, dict):
        raise ActionableError.scoring(
            model="scoring",
            raw_error=f"response is a JSON {type(data).__name__}, expected an object",
        )
    return data


def _first(data: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _string_list(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(s for s in (_text(v) for v in value) if s)
