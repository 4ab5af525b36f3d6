"""Versioned prompt strategy for the scoring capability.

One template per version, one rubric paragraph per strictness level.
How harsh the evaluation is belongs to configuration, so there is a
single scoring path however the rubric is tuned.

Versions:

- ``v1`` — single overall ``score`` plus a one-sentence ``summary``.
- ``v2`` — four dimensions (overall, technical, experience, cultural
  fit) plus ``summary``, ``reasoning``, strengths and improvement areas.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from applicant_qualifier.errors import ActionableError

if TYPE_CHECKING:
    from applicant_qualifier.scoring.capability import ScoringRequest

DEFAULT_PROMPT_VERSION = "v2"
DEFAULT_STRICTNESS = "strict"

_RUBRICS: dict[str, str] = {
    "balanced": (
        "Give fair, evidence-based assessments.  Credit transferable experience "
        "where the resume clearly demonstrates it."
    ),
    "strict": (
        "Base every score only on what the resume explicitly supports.  Anything "
        "missing, implied or assumed counts as missing and must lower the score.  "
        "A listed skill without evidence of use is not full credit."
    ),
    "harsh": (
        "Assume nothing.  Every requirement without concrete, measurable resume "
        "evidence is a gap.  Sparse or generic resumes must score below 20 in "
        "every category.  Do not round scores up."
    ),
}

_SYSTEM_V1 = """\
You are an expert recruiter evaluating job candidates.
{rubric}

Respond ONLY with a JSON object (no markdown fences):
{{"score": <integer 0-100>, "summary": "<one sentence explaining the score>"}}

Guidelines:
- 0-30: poor match, major skill gaps or misalignment
- 31-60: fair match, some relevant experience but notable gaps
- 61-85: good match, solid alignment with most requirements
- 86-100: excellent match, strong alignment with all key requirements
"""

_SYSTEM_V2 = """\
You are an expert hiring manager evaluating how well a candidate's resume
matches a specific job.
{rubric}

If screening rules are supplied they are mandatory.  If a rule defines a
disqualification condition and the candidate meets it, set every score to 0
and set "disqualified" to true with the exact rule and resume evidence.

Respond ONLY with a JSON object (no markdown fences):
{{
  "overallMatch": <integer 0-100>,
  "technicalSkills": <integer 0-100>,
  "experience": <integer 0-100>,
  "culturalFit": <integer 0-100>,
  "summary": "<2-4 factual sentences>",
  "reasoning": "<the gaps and evidence behind the scores>",
  "strengths": ["<strength with resume evidence>"],
  "improvementAreas": ["<missing requirement and its impact>"],
  "disqualified": false,
  "disqualificationReason": null
}}

overallMatch = technicalSkills * 0.4 + experience * 0.4 + culturalFit * 0.2
"""

_TEMPLATES: dict[str, str] = {"v1": _SYSTEM_V1, "v2": _SYSTEM_V2}


@dataclass(frozen=True)
class PromptStrategy:
    """Renders chat messages for a :class:`ScoringRequest`."""

    version: str = DEFAULT_PROMPT_VERSION
    strictness: str = DEFAULT_STRICTNESS

    def __post_init__(self) -> None:
        if self.version not in _TEMPLATES:
            raise ActionableError.validation(
                field_name="scoring.prompt_version",
                reason=f"unknown version '{self.version}' (expected one of {', '.join(sorted(_TEMPLATES))})",
            )
        if self.strictness not in _RUBRICS:
            raise ActionableError.validation(
                field_name="scoring.strictness",
                reason=f"unknown strictness '{self.strictness}' (expected one of {', '.join(sorted(_RUBRICS))})",
            )

    def system_prompt(self) -> str:
        return _TEMPLATES[self.version].format(rubric=_RUBRICS[self.strictness])

    def user_prompt(self, request: ScoringRequest) -> str:
        parts = [
            f"JOB TITLE: {request.job_title}",
            f"JOB DESCRIPTION:\n{request.job_description or 'Not provided'}",
            f"JOB REQUIREMENTS:\n{request.job_requirements or request.job_description or 'Not provided'}",
            f"REQUIRED SKILLS: {', '.join(request.job_skills) or 'Not specified'}",
        ]
        if request.custom_rules:
            parts.append(f"SCREENING RULES:\n{request.custom_rules}")
        parts.append(f"CANDIDATE PROFILE:\n{request.candidate_profile_text}")
        return "\n\n".join(parts)

    def messages(self, request: ScoringRequest) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt()},
            {"role": "user", "content": self.user_prompt(request)},
        ]
