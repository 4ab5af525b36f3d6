"""Global test configuration — shared fixtures and fakes.

This conftest provides:

1. **FakeCapability** — an in-process stand-in for the external scoring
   capability.  Responses are chosen by a marker string found in the
   candidate profile text, so a test can give each candidate its own
   score, delay, or failure.  Every request is recorded for call-count
   assertions.

2. **Factories** — ``make_profile``, ``make_job`` and ``make_document``
   build valid records with realistic defaults.

3. **Pipeline fixtures** — a real ``CreditLedger`` and a
   ``make_orchestrator`` factory wired to a real scheduler and policy
   with zero inter-chunk delay.  Only the capability is faked.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pytest

from applicant_qualifier.credits import CreditLedger
from applicant_qualifier.models import (
    CandidateProfile,
    JobContext,
    RawDocument,
    ThresholdSet,
)
from applicant_qualifier.pipeline.orchestrator import QualificationOrchestrator
from applicant_qualifier.pipeline.scheduler import BatchScheduler, RateLimiter
from applicant_qualifier.profile import ProfileNormalizer
from applicant_qualifier.scoring.capability import ScoringRequest
from applicant_qualifier.scoring.client import FallbackScorer, ScoringClient
from applicant_qualifier.store import DecisionStore

# A resume long enough to clear the degenerate-input gate.
RESUME_TEXT = (
    "Senior backend engineer with eight years of Python experience building "
    "payment APIs on PostgreSQL, asyncio services and Docker deployments."
)


def score_payload(overall: int, **overrides: Any) -> dict[str, Any]:
    """A well-formed v2 capability response."""
    payload: dict[str, Any] = {
        "overallMatch": overall,
        "technicalSkills": overall,
        "experience": overall,
        "culturalFit": overall,
        "summary": f"Scored {overall}",
        "reasoning": "Evidence-based reasoning.",
        "strengths": ["Python"],
        "improvementAreas": ["Kubernetes"],
    }
    payload.update(overrides)
    return payload


class FakeCapability:
    """Scoring capability double.

    ``responses`` maps a marker (found in the profile text) to either a
    response (dict or str), an exception instance to raise, or a
    ``(delay_seconds, response)`` tuple.  Unmatched requests get
    ``default``.
    """

    def __init__(
        self,
        responses: Mapping[str, Any] | None = None,
        default: Any = None,
    ) -> None:
        self.responses = dict(responses or {})
        self.default = default if default is not None else score_payload(50)
        self.requests: list[ScoringRequest] = []
        self.completed: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def score(self, request: ScoringRequest) -> str | Mapping[str, Any]:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            marker, outcome = next(
                ((k, v) for k, v in self.responses.items() if k in request.candidate_profile_text),
                ("", self.default),
            )
            if isinstance(outcome, tuple):
                delay, outcome = outcome
                await asyncio.sleep(delay)
            if isinstance(outcome, BaseException):
                raise outcome
            self.completed.append(marker)
            return outcome
        finally:
            self.in_flight -= 1


@pytest.fixture
def make_profile():
    """Factory fixture — returns a callable that produces a CandidateProfile.

    Usage::

        profile = make_profile("cand-1")
        profile = make_profile("cand-2", text="too short")
    """

    def _factory(candidate_id: str = "cand-1", text: str | None = None) -> CandidateProfile:
        body = text if text is not None else f"{candidate_id} {RESUME_TEXT}"
        return ProfileNormalizer().normalize(candidate_id, body)

    return _factory


@pytest.fixture
def make_job():
    """Factory fixture — returns a callable that produces a JobContext."""

    def _factory(
        thresholds: ThresholdSet | None = None,
        job_id: str = "job-1",
        custom_rules: str = "",
    ) -> JobContext:
        return JobContext(
            job_id=job_id,
            title="Senior Backend Engineer",
            description="Own the payments API.",
            requirements="5+ years of Python",
            skills=("Python", "PostgreSQL"),
            thresholds=thresholds or ThresholdSet(),
            custom_rules=custom_rules,
        )

    return _factory


@pytest.fixture
def make_document():
    """Factory fixture — returns a callable that produces a RawDocument."""

    def _factory(
        candidate_id: str,
        content: bytes | str | None = None,
        mime_type: str = "txt",
    ) -> RawDocument:
        if content is None:
            content = f"{candidate_id} {RESUME_TEXT}".encode()
        return RawDocument(candidate_id=candidate_id, content=content, mime_type=mime_type)

    return _factory


@pytest.fixture
def ledger() -> CreditLedger:
    return CreditLedger()


@pytest.fixture
def make_scheduler():
    """Factory fixture — BatchScheduler over a ScoringClient with no real waiting."""

    def _factory(
        capability: FakeCapability,
        *,
        batch_size: int = 5,
        timeout: float = 5.0,
        seed: int = 7,
    ) -> BatchScheduler:
        client = ScoringClient(capability, fallback=FallbackScorer(seed), timeout=timeout)
        return BatchScheduler(
            client,
            batch_size=batch_size,
            inter_chunk_delay=0.0,
            rate_limiter=RateLimiter(max_calls=10_000),
        )

    return _factory


@pytest.fixture
def make_orchestrator(ledger: CreditLedger, make_scheduler, tmp_path: Path):
    """Factory fixture — real orchestrator with a faked capability.

    Decisions are persisted under ``tmp_path / "decisions"``.
    """

    def _factory(
        capability: FakeCapability,
        *,
        batch_size: int = 5,
        timeout: float = 5.0,
        notifier: Any = None,
    ) -> QualificationOrchestrator:
        return QualificationOrchestrator(
            ledger=ledger,
            scheduler=make_scheduler(capability, batch_size=batch_size, timeout=timeout),
            store=DecisionStore(tmp_path / "decisions"),
            notifier=notifier,
        )

    return _factory
