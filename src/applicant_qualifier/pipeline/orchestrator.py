"""Qualification orchestrator — documents in, persisted decisions out.

The orchestrator owns the control flow and the credit lifecycle but
delegates all domain logic:

1. Normalize each uploaded document (no credits consumed; unreadable or
   empty documents are skipped and never charged)
2. Reserve one ``cv_processing`` credit per profile — if the balance is
   short the whole batch is refused before any scoring call
3. Score every profile through the BatchScheduler
4. Apply the ThresholdPolicy to each result
5. Persist the decisions; if that fails release the whole reservation
   and re-raise
6. Commit the reservation (fallback-scored candidates still consume
   their credit); on cancellation commit what was processed and release
   the rest; on an unexpected error release everything
7. Notify invitation-eligible candidates

Progress is reported on a 0–100 scale: 0–10 for normalization and
reservation, 10–85 for scoring, 85–100 for decisions and persistence.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

from applicant_qualifier.errors import (
    ActionableError,
    ExtractionFailedError,
    InvalidInputError,
)
from applicant_qualifier.models import CandidateDecision, CreditType, JobContext, Stage
from applicant_qualifier.pipeline.policy import decide
from applicant_qualifier.profile import ProfileNormalizer

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from applicant_qualifier.credits.ledger import CreditLedger, ReservationToken
    from applicant_qualifier.models import CandidateProfile, RawDocument
    from applicant_qualifier.pipeline.scheduler import BatchScheduler
    from applicant_qualifier.store import DecisionStore

logger = logging.getLogger(__name__)

SETUP_DONE = 10
SCORING_DONE = 85


class Notifier(Protocol):
    """Sends the invitation for an ``invited`` decision."""

    async def notify_invited(self, job: JobContext, decision: CandidateDecision) -> None: ...


class _Progress:
    """Forwards monotonically non-decreasing percentages to a callback."""

    def __init__(self, callback: Callable[[int, str], None] | None) -> None:
        self._callback = callback
        self.last = 0

    def __call__(self, percent: float, message: str) -> None:
        value = max(self.last, min(100, int(percent)))
        self.last = value
        if self._callback is not None:
            self._callback(value, message)


class QualificationOrchestrator:
    """Runs one qualification batch end to end.

    Usage::

        orchestrator = QualificationOrchestrator(
            ledger=ledger,
            scheduler=BatchScheduler(ScoringClient(capability)),
            store=DecisionStore("data/decisions"),
        )
        decisions = await orchestrator.qualify("org-1", job, documents)
    """

    def __init__(
        self,
        *,
        ledger: CreditLedger,
        scheduler: BatchScheduler,
        normalizer: ProfileNormalizer | None = None,
        store: DecisionStore | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._ledger = ledger
        self._scheduler = scheduler
        self._normalizer = normalizer or ProfileNormalizer()
        self._store = store
        self._notifier = notifier

    async def qualify(
        self,
        org_id: str,
        job: JobContext,
        documents: Sequence[RawDocument],
        *,
        on_progress: Callable[[int, str], None] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[CandidateDecision]:
        """Score *documents* against *job* and return decisions in input order.

        Documents that cannot be normalized are skipped, so the result may
        be shorter than *documents*; it is also shorter if *cancel* is set
        mid-run.

        Raises:
            InvalidInputError: *org_id* or *job* is unusable.
            InsufficientCreditsError: the balance cannot cover every
                readable document; nothing is debited or scored.
        """
        if not org_id or not org_id.strip():
            raise ActionableError.invalid_input("org_id", "organization id must be non-empty")
        if not isinstance(job, JobContext):
            raise ActionableError.invalid_input("job", f"expected JobContext, got {type(job).__name__}")

        progress = _Progress(on_progress)
        progress(0, "Preparing candidate profiles")

        profiles = self._normalize_all(documents, job, progress)
        if not profiles:
            logger.warning("No readable candidate documents for job %s — nothing to score", job.job_id)
            progress(100, "No candidates to score")
            return []

        token = await self._ledger.reserve(org_id, CreditType.CV_PROCESSING, len(profiles))
        progress(SETUP_DONE, f"Reserved {len(profiles)} credit(s)")

        def _on_batch(processed: int, total: int) -> None:
            span = SCORING_DONE - SETUP_DONE
            progress(SETUP_DONE + span * processed / total, f"Scored {processed}/{total} candidates")

        try:
            results = await self._scheduler.run(
                profiles, job, on_progress=_on_batch, cancel=cancel
            )
        except BaseException:
            logger.error("Scoring for job %s aborted — releasing reservation %s", job.job_id, token.id)
            await self._ledger.release(token)
            raise

        decisions = [decide(job.thresholds, result) for result in results]
        progress(SCORING_DONE + 5, "Applied qualification thresholds")

        if self._store is not None:
            try:
                self._store.record(job, decisions)
            except BaseException:
                logger.error(
                    "Persisting decisions for job %s failed — releasing reservation %s",
                    job.job_id,
                    token.id,
                )
                await self._ledger.release(token)
                raise

        await self._settle(token, processed=len(results))
        await self._notify(job, decisions)

        progress(100, "Qualification complete")
        _log_summary(job, decisions)
        return decisions

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _normalize_all(
        self,
        documents: Sequence[RawDocument],
        job: JobContext,
        progress: _Progress,
    ) -> list[CandidateProfile]:
        profiles: list[CandidateProfile] = []
        seen: set[str] = set()
        for index, document in enumerate(documents, 1):
            if document.candidate_id in seen:
                logger.warning(
                    "Duplicate candidate %s for job %s — skipping repeat upload",
                    document.candidate_id,
                    job.job_id,
                )
                continue
            try:
                profile = self._normalizer.from_document(document)
            except (InvalidInputError, ExtractionFailedError) as exc:
                logger.warning("Skipping candidate %s (not charged): %s", document.candidate_id, exc.error)
                continue
            seen.add(document.candidate_id)
            profiles.append(profile)
            progress(5 * index / len(documents), f"Prepared {index}/{len(documents)} documents")
        return profiles

    async def _settle(self, token: ReservationToken, *, processed: int) -> None:
        if processed == token.amount:
            await self._ledger.commit(token)
            return
        if processed > 0:
            await self._ledger.commit(token, processed)
        logger.warning(
            "Run stopped after %d/%d candidates — releasing %d unused credit(s)",
            processed,
            token.amount,
            token.amount - processed,
        )
        await self._ledger.release(token)

    async def _notify(self, job: JobContext, decisions: Sequence[CandidateDecision]) -> None:
        if self._notifier is None:
            return
        for decision in decisions:
            if decision.stage is not Stage.INVITED:
                continue
            try:
                await self._notifier.notify_invited(job, decision)
            except Exception:
                logger.exception(
                    "Invitation notification failed for %s on job %s",
                    decision.candidate_id,
                    job.job_id,
                )


def _log_summary(job: JobContext, decisions: Sequence[CandidateDecision]) -> None:
    counts = {stage: 0 for stage in (Stage.SHORTLISTED, Stage.INVITED, Stage.QUALIFIED, Stage.DENIED)}
    for decision in decisions:
        counts[decision.stage] += 1
    fallbacks = sum(1 for d in decisions if d.score_result.is_fallback)
    logger.info(
        "Job %s: %d decided — %s (%d fallback-scored)",
        job.job_id,
        len(decisions),
        ", ".join(f"{count} {stage.value}" for stage, count in counts.items()),
        fallbacks,
    )
