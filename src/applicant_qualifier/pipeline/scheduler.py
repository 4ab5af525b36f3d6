"""Bounded-concurrency batch scoring.

Profiles are split into chunks of ``batch_size``.  Chunks run strictly
one after another; the members of a chunk are scored concurrently and
the chunk finishes only when every member has a result (real or
fallback).  A fixed delay separates chunks, and a rolling 60-second
:class:`RateLimiter` caps the number of external calls.

Results come back in **input order**: each call writes to its own slot
and ``asyncio.gather`` preserves positions, whatever order the calls
finish in.

Cancellation is cooperative.  The ``cancel`` event is checked before
each chunk, never mid-chunk, so a cancelled run returns the results of
every chunk it started and nothing else.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from applicant_qualifier.scoring.client import FallbackScorer

if TYPE_CHECKING:
    from collections.abc import Sequence

    from applicant_qualifier.models import CandidateProfile, JobContext, ScoreResult
    from applicant_qualifier.scoring.client import ScoringClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_INTER_CHUNK_DELAY = 0.5
DEFAULT_RATE_LIMIT_PER_MINUTE = 60

ProgressCallback = Callable[[int, int], None]


class RateLimiter:
    """At most ``max_calls`` acquisitions in any rolling ``window`` seconds.

    ``clock`` and ``sleep`` are injectable so the window can be tested
    without real waiting.
    """

    def __init__(
        self,
        max_calls: int = DEFAULT_RATE_LIMIT_PER_MINUTE,
        window: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_calls < 1:
            raise ValueError(f"max_calls must be >= 1, got {max_calls}")
        self.max_calls = max_calls
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Wait for a free slot.  Returns the seconds spent waiting."""
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                while self._calls and self._calls[0] <= now - self.window:
                    self._calls.popleft()
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return waited
                delay = self._calls[0] + self.window - now
                logger.debug("Rate ceiling reached — sleeping %.2fs", delay)
                await self._sleep(delay)
                waited += delay


class BatchScheduler:
    """Drives a :class:`ScoringClient` over a batch of profiles.

    Usage::

        scheduler = BatchScheduler(client, batch_size=5, inter_chunk_delay=0.5)
        results = await scheduler.run(profiles, job, on_progress=print)
    """

    def __init__(
        self,
        client: ScoringClient,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        inter_chunk_delay: float = DEFAULT_INTER_CHUNK_DELAY,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._client = client
        self._batch_size = batch_size
        self._inter_chunk_delay = inter_chunk_delay
        self._rate_limiter = rate_limiter or RateLimiter()

    async def run(
        self,
        profiles: Sequence[CandidateProfile],
        job: JobContext,
        *,
        on_progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[ScoreResult]:
        """Score every profile against *job*.

        Returns one result per profile, in input order.  If *cancel* is
        set, scoring stops at the next chunk boundary and the returned
        list covers only the chunks that ran.
        """
        total = len(profiles)
        results: list[ScoreResult] = []
        logger.info(
            "Scoring %d candidate(s) for job %s in chunks of %d",
            total,
            job.job_id,
            self._batch_size,
        )

        for start in range(0, total, self._batch_size):
            if cancel is not None and cancel.is_set():
                logger.warning(
                    "Batch for job %s cancelled after %d/%d candidates",
                    job.job_id,
                    len(results),
                    total,
                )
                break

            if start > 0 and self._inter_chunk_delay > 0:
                await asyncio.sleep(self._inter_chunk_delay)

            chunk = profiles[start : start + self._batch_size]
            results.extend(await self._run_chunk(chunk, job))

            logger.debug("Scored %d/%d candidates for job %s", len(results), total, job.job_id)
            if on_progress is not None:
                on_progress(len(results), total)

        return results

    async def _run_chunk(
        self,
        chunk: Sequence[CandidateProfile],
        job: JobContext,
    ) -> list[ScoreResult]:
        for profile in chunk:
            if not self._client.is_degenerate(profile):
                await self._rate_limiter.acquire()

        outcomes = await asyncio.gather(
            *(self._client.score(profile, job) for profile in chunk),
            return_exceptions=True,
        )

        results: list[ScoreResult] = []
        for profile, outcome in zip(chunk, outcomes, strict=True):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(
                    "Unexpected error scoring %s — substituting fallback: %r",
                    profile.candidate_id,
                    outcome,
                )
                results.append(FallbackScorer.technical_failure(profile.candidate_id))
            else:
                results.append(outcome)
        return results
