"""External scoring capability — the one slow, paid, unreliable dependency.

:class:`ScoringCapability` is the contract the ScoringClient depends on:
one request in, one raw response (JSON text or an already-decoded dict)
out.  It is injected at construction, never held as a module global, so
tests can pass a fake and production can swap backends.

:class:`OllamaScoringCapability` is the bundled backend.  It wraps the
``ollama`` SDK's :class:`AsyncClient` with:

- **Retry with backoff**: 408/429/5xx responses and connection errors are
  retried up to ``max_retries`` times with exponential backoff
- **Rate limiting**: with a ``rate_limiter`` every retry takes a slot
  from it, so retries count against the same ceiling as first attempts
  (which the BatchScheduler acquires)
- **Health check**: verify the server is reachable and the model pulled

All failures surface as :class:`~applicant_qualifier.errors.ExternalScoringError`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

import ollama as ollama_sdk

from applicant_qualifier.errors import ActionableError
from applicant_qualifier.logging import logger
from applicant_qualifier.scoring.prompts import PromptStrategy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from applicant_qualifier.pipeline.scheduler import RateLimiter

_T = TypeVar("_T")

# Status codes that warrant a retry (server overloaded / temporary failure)
_RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class ScoringRequest:
    """Everything the capability sees about one (candidate, job) pair."""

    job_title: str
    job_description: str
    job_requirements: str
    job_skills: tuple[str, ...]
    candidate_profile_text: str
    custom_rules: str = ""


class ScoringCapability(Protocol):
    """Scores one request.  May raise anything; the client absorbs it."""

    async def score(self, request: ScoringRequest) -> str | Mapping[str, Any]: ...


class OllamaScoringCapability:
    """Scores candidates with a local Ollama chat model in JSON mode.

    Usage::

        capability = OllamaScoringCapability(
            base_url="http://localhost:11434",
            model="llama3.1:8b",
        )
        await capability.health_check()
        raw = await capability.score(request)   # → JSON text
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        prompts: PromptStrategy | None = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        temperature: float = 0.1,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self.prompts = prompts or PromptStrategy()
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.temperature = temperature
        self.rate_limiter = rate_limiter
        self._client = ollama_sdk.AsyncClient(host=base_url)

    # -- Public API ----------------------------------------------------------

    async def score(self, request: ScoringRequest) -> str:
        """Send the scoring prompt and return the model's raw JSON text."""

        async def _call() -> str:
            response = await self._client.chat(
                model=self.model,
                messages=self.prompts.messages(request),
                format="json",
                options={"temperature": self.temperature},
            )
            return response.message.content or ""

        return await self._with_retry(_call)

    async def health_check(self) -> None:
        """Verify Ollama is reachable and the scoring model is available.

        Raises :class:`~applicant_qualifier.errors.ActionableError`:
          - CONNECTION if Ollama is unreachable
          - SCORING if the model is not pulled

        Call before reserving credits so an unreachable backend does not
        turn a whole batch into fallback scores.
        """
        try:
            response = await self._client.list()
        except (ConnectionError, OSError) as exc:
            raise ActionableError.connection(
                service="Ollama",
                url=self.base_url,
                raw_error=str(exc),
            ) from None

        available = {m.model for m in response.models if m.model}
        # Ollama model names may include :latest suffix — normalise
        available |= {name.split(":")[0] for name in available}
        if self.model not in available and self.model.split(":")[0] not in available:
            raise ActionableError.scoring(
                model=self.model,
                raw_error=f"Model '{self.model}' is not pulled in Ollama",
                suggestion=f"Run: ollama pull {self.model}",
            )
        logger.info("Ollama health check passed — %s available", self.model)

    # -- Retry logic ---------------------------------------------------------

    async def _with_retry(self, fn: Callable[[], Awaitable[_T]]) -> _T:
        """Call *fn* with exponential backoff on retryable errors.

        Non-retryable errors (e.g. 404 model not found) fail immediately.
        """
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            if attempt > 1 and self.rate_limiter is not None:
                await self.rate_limiter.acquire()
            try:
                return await fn()
            except ollama_sdk.ResponseError as exc:
                last_error = exc
                if exc.status_code not in _RETRYABLE_STATUS_CODES:
                    raise ActionableError.scoring(model=self.model, raw_error=str(exc)) from None
                status = f"status {exc.status_code}"
            except (ConnectionError, OSError) as exc:
                last_error = exc
                status = "connection failed"

            if attempt < self.max_retries:
                delay = self.base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Ollama scoring attempt %d/%d failed (%s), retrying in %.1fs: %s",
                    attempt,
                    self.max_retries,
                    status,
                    delay,
                    last_error,
                )
                await asyncio.sleep(delay)

        raise ActionableError.scoring(
            model=self.model,
            raw_error=f"Failed after {self.max_retries} attempts: {last_error}",
            suggestion="Ollama may be overloaded — check resources and retry",
        )
