"""Actionable error hierarchy for the applicant qualification pipeline.

Errors are classified by **recovery path**, not by origin.
Each error type carries structured guidance for three audiences:
  - The calling code (typed ``error_type`` for routing)
  - The human operator (``suggestion`` + ``troubleshooting`` steps)
  - An AI agent (``ai_guidance`` with concrete next actions)

Only credit failures and boundary validation failures reach the caller
as hard failures.  Per-candidate scoring failures are absorbed inside
the ScoringClient and represented as fallback scores.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class ErrorType(StrEnum):
    """Recovery-path categories — what to *do*, not where it came from."""

    CONFIG = "config"
    CONNECTION = "connection"
    SCORING = "scoring"
    CREDITS = "credits"
    RESERVATION = "reservation"
    EXTRACTION = "extraction"
    VALIDATION = "validation"
    PARSE = "parse"
    UNEXPECTED = "unexpected"


# ---------------------------------------------------------------------------
# Guidance dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AIGuidance:
    """Machine-readable guidance for an AI agent consuming this error."""

    action_required: str
    command: str | None = None
    checks: list[str] | None = None
    steps: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"action_required": self.action_required}
        if self.command is not None:
            result["command"] = self.command
        if self.checks is not None:
            result["checks"] = self.checks
        if self.steps is not None:
            result["steps"] = self.steps
        return result


@dataclass(frozen=True)
class Troubleshooting:
    """Sequential, human-readable recovery steps for the operator."""

    steps: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"steps": self.steps}


# ---------------------------------------------------------------------------
# Base actionable error
# ---------------------------------------------------------------------------


@dataclass
class ActionableError(Exception):
    """Structured error with embedded recovery guidance.

    Use the factory classmethods rather than constructing directly —
    they encode domain knowledge so callers don't have to.  Factories
    for the pipeline taxonomy return the matching subclass, so callers
    can ``except InsufficientCreditsError`` without inspecting
    ``error_type``.
    """

    error: str
    error_type: ErrorType
    service: str

    success: bool = field(default=False, init=False)
    suggestion: str | None = None
    ai_guidance: AIGuidance | None = None
    troubleshooting: Troubleshooting | None = None
    context: dict[str, Any] | None = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    # Make it work as a real exception
    def __post_init__(self) -> None:
        super().__init__(self.error)

    # -- serialisation -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Compact JSON-ready dict — ``None`` values are excluded."""
        result: dict[str, Any] = {
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type.value,
            "service": self.service,
            "timestamp": self.timestamp,
        }
        if self.suggestion is not None:
            result["suggestion"] = self.suggestion
        if self.ai_guidance is not None:
            result["ai_guidance"] = self.ai_guidance.to_dict()
        if self.troubleshooting is not None:
            result["troubleshooting"] = self.troubleshooting.to_dict()
        if self.context is not None:
            result["context"] = self.context
        return result

    # -- factory methods -----------------------------------------------------

    @classmethod
    def config(
        cls,
        field_name: str,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Missing or invalid configuration in settings.toml."""
        return cls(
            error=f"Configuration error — {field_name}: {reason}",
            error_type=ErrorType.CONFIG,
            service="settings.toml",
            suggestion=suggestion or f"Fix '{field_name}' in config/settings.toml",
            ai_guidance=AIGuidance(
                action_required=f"Correct the '{field_name}' value in config/settings.toml",
                checks=[
                    "Verify config/settings.toml exists",
                    f"Verify '{field_name}' is present and valid",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    "1. Open config/settings.toml",
                    f"2. Locate the '{field_name}' setting",
                    f"3. Fix the issue: {reason}",
                    "4. Save and re-run",
                ]
            ),
        )

    @classmethod
    def connection(
        cls,
        service: str,
        url: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Scoring capability unreachable."""
        return cls(
            error=f"Cannot connect to {service} at {url}: {raw_error}",
            error_type=ErrorType.CONNECTION,
            service=service,
            suggestion=suggestion or f"Verify {service} is running at {url}",
            ai_guidance=AIGuidance(
                action_required=f"Verify {service} is reachable",
                command=f"curl -s {url}",
                checks=[
                    f"Is {service} running?",
                    f"Is the URL {url} correct in settings.toml?",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Verify {service} is running",
                    f"2. Test connectivity: curl -s {url}",
                    "3. Check [scoring].base_url in config/settings.toml",
                    "4. Re-run the command",
                ]
            ),
        )

    @classmethod
    def scoring(
        cls,
        model: str,
        raw_error: str,
        *,
        candidate_id: str | None = None,
        suggestion: str | None = None,
    ) -> ExternalScoringError:
        """External scoring call failed after retries, timed out, or returned garbage."""
        return ExternalScoringError(
            error=f"Scoring call failed for model '{model}': {raw_error}",
            error_type=ErrorType.SCORING,
            service="scoring",
            suggestion=suggestion or f"Verify model '{model}' is available and responsive",
            ai_guidance=AIGuidance(
                action_required="Verify scoring model availability",
                command=f"ollama list | grep {model}",
                checks=[
                    f"Is model '{model}' pulled? Run: ollama pull {model}",
                    "Is [scoring].timeout_seconds long enough for this model?",
                ],
            ),
            context={"candidate_id": candidate_id} if candidate_id else None,
        )

    @classmethod
    def insufficient_credits(
        cls,
        org_id: str,
        credit_type: str,
        required: int,
        available: int,
    ) -> InsufficientCreditsError:
        """The organization cannot pay for the whole batch."""
        return InsufficientCreditsError(
            error=(
                f"Insufficient '{credit_type}' credits for organization '{org_id}': "
                f"{required} required, {available} available"
            ),
            error_type=ErrorType.CREDITS,
            service="credits",
            suggestion=f"Purchase at least {required - available} more '{credit_type}' credits or submit a smaller batch",
            ai_guidance=AIGuidance(
                action_required="Top up the organization's balance or reduce the batch size",
                checks=[
                    f"Current balance is {available}",
                    f"Batch requires {required}",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    "1. Check the organization's credit balance",
                    f"2. Add at least {required - available} '{credit_type}' credits",
                    "3. Resubmit the batch",
                ]
            ),
            context={
                "org_id": org_id,
                "credit_type": credit_type,
                "required": required,
                "available": available,
            },
        )

    @classmethod
    def reservation_mismatch(
        cls,
        token_id: str,
        reason: str,
    ) -> ReservationMismatchError:
        """commit/release called on an unknown or already-finalized reservation."""
        return ReservationMismatchError(
            error=f"Reservation '{token_id}' cannot be settled: {reason}",
            error_type=ErrorType.RESERVATION,
            service="credits",
            suggestion="This is an internal invariant violation — check the calling code",
            ai_guidance=AIGuidance(
                action_required="Trace the reservation lifecycle for this token",
                checks=[
                    "Was the token issued by this ledger instance?",
                    "Was commit or release already called for the full amount?",
                ],
            ),
            context={"token_id": token_id},
        )

    @classmethod
    def extraction(
        cls,
        candidate_id: str,
        mime_type: str,
        raw_error: str,
    ) -> ExtractionFailedError:
        """Document could not be turned into text — candidate is skipped."""
        return ExtractionFailedError(
            error=f"Text extraction failed for candidate '{candidate_id}' ({mime_type}): {raw_error}",
            error_type=ErrorType.EXTRACTION,
            service="extraction",
            suggestion="Re-upload the document as PDF, DOCX or plain text",
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Open the uploaded file for '{candidate_id}' and confirm it is readable",
                    "2. Convert it to a supported format",
                    "3. Resubmit the candidate",
                ]
            ),
            context={"candidate_id": candidate_id, "mime_type": mime_type},
        )

    @classmethod
    def invalid_input(
        cls,
        field_name: str,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> InvalidInputError:
        """Malformed candidate input at the orchestration boundary."""
        return InvalidInputError(
            error=f"Invalid input — {field_name}: {reason}",
            error_type=ErrorType.VALIDATION,
            service="validation",
            suggestion=suggestion or f"Fix '{field_name}': {reason}",
            ai_guidance=AIGuidance(
                action_required=f"Correct the value for '{field_name}'",
            ),
        )

    @classmethod
    def validation(
        cls,
        field_name: str,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Input validation failure (TOML, CLI args, etc.)."""
        return cls(
            error=f"Validation error — {field_name}: {reason}",
            error_type=ErrorType.VALIDATION,
            service="validation",
            suggestion=suggestion or f"Fix '{field_name}': {reason}",
            ai_guidance=AIGuidance(
                action_required=f"Correct the value for '{field_name}'",
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Check the value of '{field_name}'",
                    f"2. Issue: {reason}",
                    "3. Correct and retry",
                ]
            ),
        )

    @classmethod
    def parse(
        cls,
        source: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """A file or payload could not be parsed."""
        return cls(
            error=f"Parse failure in {source}: {raw_error}",
            error_type=ErrorType.PARSE,
            service=source,
            suggestion=suggestion or f"Fix the syntax of {source}",
        )

    @classmethod
    def unexpected(
        cls,
        service: str,
        operation: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Catch-all for truly unexpected failures."""
        return cls(
            error=f"Unexpected error in {service} during {operation}: {raw_error}",
            error_type=ErrorType.UNEXPECTED,
            service=service,
            suggestion=suggestion or "This is an unexpected error — check logs for details",
            ai_guidance=AIGuidance(
                action_required="Analyze the error and escalate if needed",
                checks=[
                    "Check the full traceback in logs",
                    f"Is {service} in a known-good state?",
                ],
            ),
        )

    @classmethod
    def from_exception(
        cls,
        error: Exception,
        service: str,
        operation: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Auto-classify an exception by keyword patterns.

        A caller-supplied ``suggestion`` is always preserved — it carries
        context the generic classifier cannot infer.
        """
        error_str = str(error).lower()
        raw_error = str(error)

        if isinstance(error, TimeoutError) or any(
            kw in error_str for kw in ("timeout", "timed out")
        ):
            return cls.connection(service, "", raw_error or "timed out", suggestion=suggestion)

        if any(kw in error_str for kw in ("connection refused", "unreachable", "resolve")):
            return cls.connection(service, "", raw_error, suggestion=suggestion)

        return cls.unexpected(service, operation, raw_error, suggestion=suggestion)


# ---------------------------------------------------------------------------
# Typed subclasses for the pipeline taxonomy
# ---------------------------------------------------------------------------


@dataclass
class InvalidInputError(ActionableError):
    """Malformed candidate input — skip the candidate, do not charge."""


@dataclass
class InsufficientCreditsError(ActionableError):
    """Balance too low — abort the whole batch before any external call."""


@dataclass
class ExternalScoringError(ActionableError):
    """Raised inside the scoring layer; never escapes ScoringClient."""


@dataclass
class ExtractionFailedError(ActionableError):
    """Document could not be converted to text — candidate excluded."""


@dataclass
class ReservationMismatchError(ActionableError):
    """commit/release on an unknown or finalized reservation token."""
