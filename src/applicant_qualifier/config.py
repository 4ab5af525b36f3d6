"""Configuration loading and validation.

Loads ``settings.toml`` and validates all fields at startup, before any
credits are reserved or scoring calls made.  A bad timeout discovered
halfway through a paid batch is far more costly than a startup error.

The validated config is exposed as a :class:`Settings` dataclass with
typed fields for each section: ``scoring``, ``batch``, ``thresholds``
and ``output``.  Every section is optional; missing keys take defaults.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from applicant_qualifier.errors import ActionableError
from applicant_qualifier.models import JobContext, ThresholdSet
from applicant_qualifier.scoring.prompts import (
    DEFAULT_PROMPT_VERSION,
    DEFAULT_STRICTNESS,
    PromptStrategy,
)

# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ScoringConfig:
    """Scoring capability settings from ``[scoring]``."""

    base_url: str = "http://localhost:11434"
    model: str = "llama3.1:8b"
    timeout_seconds: float = 60.0
    max_retries: int = 3
    prompt_version: str = DEFAULT_PROMPT_VERSION
    strictness: str = DEFAULT_STRICTNESS
    seed: int | None = None


@dataclass
class BatchConfig:
    """Batch scheduling settings from ``[batch]``."""

    batch_size: int = 5
    inter_chunk_delay: float = 0.5
    rate_limit_per_minute: int = 60


@dataclass
class OutputConfig:
    """Output settings from ``[output]``."""

    decisions_dir: str = "./data/decisions"
    transactions_dir: str = "./data/transactions"
    log_dir: str = "./data/logs"


@dataclass
class Settings:
    """Top-level validated configuration."""

    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    thresholds: ThresholdSet = field(default_factory=ThresholdSet)
    output: OutputConfig = field(default_factory=OutputConfig)


# ---------------------------------------------------------------------------
# Default settings path
# ---------------------------------------------------------------------------

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")


# ---------------------------------------------------------------------------
# Loading and validation
# ---------------------------------------------------------------------------


def load_settings(path: str | Path = DEFAULT_SETTINGS_PATH) -> Settings:
    """Load and validate settings from a TOML file.

    Raises :class:`~applicant_qualifier.errors.ActionableError`:
      - CONFIG if the file is missing or a section is not a table
      - VALIDATION if field values are out of range
      - PARSE if the TOML is malformed

    Returns a fully validated :class:`Settings` instance.
    """
    filepath = Path(path)
    if not filepath.exists():
        raise ActionableError.config(
            field_name="settings_path",
            reason=f"Settings file not found: {filepath}",
            suggestion=f"Create {filepath} or copy from config/settings.toml.example",
        )

    raw_text = filepath.read_text(encoding="utf-8")
    try:
        data = tomllib.loads(raw_text)
    except tomllib.TOMLDecodeError as exc:
        raise ActionableError.parse(
            source=str(filepath),
            raw_error=str(exc),
            suggestion=f"Fix TOML syntax in {filepath}",
        ) from None

    return _validate(data)


def _validate(data: dict[str, object]) -> Settings:
    """Validate raw TOML data and return a Settings instance."""

    # -- scoring section -----------------------------------------------------
    scoring_data = _optional_section(data, "scoring")

    base_url = str(scoring_data.get("base_url", "http://localhost:11434"))
    if not base_url.startswith(("http://", "https://")):
        raise ActionableError.validation(
            field_name="scoring.base_url",
            reason=f"'{base_url}' is missing a scheme (http:// or https://)",
            suggestion="Set [scoring].base_url to a URL starting with http:// or https://",
        )

    seed = scoring_data.get("seed")
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        raise ActionableError.validation(
            field_name="scoring.seed",
            reason=f"is {seed!r} — must be an integer",
        )

    scoring = ScoringConfig(
        base_url=base_url,
        model=str(scoring_data.get("model", "llama3.1:8b")),
        timeout_seconds=float(scoring_data.get("timeout_seconds", 60.0)),  # type: ignore[arg-type]
        max_retries=int(scoring_data.get("max_retries", 3)),  # type: ignore[call-overload]
        prompt_version=str(scoring_data.get("prompt_version", DEFAULT_PROMPT_VERSION)),
        strictness=str(scoring_data.get("strictness", DEFAULT_STRICTNESS)),
        seed=seed,
    )

    if scoring.timeout_seconds <= 0:
        raise ActionableError.validation(
            field_name="scoring.timeout_seconds",
            reason=f"is {scoring.timeout_seconds} — must be > 0",
            suggestion="Set [scoring].timeout_seconds to a positive number of seconds",
        )
    if scoring.max_retries < 1:
        raise ActionableError.validation(
            field_name="scoring.max_retries",
            reason=f"is {scoring.max_retries} — must be >= 1",
        )
    # Raises VALIDATION for unknown version / strictness
    PromptStrategy(version=scoring.prompt_version, strictness=scoring.strictness)

    # -- batch section -------------------------------------------------------
    batch_data = _optional_section(data, "batch")

    batch = BatchConfig(
        batch_size=int(batch_data.get("batch_size", 5)),  # type: ignore[call-overload]
        inter_chunk_delay=float(batch_data.get("inter_chunk_delay", 0.5)),  # type: ignore[arg-type]
        rate_limit_per_minute=int(batch_data.get("rate_limit_per_minute", 60)),  # type: ignore[call-overload]
    )

    if batch.batch_size < 1:
        raise ActionableError.validation(
            field_name="batch.batch_size",
            reason=f"is {batch.batch_size} — must be >= 1",
            suggestion="Set [batch].batch_size to at least 1",
        )
    if batch.inter_chunk_delay < 0:
        raise ActionableError.validation(
            field_name="batch.inter_chunk_delay",
            reason=f"is {batch.inter_chunk_delay} — must be >= 0",
        )
    if batch.rate_limit_per_minute < 1:
        raise ActionableError.validation(
            field_name="batch.rate_limit_per_minute",
            reason=f"is {batch.rate_limit_per_minute} — must be >= 1",
        )

    # -- thresholds section --------------------------------------------------
    # ThresholdSet validates the 0..100 range itself.
    thresholds = ThresholdSet.from_mapping(_optional_section(data, "thresholds"))

    # -- output section ------------------------------------------------------
    output_data = _optional_section(data, "output")

    output = OutputConfig(
        decisions_dir=str(output_data.get("decisions_dir", "./data/decisions")),
        transactions_dir=str(output_data.get("transactions_dir", "./data/transactions")),
        log_dir=str(output_data.get("log_dir", "./data/logs")),
    )

    return Settings(scoring=scoring, batch=batch, thresholds=thresholds, output=output)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _optional_section(data: dict[str, object], name: str) -> dict[str, object]:
    """Return a top-level section (empty if absent), or raise CONFIG if not a table."""
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ActionableError.config(
            field_name=name,
            reason=f"[{name}] must be a table, not {type(section).__name__}",
            suggestion=f"Define [{name}] as a TOML table",
        )
    return section


# ---------------------------------------------------------------------------
# Job definitions
# ---------------------------------------------------------------------------


def load_job(path: str | Path, *, default_thresholds: ThresholdSet | None = None) -> JobContext:
    """Load a :class:`JobContext` from a TOML file with a ``[job]`` table.

    Thresholds come from ``[job.thresholds]``; any that are missing fall
    back to *default_thresholds* (the ``[thresholds]`` section of
    settings.toml) and then to the built-in defaults.

    Raises :class:`~applicant_qualifier.errors.ActionableError`:
      - CONFIG if the file or a required field is missing
      - PARSE if the TOML is malformed
      - VALIDATION if a threshold is out of range
    """
    filepath = Path(path)
    if not filepath.exists():
        raise ActionableError.config(
            field_name="job_path",
            reason=f"Job file not found: {filepath}",
            suggestion="Pass the path to a TOML file containing a [job] table",
        )
    try:
        data = tomllib.loads(filepath.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ActionableError.parse(source=str(filepath), raw_error=str(exc)) from None

    job_data = _optional_section(data, "job")
    for required in ("id", "title"):
        if not str(job_data.get(required, "")).strip():
            raise ActionableError.config(
                field_name=f"job.{required}",
                reason=f"Required field '{required}' is missing from [job] in {filepath}",
                suggestion=f"Add '{required}' to the [job] table",
            )

    skills = job_data.get("skills", [])
    if not isinstance(skills, list):
        raise ActionableError.validation(
            field_name="job.skills",
            reason="must be a list of strings",
        )

    threshold_data = job_data.get("thresholds", {})
    if not isinstance(threshold_data, dict):
        raise ActionableError.config(
            field_name="job.thresholds",
            reason="[job.thresholds] must be a table",
        )

    return JobContext(
        job_id=str(job_data["id"]),
        title=str(job_data["title"]),
        description=str(job_data.get("description", "")),
        requirements=str(job_data.get("requirements", "")),
        skills=tuple(str(s) for s in skills),
        thresholds=ThresholdSet.from_mapping(threshold_data, defaults=default_thresholds),
        custom_rules=str(job_data.get("custom_rules", "")),
    )
