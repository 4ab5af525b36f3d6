"""CLI command handlers for the applicant qualification pipeline.

Each public function corresponds to a CLI subcommand and encapsulates
the wiring, orchestration, and output for that command.
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from applicant_qualifier.config import Settings, load_job, load_settings
from applicant_qualifier.credits import CreditLedger
from applicant_qualifier.logging import configure_file_logging, logger
from applicant_qualifier.models import CandidateDecision, CreditType, RawDocument
from applicant_qualifier.pipeline.orchestrator import QualificationOrchestrator
from applicant_qualifier.pipeline.scheduler import BatchScheduler, RateLimiter
from applicant_qualifier.scoring import (
    FallbackScorer,
    OllamaScoringCapability,
    PromptStrategy,
    ScoringClient,
)
from applicant_qualifier.store import DecisionStore, TransactionJournal


def build_orchestrator(
    settings: Settings,
    ledger: CreditLedger,
) -> tuple[QualificationOrchestrator, OllamaScoringCapability]:
    """Wire the pipeline from validated settings."""
    # One limiter for first attempts (scheduler) and retries (capability)
    rate_limiter = RateLimiter(settings.batch.rate_limit_per_minute)
    capability = OllamaScoringCapability(
        base_url=settings.scoring.base_url,
        model=settings.scoring.model,
        prompts=PromptStrategy(
            version=settings.scoring.prompt_version,
            strictness=settings.scoring.strictness,
        ),
        max_retries=settings.scoring.max_retries,
        rate_limiter=rate_limiter,
    )
    client = ScoringClient(
        capability,
        fallback=FallbackScorer(settings.scoring.seed),
        timeout=settings.scoring.timeout_seconds,
    )
    scheduler = BatchScheduler(
        client,
        batch_size=settings.batch.batch_size,
        inter_chunk_delay=settings.batch.inter_chunk_delay,
        rate_limiter=rate_limiter,
    )
    orchestrator = QualificationOrchestrator(
        ledger=ledger,
        scheduler=scheduler,
        store=DecisionStore(settings.output.decisions_dir),
    )
    return orchestrator, capability


def read_documents(paths: list[str]) -> list[RawDocument]:
    """Turn resume paths into documents; the file stem is the candidate id."""
    documents: list[RawDocument] = []
    for raw in paths:
        path = Path(raw)
        try:
            content = path.read_bytes()
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            content = None
        documents.append(
            RawDocument(
                candidate_id=path.stem,
                content=content,
                mime_type=path.suffix or "txt",
                display_name=path.stem.replace("_", " ").title(),
            )
        )
    return documents


def format_decision(decision: CandidateDecision) -> str:
    score = decision.score_result
    return (
        f"{decision.candidate_id:<24} {decision.stage.value:<12} "
        f"overall={score.overall_match:>3} tech={score.technical_skills:>3} "
        f"exp={score.experience:>3} fit={score.cultural_fit:>3}  {score.summary}"
    )


def handle_qualify(args: argparse.Namespace) -> None:
    """Score the given resumes against one job and print each decision."""
    settings = load_settings(args.settings)
    configure_file_logging(settings.output.log_dir)
    job = load_job(args.job, default_thresholds=settings.thresholds)

    ledger = CreditLedger(journal=TransactionJournal(settings.output.transactions_dir))
    orchestrator, capability = build_orchestrator(settings, ledger)
    documents = read_documents(args.resumes)

    def _progress(percent: int, message: str) -> None:
        print(f"[{percent:>3}%] {message}")

    async def _run() -> list[CandidateDecision]:
        if args.credits > 0:
            await ledger.grant(args.org, CreditType.CV_PROCESSING, args.credits, "CLI starting balance")
        await capability.health_check()
        return await orchestrator.qualify(args.org, job, documents, on_progress=_progress)

    decisions = asyncio.run(_run())

    print(f"\n{'=' * 60}")
    print(f" {job.title} ({job.job_id})")
    print(f"{'=' * 60}")
    for decision in decisions:
        print(format_decision(decision))
    print(f"{'=' * 60}")
    print(f" Decided:           {len(decisions)} of {len(documents)} uploads")
    print(f" Credits remaining: {ledger.balance(args.org, CreditType.CV_PROCESSING)}")
    print(f"{'=' * 60}\n")


def handle_check_config(args: argparse.Namespace) -> None:
    """Validate settings.toml and report the effective values."""
    settings = load_settings(args.settings)
    print(f"Settings OK: {args.settings}")
    print(f"  model:      {settings.scoring.model} @ {settings.scoring.base_url}")
    print(f"  prompt:     {settings.scoring.prompt_version} ({settings.scoring.strictness})")
    print(
        f"  batch:      {settings.batch.batch_size} per chunk, "
        f"{settings.batch.inter_chunk_delay}s delay, "
        f"{settings.batch.rate_limit_per_minute}/min"
    )
    t = settings.thresholds
    print(
        f"  thresholds: match={t.score_matching} invite={t.email_invite} "
        f"shortlist={t.auto_shortlist} denied={t.auto_denied}"
    )
