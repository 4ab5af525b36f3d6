"""Durable JSONL persistence for decisions and credit transactions.

Both stores write **daily append-only** files, one JSON object per line:

- ``<decisions_dir>/YYYY-MM-DD.jsonl`` — one record per candidate decision,
  tagged with the job it was decided against.
- ``<journal_dir>/YYYY-MM-DD.jsonl`` — one record per credit transaction.

Nothing is ever rewritten in place; the files double as the audit trail.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from applicant_qualifier.errors import ActionableError
from applicant_qualifier.models import CandidateDecision

if TYPE_CHECKING:
    from collections.abc import Sequence

    from applicant_qualifier.credits.ledger import CreditTransaction
    from applicant_qualifier.models import JobContext

logger = logging.getLogger(__name__)

_DECISIONS_DIR = Path("data/decisions")
_TRANSACTIONS_DIR = Path("data/transactions")


def _daily_file(directory: Path, day: date | None = None) -> Path:
    day = day or datetime.now(UTC).date()
    return directory / f"{day.isoformat()}.jsonl"


def _append_lines(filepath: Path, records: Sequence[dict[str, Any]]) -> None:
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with filepath.open("a", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")


class DecisionStore:
    """Persistence collaborator for the final decision list.

    Usage::

        store = DecisionStore(decisions_dir="data/decisions")
        path = store.record(job, decisions)
        todays = store.load()
    """

    def __init__(self, decisions_dir: str | Path = _DECISIONS_DIR) -> None:
        self._decisions_dir = Path(decisions_dir)

    def record(self, job: JobContext, decisions: Sequence[CandidateDecision]) -> Path:
        """Append *decisions* to today's file and return its path."""
        filepath = _daily_file(self._decisions_dir)
        records = [
            {"job_id": job.job_id, "job_title": job.title, **decision.to_dict()}
            for decision in decisions
        ]
        _append_lines(filepath, records)
        logger.info("Persisted %d decision(s) for job %s to %s", len(records), job.job_id, filepath)
        return filepath

    def load(self, day: date | None = None, *, job_id: str | None = None) -> list[CandidateDecision]:
        """Read back the decisions recorded on *day* (default: today).

        Raises:
            ActionableError (PARSE): a line in the file is not valid JSON.
        """
        filepath = _daily_file(self._decisions_dir, day)
        if not filepath.exists():
            return []
        decisions: list[CandidateDecision] = []
        for lineno, line in enumerate(filepath.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ActionableError.parse(
                    f"{filepath}:{lineno}",
                    str(exc),
                    suggestion="Remove or repair the corrupted line",
                ) from None
            if job_id is not None and data.get("job_id") != job_id:
                continue
            decisions.append(CandidateDecision.from_dict(data))
        return decisions


class TransactionJournal:
    """Appends every ledger transaction to a daily JSONL file."""

    def __init__(self, journal_dir: str | Path = _TRANSACTIONS_DIR) -> None:
        self._journal_dir = Path(journal_dir)

    def append(self, transaction: CreditTransaction) -> None:
        filepath = _daily_file(self._journal_dir, transaction.created_at.date())
        _append_lines(filepath, [transaction.to_dict()])
        logger.debug("Journaled %s transaction %s", transaction.reason, transaction.id)

    def read(self, day: date | None = None) -> list[dict[str, Any]]:
        filepath = _daily_file(self._journal_dir, day)
        if not filepath.exists():
            return []
        return [
            json.loads(line)
            for line in filepath.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
