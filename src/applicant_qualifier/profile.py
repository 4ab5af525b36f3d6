"""Candidate profile normalization.

Turns extracted resume text into an immutable :class:`CandidateProfile`
with cheap completeness signals (word and character counts) that the
scoring layer uses to short-circuit near-empty profiles.

Binary document parsing is delegated to a :class:`TextExtractor`.  Only
plain text is handled in-process; PDF and DOCX extraction is supplied by
the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Protocol

from applicant_qualifier.errors import ActionableError
from applicant_qualifier.models import CandidateProfile, RawDocument

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = frozenset({"pdf", "docx", "txt"})

_MIME_ALIASES = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "txt",
    "text": "txt",
}


def normalize_mime_type(mime_type: str) -> str:
    """Map a declared MIME type or extension to ``pdf``, ``docx`` or ``txt``."""
    cleaned = mime_type.strip().lower().lstrip(".")
    return _MIME_ALIASES.get(cleaned, cleaned)


class TextExtractor(Protocol):
    """Turns raw file bytes into plain text.

    Implementations raise :class:`~applicant_qualifier.errors.ExtractionFailedError`
    when the document cannot be read.
    """

    def extract(self, candidate_id: str, content: bytes, mime_type: str) -> str: ...


class PlainTextExtractor:
    """Decodes ``txt`` uploads; every other type is an extraction failure."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def extract(self, candidate_id: str, content: bytes, mime_type: str) -> str:
        kind = normalize_mime_type(mime_type)
        if kind != "txt":
            raise ActionableError.extraction(
                candidate_id, mime_type, f"no extractor configured for '{kind}' documents"
            )
        try:
            return content.decode(self.encoding)
        except UnicodeDecodeError as exc:
            raise ActionableError.extraction(candidate_id, mime_type, str(exc)) from None


class ProfileNormalizer:
    """Builds :class:`CandidateProfile` records.

    Usage::

        normalizer = ProfileNormalizer(extractor=PlainTextExtractor())
        profile = normalizer.normalize("cand-1", "  Jane Doe\\nPython ...  ")
        profile = normalizer.from_document(RawDocument("cand-2", b"...", "txt"))
    """

    def __init__(self, extractor: TextExtractor | None = None) -> None:
        self._extractor = extractor or PlainTextExtractor()

    def normalize(
        self,
        candidate_id: str,
        raw_text: str | None,
        *,
        display_name: str | None = None,
        fields: Mapping[str, str | Sequence[str]] | None = None,
    ) -> CandidateProfile:
        """Trim *raw_text* and compute completeness counts.

        Structured *fields* (e.g. ``{"Skills": ["Python", "SQL"]}``) are
        appended as labelled lines after the free text.  Empty text is
        allowed and yields zero counts.

        Raises:
            InvalidInputError: if *raw_text* is ``None`` or *candidate_id* is blank.
        """
        if raw_text is None:
            raise ActionableError.invalid_input(
                field_name="raw_text",
                reason=f"no text supplied for candidate '{candidate_id}'",
            )
        if not candidate_id or not candidate_id.strip():
            raise ActionableError.invalid_input(
                field_name="candidate_id",
                reason="candidate id must be a non-empty string",
            )

        text = raw_text.strip()
        extra = _render_fields(fields)
        if extra:
            text = f"{text}\n\n{extra}" if text else extra

        return CandidateProfile(
            candidate_id=candidate_id,
            display_name=(display_name or "").strip() or candidate_id,
            raw_text=text,
            word_count=len(text.split()),
            char_count=len(text),
        )

    def from_document(self, document: RawDocument) -> CandidateProfile:
        """Extract text from an uploaded document and normalize it.

        Raises:
            InvalidInputError: if the document has no content.
            ExtractionFailedError: if the extractor cannot read it.
        """
        if document.content is None:
            raise ActionableError.invalid_input(
                field_name="content",
                reason=f"document for candidate '{document.candidate_id}' is empty",
            )
        kind = normalize_mime_type(document.mime_type)
        if kind not in SUPPORTED_MIME_TYPES:
            raise ActionableError.extraction(
                document.candidate_id,
                document.mime_type,
                f"unsupported document type (expected one of {', '.join(sorted(SUPPORTED_MIME_TYPES))})",
            )

        if isinstance(document.content, str):
            text = document.content
        else:
            text = self._extractor.extract(document.candidate_id, document.content, kind)

        profile = self.normalize(
            document.candidate_id, text, display_name=document.display_name
        )
        logger.debug(
            "Normalized %s: %d words, %d chars",
            profile.candidate_id,
            profile.word_count,
            profile.char_count,
        )
        return profile


def _render_fields(fields: Mapping[str, str | Sequence[str]] | None) -> str:
    if not fields:
        return ""
    lines: list[str] = []
    for label, value in fields.items():
        if isinstance(value, str):
            rendered = value.strip()
        else:
            rendered = ", ".join(str(v).strip() for v in value if str(v).strip())
        if rendered:
            lines.append(f"{label}: {rendered}")
    return "\n".join(lines)
