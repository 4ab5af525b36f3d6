"""Profile normalization tests — text in, profile with completeness counts out.

Maps to BDD specs: TestProfileNormalization, TestDocumentExtraction
"""

from __future__ import annotations

import pytest

from applicant_qualifier.errors import ExtractionFailedError, InvalidInputError
from applicant_qualifier.models import RawDocument
from applicant_qualifier.profile import (
    PlainTextExtractor,
    ProfileNormalizer,
    normalize_mime_type,
)


class _UpperExtractor:
    """Extractor double that proves binary formats are delegated."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def extract(self, candidate_id: str, content: bytes, mime_type: str) -> str:
        self.calls.append((candidate_id, mime_type))
        return content.decode().upper()


class TestProfileNormalization:
    """REQUIREMENT: Normalized profiles carry trimmed text and exact counts.

    WHO: The scoring client deciding whether a profile is worth a paid call
    WHAT: surrounding whitespace is trimmed; word and character counts
          describe the trimmed text; empty text is allowed with zero
          counts; None text or a blank id is invalid input; structured
          fields are appended as labelled lines
    WHY: The degenerate-input gate is only as good as these counts
    """

    def test_whitespace_is_trimmed_and_counted(self) -> None:
        """'  Python developer  ' → 2 words, 16 chars."""
        profile = ProfileNormalizer().normalize("cand-1", "  Python developer  \n")
        assert profile.raw_text == "Python developer"
        assert (profile.word_count, profile.char_count) == (2, 16)

    def test_empty_text_is_allowed(self) -> None:
        """Blank text normalizes to an empty profile rather than failing."""
        profile = ProfileNormalizer().normalize("cand-1", "   ")
        assert (profile.raw_text, profile.word_count, profile.char_count) == ("", 0, 0)

    def test_none_text_is_invalid(self) -> None:
        with pytest.raises(InvalidInputError):
            ProfileNormalizer().normalize("cand-1", None)

    def test_blank_candidate_id_is_invalid(self) -> None:
        with pytest.raises(InvalidInputError):
            ProfileNormalizer().normalize(" ", "Some resume text")

    def test_display_name_defaults_to_candidate_id(self) -> None:
        assert ProfileNormalizer().normalize("cand-1", "text").display_name == "cand-1"

    def test_structured_fields_are_appended(self) -> None:
        """Lists are comma-joined and empty fields dropped."""
        profile = ProfileNormalizer().normalize(
            "cand-1",
            "Backend engineer",
            fields={"Skills": ["Python", " SQL ", ""], "Location": "Berlin", "Notes": ""},
        )
        assert profile.raw_text == "Backend engineer\n\nSkills: Python, SQL\nLocation: Berlin"
        assert profile.word_count == 7


class TestDocumentExtraction:
    """REQUIREMENT: Uploaded documents become profiles or fail with a typed error.

    WHO: The orchestrator building profiles from a folder of uploads
    WHAT: txt bytes are decoded in-process; pdf and docx go to the
          configured extractor; unsupported types and undecodable bytes
          raise ExtractionFailedError; missing content is invalid input
    WHY: Unreadable uploads are excluded and must never be charged
    """

    def test_plain_text_bytes_are_decoded(self) -> None:
        doc = RawDocument("cand-1", "Résumé — Python".encode(), "text/plain")
        assert ProfileNormalizer().from_document(doc).raw_text == "Résumé — Python"

    def test_binary_formats_use_configured_extractor(self) -> None:
        extractor = _UpperExtractor()
        doc = RawDocument("cand-1", b"python developer", "application/pdf")
        profile = ProfileNormalizer(extractor=extractor).from_document(doc)
        assert profile.raw_text == "PYTHON DEVELOPER"
        assert extractor.calls == [("cand-1", "pdf")]

    def test_pdf_without_extractor_fails(self) -> None:
        doc = RawDocument("cand-1", b"%PDF-1.7", "pdf")
        with pytest.raises(ExtractionFailedError):
            ProfileNormalizer().from_document(doc)

    def test_unsupported_type_fails(self) -> None:
        doc = RawDocument("cand-1", b"\x89PNG", "png")
        with pytest.raises(ExtractionFailedError) as exc_info:
            ProfileNormalizer().from_document(doc)
        assert exc_info.value.context == {"candidate_id": "cand-1", "mime_type": "png"}

    def test_undecodable_bytes_fail(self) -> None:
        with pytest.raises(ExtractionFailedError):
            PlainTextExtractor().extract("cand-1", b"\xff\xfe\xfa", "txt")

    def test_missing_content_is_invalid(self) -> None:
        with pytest.raises(InvalidInputError):
            ProfileNormalizer().from_document(RawDocument("cand-1", None))

    @pytest.mark.parametrize(
        ("declared", "expected"),
        [
            (".PDF", "pdf"),
            ("application/vnd.openxmlformats-officedocument.wordprocessingml.document", "docx"),
            ("text/plain", "txt"),
            ("txt", "txt"),
        ],
    )
    def test_mime_type_normalization(self, declared: str, expected: str) -> None:
        assert normalize_mime_type(declared) == expected
