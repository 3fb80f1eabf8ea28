"""Tests for date parsing, the rule table and the field extractor."""

from datetime import date

import pytest
from sqlalchemy import select

from app.core.constants import REQUIRED_FIELD_KEYS, FieldKey
from app.db.models.audit_log import AuditLog
from app.extraction.dates import deadline_date, extract_date
from app.extraction.field_extractor import FieldExtractor
from app.extraction.rules import DEFAULT_RULES, relevance_score
from app.pipeline.errors import ExtractionError
from app.repositories import artifacts as artifact_repository

from conftest import ITT_TEXT


class TestDates:

    @pytest.mark.parametrize("text, expected", [
        ("2030-03-31", "2030-03-31"),
        ("31/03/2030", "2030-03-31"),
        ("31 March 2030", "2030-03-31"),
        ("31st March 2030", "2030-03-31"),
        ("March 31, 2030", "2030-03-31"),
    ])
    def test_recognised_formats(self, text, expected):
        assert extract_date(text)["date"] == expected

    def test_time_is_kept(self):
        value = extract_date("31 December 2030 17:00")
        assert value == {"date": "2030-12-31", "time": "17:00", "text": "31 December 2030 17:00"}

    def test_no_date(self):
        assert extract_date("as soon as possible") is None

    def test_impossible_date_is_ignored(self):
        assert extract_date("31/02/2030") is None

    def test_deadline_date_reads_stored_value(self):
        assert deadline_date({"date": "2030-12-31", "time": None}) == date(2030, 12, 31)
        assert deadline_date("garbage") is None


class TestRules:

    def test_rule_table_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_RULES["scope"] = ()

    def test_every_field_has_rules(self):
        assert set(DEFAULT_RULES) == set(REQUIRED_FIELD_KEYS)

    def test_relevance_is_clamped(self):
        snippet = "deadline due closing submit by before"
        value = {"date": "2030-01-01"}
        assert relevance_score(FieldKey.DEADLINE_SUBMISSION, value, snippet) == 1.0

    def test_relevance_mandatory_language(self):
        plain = relevance_score(FieldKey.ELIGIBILITY, "Bidders hold a licence", "Eligibility: x")
        mandatory = relevance_score(FieldKey.ELIGIBILITY, "Bidders must hold a licence", "Eligibility: x")
        assert mandatory == pytest.approx(plain + 0.1)

    @pytest.mark.parametrize("value", ["Contractor SHALL build", "Must hold a licence", "Bidders MUST register"])
    def test_mandatory_language_ignores_case(self, value):
        assert relevance_score(FieldKey.SCOPE, value, "") == pytest.approx(0.1)


class TestFieldExtractor:

    @pytest.fixture
    def extractor(self):
        return FieldExtractor()

    async def test_extracts_all_fields_with_citations(self, db, make_tender, extractor):
        tender_id = await make_tender({"itt.md": ITT_TEXT}, parsed=True)

        scope = await extractor.extract_field(db, tender_id, "scope")
        eligibility = await extractor.extract_field(db, tender_id, "eligibility")
        evaluation = await extractor.extract_field(db, tender_id, "evaluationCriteria")
        submission = await extractor.extract_field(db, tender_id, "submissionMechanics")
        deadline = await extractor.extract_field(db, tender_id, "deadlineSubmission")

        assert scope.value == "Design and build a regional water treatment facility."
        assert scope.confidence == 0.8
        assert eligibility.value.startswith("Bidders must hold a valid construction licence")
        assert eligibility.confidence == 0.9
        assert evaluation.confidence == 0.95
        assert submission.confidence == 0.9
        assert deadline.value == {"date": "2030-12-31", "time": "17:00", "text": "31 December 2030 17:00"}

        for result in (scope, eligibility, evaluation, submission, deadline):
            assert result.found
            assert 0.0 <= result.confidence <= 1.0
            assert result.citations[0]["page"] == 1
            assert result.trace_link_ids

        validation = await extractor.validate_extractions(db, tender_id)
        assert validation == {"isValid": True, "missing": [], "lowConfidence": [], "withoutCitations": []}

    async def test_no_documents_fails_and_writes_nothing(self, db, make_tender, extractor):
        tender_id = await make_tender()

        with pytest.raises(ExtractionError, match="No trace links found for tender documents"):
            await extractor.extract_field(db, tender_id, "scope")

        assert await artifact_repository.get_extraction(db, tender_id, "scope") is None
        entries = (await db.execute(select(AuditLog))).scalars().all()
        assert entries == []

    async def test_no_match_with_citations_required(self, db, make_tender, extractor):
        tender_id = await make_tender({"note.txt": "Nothing useful in this paragraph."}, parsed=True)
        with pytest.raises(ExtractionError, match="No valid extractions found for field: scope"):
            await extractor.extract_field(db, tender_id, "scope")

    async def test_no_match_without_citations_returns_empty(self, db, make_tender, extractor):
        tender_id = await make_tender({"note.txt": "Nothing useful in this paragraph."}, parsed=True)

        result = await extractor.extract_field(db, tender_id, "scope", require_citations=False)

        assert result.found is False
        assert result.value is None
        assert await artifact_repository.get_extraction(db, tender_id, "scope") is None

    async def test_min_confidence_filters_candidates(self, db, make_tender, extractor):
        tender_id = await make_tender({"itt.md": ITT_TEXT}, parsed=True)
        with pytest.raises(ExtractionError):
            await extractor.extract_field(db, tender_id, "scope", min_confidence=0.85)

    async def test_unknown_field(self, db, make_tender, extractor):
        tender_id = await make_tender({"itt.md": ITT_TEXT}, parsed=True)
        with pytest.raises(ExtractionError, match="No extraction patterns found for field: budget"):
            await extractor.extract_field(db, tender_id, "budget")

    async def test_rerun_upserts_single_row(self, db, make_tender, extractor):
        tender_id = await make_tender({"itt.md": ITT_TEXT}, parsed=True)

        first = await extractor.extract_field(db, tender_id, "scope")
        second = await extractor.extract_field(db, tender_id, "scope")

        rows = await artifact_repository.list_extractions(db, tender_id)
        assert len(rows) == 1
        assert first.value == second.value
        assert first.trace_link_ids == second.trace_link_ids

    async def test_max_results_limits_citations(self, db, make_tender, extractor):
        text = "\n\n".join(f"Scope: Work package number {n} for the facility." for n in range(4))
        tender_id = await make_tender({"scope.txt": text}, parsed=True)

        result = await extractor.extract_field(db, tender_id, "scope", max_results=2)

        assert len(result.citations) == 2
        assert result.total_candidates == 4

    async def test_ties_keep_document_order(self, db, make_tender, extractor):
        text = "Scope: Build the north bridge.\n\nScope: Build the south bridge."
        tender_id = await make_tender({"a.txt": text}, parsed=True)

        result = await extractor.extract_field(db, tender_id, "scope")

        assert result.value == "Build the north bridge."
