"""
Field extraction rule table.

A rule is (pattern, value extractor, confidence calculator).  Rules are
fixed per field and built once at import time into a read-only
mapping; extractor instances receive the table by reference, so it
is safe to share between concurrent workers.

    DEFAULT_RULES["scope"]  →  (ExtractionRule("project_scope"), ExtractionRule("objectives"))
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping

from app.core.constants import FieldKey
from app.extraction.dates import extract_date

ValueExtractor = Callable[[re.Match, str], Any]
ConfidenceCalculator = Callable[[re.Match, str], float]


@dataclass(frozen=True)
class ExtractionRule:
    """One way of finding a field value in a snippet."""

    name: str
    pattern: re.Pattern
    extract_value: ValueExtractor
    confidence: ConfidenceCalculator

    def iter_matches(self, snippet: str):
        return self.pattern.finditer(snippet)


RuleTable = Mapping[str, tuple[ExtractionRule, ...]]


# ─── Value extractors ─────────────────────────────────

def _text_value(match: re.Match, snippet: str) -> str | None:
    value = match.group(1).strip()
    return value or None


def _date_value(match: re.Match, snippet: str) -> dict[str, Any] | None:
    return extract_date(match.group(1))


# ─── Confidence calculators ───────────────────────────

def _fixed(score: float) -> ConfidenceCalculator:
    return lambda match, snippet: score


_SCOPE_KEYWORDS = ("objective", "goal", "purpose", "aim", "scope")


def _scope_confidence(match: re.Match, snippet: str) -> float:
    lowered = snippet.lower()
    return 0.8 if any(kw in lowered for kw in _SCOPE_KEYWORDS) else 0.6


def _date_confidence(found: float, missing: float) -> ConfidenceCalculator:
    def calculate(match: re.Match, snippet: str) -> float:
        return found if extract_date(match.group(1)) else missing
    return calculate


def _compile(expression: str) -> re.Pattern:
    return re.compile(expression, re.IGNORECASE)


# Text values run to the end of the sentence (the full stop is kept).
_SENTENCE = r"([^.\n]{%d,%d}\.?)"
# Deadline phrases may contain dots (31.03.2025, 5 p.m.), so stop at a
# full stop followed by whitespace or end of line instead.
_PHRASE = r"([^\n]{5,100}?)(?=\.\s|\.$|\n|$)"


def build_default_rules() -> RuleTable:
    """Construct the read-only rule table for the five tender fields."""
    table: dict[str, tuple[ExtractionRule, ...]] = {
        FieldKey.SCOPE: (
            ExtractionRule(
                name="project_scope",
                pattern=_compile(
                    r"(?:project\s+)?\bscope\b(?:\s+of\s+(?:work|services))?\s*[:\-]\s*" + _SENTENCE % (3, 200)
                ),
                extract_value=_text_value,
                confidence=_scope_confidence,
            ),
            ExtractionRule(
                name="objectives",
                pattern=_compile(r"\b(?:objectives?|goals?|aims?)\b\s*[:\-]?\s*" + _SENTENCE % (20, 300)),
                extract_value=_text_value,
                confidence=_fixed(0.9),
            ),
        ),
        FieldKey.ELIGIBILITY: (
            ExtractionRule(
                name="eligibility_criteria",
                pattern=_compile(
                    r"\b(?:eligibility|eligible|qualifications?)\b\s*[:\-]?\s*" + _SENTENCE % (20, 400)
                ),
                extract_value=_text_value,
                confidence=_fixed(0.9),
            ),
            ExtractionRule(
                name="requirements",
                pattern=_compile(r"\b(?:requirements?|criteria)\b\s*[:\-]?\s*" + _SENTENCE % (20, 300)),
                extract_value=_text_value,
                confidence=_fixed(0.7),
            ),
        ),
        FieldKey.EVALUATION_CRITERIA: (
            ExtractionRule(
                name="evaluation_criteria",
                pattern=_compile(
                    r"\b(?:evaluation|assessment)\s+criteria\b\s*[:\-]?\s*" + _SENTENCE % (20, 500)
                ),
                extract_value=_text_value,
                confidence=_fixed(0.95),
            ),
            ExtractionRule(
                name="scoring_criteria",
                pattern=_compile(r"\b(?:scoring|points?|marks?)\b\s*[:\-]?\s*" + _SENTENCE % (20, 300)),
                extract_value=_text_value,
                confidence=_fixed(0.8),
            ),
        ),
        FieldKey.SUBMISSION_MECHANICS: (
            ExtractionRule(
                name="submission_process",
                pattern=_compile(
                    r"\b(?:submission|submit|how\s+to\s+apply)\b\s*[:\-]?\s*" + _SENTENCE % (20, 400)
                ),
                extract_value=_text_value,
                confidence=_fixed(0.9),
            ),
            ExtractionRule(
                name="application_process",
                pattern=_compile(
                    r"\b(?:application\s+process|submission\s+method)\b\s*[:\-]?\s*" + _SENTENCE % (20, 300)
                ),
                extract_value=_text_value,
                confidence=_fixed(0.85),
            ),
        ),
        FieldKey.DEADLINE_SUBMISSION: (
            ExtractionRule(
                name="deadline_date",
                pattern=_compile(r"\b(?:deadline|due\s+date|closing\s+date)\b\s*[:\-]?\s*" + _PHRASE),
                extract_value=_date_value,
                confidence=_date_confidence(0.9, 0.4),
            ),
            ExtractionRule(
                name="submission_deadline",
                pattern=_compile(
                    r"\b(?:submit\s+by|submissions?\s+must\s+be\s+received(?:\s+by)?)\b\s*[:\-]?\s*" + _PHRASE
                ),
                extract_value=_date_value,
                confidence=_date_confidence(0.85, 0.3),
            ),
        ),
    }
    return MappingProxyType({str(key): rules for key, rules in table.items()})


DEFAULT_RULES: RuleTable = build_default_rules()


# ═══════════════════════════════════════════════════════════
#  Relevance scoring
# ═══════════════════════════════════════════════════════════

RELEVANCE_INDICATORS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    FieldKey.SCOPE.value: ("scope", "objective", "goal", "purpose", "project", "work"),
    FieldKey.ELIGIBILITY.value: ("eligible", "qualification", "requirement", "criteria", "must"),
    FieldKey.EVALUATION_CRITERIA.value: ("evaluation", "assess", "score", "criteria", "weight"),
    FieldKey.SUBMISSION_MECHANICS.value: ("submit", "application", "process", "method", "how"),
    FieldKey.DEADLINE_SUBMISSION.value: ("deadline", "due", "closing", "submit by", "before"),
})

_MANDATORY_MARKERS = ("shall", "must")


def relevance_score(field_key: str, value: Any, snippet: str) -> float:
    """
    Blend indicator overlap with structural hints, clamped to [0, 1].

    base   = share of the field's indicator words present in the snippet
    +0.1   value longer than 50 characters
    +0.1   value uses mandatory language (shall / must)
    +0.2   deadline value carries a parsed date
    """
    lowered = snippet.lower()
    indicators = RELEVANCE_INDICATORS.get(field_key, ())
    score = (
        sum(1 for indicator in indicators if indicator in lowered) / len(indicators)
        if indicators
        else 0.0
    )

    if isinstance(value, str):
        if len(value) > 50:
            score += 0.1
        if any(marker in value.lower() for marker in _MANDATORY_MARKERS):
            score += 0.1

    if field_key == FieldKey.DEADLINE_SUBMISSION and isinstance(value, dict) and value.get("date"):
        score += 0.2

    return round(max(0.0, min(score, 1.0)), 4)
