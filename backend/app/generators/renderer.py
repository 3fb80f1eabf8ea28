"""
Template rendering for summary sections.

Sections are Jinja2 templates rendered in a sandbox.  Citations are
written as footnote-style markers that the generator later collects:

    {{ extractions.scope.value }} {{ cite("scope") }}
    →  "Build a bridge. [^trace:6f1c…]"
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Protocol

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from app.extraction.dates import deadline_date
from app.pipeline.errors import GenerationError

TRACE_MARKER_RE = re.compile(r"\[\^trace:([0-9a-fA-F\-]{32,36})\]")


def trace_marker(trace_link_id: Any) -> str:
    return f"[^trace:{trace_link_id}]"


def collect_trace_ids(text: str) -> list[str]:
    """Trace ids cited in `text`, in order of first appearance."""
    seen: dict[str, None] = {}
    for match in TRACE_MARKER_RE.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


class TemplateRenderer(Protocol):
    def render(self, template: str, context: Mapping[str, Any]) -> str: ...


# ─── Filters ──────────────────────────────────────────

def percent(value: Any, digits: int = 0) -> str:
    try:
        return f"{float(value) * 100:.{digits}f}%"
    except (TypeError, ValueError):
        return ""


def format_date(value: Any, fmt: str = "%d %B %Y") -> str:
    if isinstance(value, datetime):
        return value.strftime(fmt)
    parsed = value if isinstance(value, date) else deadline_date(value)
    if parsed is None:
        return "Not specified"
    text = parsed.strftime(fmt)
    if isinstance(value, dict) and value.get("time"):
        text = f"{text} {value['time']}"
    return text


def confidence_level(value: Any) -> str:
    score = float(value or 0)
    if score >= 0.8:
        return "High"
    if score >= 0.6:
        return "Medium"
    return "Low"


class JinjaTemplateRenderer:
    """Default renderer: sandboxed Jinja2, undefined names are errors."""

    def __init__(self) -> None:
        self.env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )
        self.env.filters["percent"] = percent
        self.env.filters["date"] = format_date
        self.env.filters["confidence_level"] = confidence_level

    def render(self, template: str, context: Mapping[str, Any]) -> str:
        try:
            return self.env.from_string(template).render(**context)
        except TemplateError as exc:
            raise GenerationError(f"Template rendering failed: {exc}") from exc


def make_cite(extractions: Mapping[str, Mapping[str, Any]]):
    """Build the `cite(field, limit)` template helper over an extraction map."""

    def cite(field_key: str, limit: int = 3) -> str:
        extraction = extractions.get(field_key)
        if not extraction:
            return ""
        ids: Iterable[str] = extraction.get("traceLinkIds") or []
        return " ".join(trace_marker(i) for i in list(ids)[:limit])

    return cite
