"""
Document parsing — bytes to page-located text segments.

Every segment becomes one TraceLink, so segment boundaries decide how
precise citations are.  PlainTextParser is the built-in default:

    pages     split on form feed (\f)
    segments  split on blank lines
    sections  markdown headings ("# Scope", "## 2.1 Eligibility")
              and numbered headings ("3. EVALUATION") set section_path
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from app.pipeline.errors import DocumentParseError

_MARKDOWN_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*$")
_NUMBERED_HEADING = re.compile(r"^(\d+(?:\.\d+)*)\.?\s+([A-Z][A-Z0-9 &/\-]{2,80})$")
_BLANK_LINES = re.compile(r"\n\s*\n")


@dataclass(frozen=True)
class ParsedSegment:
    page: int
    snippet: str
    section_path: str | None = None

    def to_dict(self) -> dict:
        return {"page": self.page, "snippet": self.snippet, "section_path": self.section_path}


class DocumentParser(Protocol):
    def parse(self, content: bytes, filename: str) -> list[ParsedSegment]: ...


class PlainTextParser:
    """Parser for text and markdown documents."""

    def __init__(self, encoding: str = "utf-8", max_segment_length: int = 2000) -> None:
        self.encoding = encoding
        self.max_segment_length = max_segment_length

    def decode(self, content: bytes, filename: str) -> str:
        try:
            return content.decode(self.encoding)
        except UnicodeDecodeError:
            if b"\x00" in content:
                raise DocumentParseError(f"Cannot parse binary document {filename} as text")
            return content.decode("latin-1")

    def parse(self, content: bytes, filename: str) -> list[ParsedSegment]:
        text = self.decode(content, filename).replace("\r\n", "\n")
        segments: list[ParsedSegment] = []
        headings: list[tuple[int, str]] = []

        for page_number, page in enumerate(text.split("\f"), start=1):
            for block in _BLANK_LINES.split(page):
                body_lines = []
                for line in block.strip().splitlines():
                    heading = self._heading(line.strip())
                    if heading is None:
                        body_lines.append(line.strip())
                        continue
                    level, title = heading
                    headings = [h for h in headings if h[0] < level] + [(level, title)]

                body = " ".join(part for part in body_lines if part)
                if not body:
                    continue
                section_path = " > ".join(title for _, title in headings) or None
                for chunk in self._chunks(body):
                    segments.append(ParsedSegment(page=page_number, snippet=chunk, section_path=section_path))
        return segments

    @staticmethod
    def _heading(line: str) -> tuple[int, str] | None:
        match = _MARKDOWN_HEADING.match(line)
        if match:
            return len(match.group(1)), match.group(2).strip()
        match = _NUMBERED_HEADING.match(line)
        if match:
            return match.group(1).count(".") + 1, match.group(2).strip().title()
        return None

    def _chunks(self, body: str) -> list[str]:
        if len(body) <= self.max_segment_length:
            return [body]
        chunks, current = [], ""
        for sentence in re.split(r"(?<=[.!?])\s+", body):
            if current and len(current) + len(sentence) + 1 > self.max_segment_length:
                chunks.append(current)
                current = sentence
            else:
                current = f"{current} {sentence}".strip()
        if current:
            chunks.append(current)
        return chunks
