"""Checklist and summary generators built on field extractions."""
