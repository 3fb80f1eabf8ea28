"""Append-only audit trail: writers, readers, export and retention."""
