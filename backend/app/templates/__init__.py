"""Seed templates and the default pipeline definition."""
