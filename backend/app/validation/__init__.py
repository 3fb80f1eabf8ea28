"""Approval gating: eligibility rules, decision submission and role permissions."""
