"""
Pipeline Engine — tender document-processing orchestrator.

This package provides the step-based runner that takes a tender through
a configured sequence of typed steps (prepare, extract, checklist,
summary, human-approval, notify), with per-step retry, structured run
logs, cooperative cancellation, and a bounded worker pool.

Modules:
    definition  — typed pipeline definitions (YAML/JSON) and validation
    registry    — the closed, immutable step registry
    engine      — PipelineRunner.execute()
    scheduler   — RunScheduler (bounded asyncio worker pool)
    manager     — pipeline CRUD, run creation/cancellation, import/export
    state       — run and tender state machines
"""
