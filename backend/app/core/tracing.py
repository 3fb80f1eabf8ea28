"""
LangSmith tracing utilities for the pipeline runner.

Provides a setup function and a wrapper that applies LangSmith's
@traceable only when tracing is configured, so local runs without
an API key execute the step directly.

Usage:
    from app.core.tracing import setup_tracing, traceable_step

    setup_tracing()   # call once at startup

    traced = traceable_step(name="step:extract", tags=["pipeline"])(handler)
    data = await traced(ctx, step)
"""

from __future__ import annotations

import functools
import os
from typing import Any, Callable

from langsmith import traceable

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_tracing_enabled = False


def setup_tracing() -> bool:
    """
    Configure LangSmith tracing from application settings.

    Sets the environment variables the LangSmith SDK reads.
    Returns True if tracing was enabled, False otherwise.
    """
    global _tracing_enabled

    if not settings.LANGSMITH_TRACING or not settings.LANGSMITH_API_KEY:
        logger.info(
            "LangSmith tracing disabled",
            reason="LANGSMITH_TRACING=False or no API key",
        )
        _tracing_enabled = False
        return False

    os.environ["LANGSMITH_API_KEY"] = settings.LANGSMITH_API_KEY
    os.environ["LANGSMITH_ENDPOINT"] = settings.LANGSMITH_ENDPOINT
    os.environ["LANGSMITH_PROJECT"] = settings.LANGSMITH_PROJECT
    os.environ["LANGSMITH_TRACING"] = "true"

    logger.info("LangSmith tracing enabled", project=settings.LANGSMITH_PROJECT)
    _tracing_enabled = True
    return True


def is_tracing_enabled() -> bool:
    """Check if LangSmith tracing is active."""
    return _tracing_enabled


def traceable_step(
    name: str,
    run_type: str = "chain",
    metadata: dict[str, Any] | None = None,
    tags: list[str] | None = None,
) -> Callable:
    """
    Decorator that wraps an async callable with LangSmith @traceable
    when tracing is enabled, and calls it untouched otherwise.

    Args:
        name: Trace name shown in LangSmith UI.
        run_type: One of "chain", "llm", "tool", "retriever".
        metadata: Static metadata attached to every trace.
        tags: Tags for filtering in LangSmith.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not _tracing_enabled:
                return await func(*args, **kwargs)

            traced_fn = traceable(
                name=name,
                run_type=run_type,
                metadata=metadata or {},
                tags=tags or [],
            )(func)
            return await traced_fn(*args, **kwargs)
        return wrapper
    return decorator
