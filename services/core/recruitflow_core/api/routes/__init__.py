"""API routes."""

from recruitflow_core.api.routes import (
    followups,
    metrics,
    pipeline,
    profile_submissions,
    rules,
    scheduler,
)

__all__ = ["followups", "metrics", "pipeline", "profile_submissions", "rules", "scheduler"]
