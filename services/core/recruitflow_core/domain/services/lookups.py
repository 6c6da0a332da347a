"""Entity lookups and assignee resolution consumed by the engine.

Candidates, applications, jobs, talent pools, customers and users live in
other parts of the recruitment system. The engine only reads display
names from them, and every lookup degrades to None instead of failing the
operation that needed it.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, TypeVar

from recruitflow_core.domain.services.blocking import run_with_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ApplicationSummary:
    """What the engine needs to know about an application."""

    application_id: str
    title: Optional[str] = None
    candidate_id: Optional[str] = None
    candidate_name: Optional[str] = None
    job_id: Optional[str] = None
    job_title: Optional[str] = None


class EntityLookup(Protocol):
    """Read-only access to entity display data."""

    def candidate_name(self, candidate_id: str) -> Optional[str]: ...

    def application_summary(self, application_id: str) -> Optional[ApplicationSummary]: ...

    def job_title(self, job_id: str) -> Optional[str]: ...

    def talent_pool_name(self, talent_pool_id: str) -> Optional[str]: ...

    def customer_name(self, customer_id: str) -> Optional[str]: ...

    def user_display_name(self, user_id: str) -> Optional[str]: ...


class AssigneeResolver(Protocol):
    """Resolves role-based assignees (manager, recruiter) for a subject."""

    def resolve(
        self,
        role: str,
        subject_kind: str,
        subject_id: str,
        triggered_by: str,
    ) -> Optional[str]:
        """Return the user id holding ``role`` for the subject, or None."""
        ...


class NullEntityLookup:
    """Lookup used when no directory is wired in. Knows nothing."""

    def candidate_name(self, candidate_id: str) -> Optional[str]:
        return None

    def application_summary(self, application_id: str) -> Optional[ApplicationSummary]:
        return None

    def job_title(self, job_id: str) -> Optional[str]:
        return None

    def talent_pool_name(self, talent_pool_id: str) -> Optional[str]:
        return None

    def customer_name(self, customer_id: str) -> Optional[str]:
        return None

    def user_display_name(self, user_id: str) -> Optional[str]:
        return None


class NullAssigneeResolver:
    """Resolver that never resolves, so role rules fall back to the actor."""

    def resolve(
        self,
        role: str,
        subject_kind: str,
        subject_id: str,
        triggered_by: str,
    ) -> Optional[str]:
        return None


def safe_lookup(
    fn: Callable[..., Optional[T]],
    *args: object,
    timeout: float = 5.0,
) -> Optional[T]:
    """Call a lookup with a timeout, returning None on any failure."""
    try:
        return run_with_timeout(fn, *args, timeout=timeout)
    except Exception as e:
        logger.warning(
            "Entity lookup failed",
            extra={
                "lookup": getattr(fn, "__name__", repr(fn)),
                "error": f"{type(e).__name__}: {e}",
            },
        )
        return None
