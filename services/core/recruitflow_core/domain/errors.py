"""Error taxonomy and typed results for the follow-up engine."""

from dataclasses import dataclass
from typing import Optional


class FollowupError(Exception):
    """Base exception for follow-up and scheduler operations."""

    pass


class ValidationError(FollowupError):
    """Raised when input is rejected before anything is persisted."""

    pass


class NotFoundError(FollowupError):
    """Raised when a referenced entity does not exist."""

    pass


class TransientDispatchError(FollowupError):
    """Raised when an external collaborator failed or timed out.

    The affected item is left untouched and retried on the next sweep.
    """

    pass


class ConflictError(FollowupError):
    """Raised when an atomic state change lost to a concurrent writer."""

    pass


@dataclass
class TransitionResult:
    """Outcome of a lifecycle transition.

    Attributes:
        ok: Whether the entity ends up in the requested state.
        changed: Whether this call performed the change.
        status: Status of the entity after the call, when known.
        error: The error that prevented the transition.
    """

    ok: bool
    changed: bool = False
    status: Optional[str] = None
    error: Optional[FollowupError] = None

    @classmethod
    def success(cls, status: str, changed: bool = True) -> "TransitionResult":
        return cls(ok=True, changed=changed, status=status)

    @classmethod
    def failure(
        cls, error: FollowupError, status: Optional[str] = None
    ) -> "TransitionResult":
        return cls(ok=False, changed=False, status=status, error=error)

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None
