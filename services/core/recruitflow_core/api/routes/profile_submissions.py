"""Profile submission API routes."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from recruitflow_core.api.deps import SubmissionServiceDep, raise_for_transition
from recruitflow_core.api.schemas.followup import (
    ProfileSubmissionCreateRequest,
    ProfileSubmissionListResponse,
    ProfileSubmissionResponse,
    ProfileSubmissionStatusRequest,
    ProfileSubmissionTransitionResponse,
)

router = APIRouter(prefix="/profile-submissions", tags=["profile-submissions"])


@router.post("", response_model=ProfileSubmissionResponse, status_code=status.HTTP_201_CREATED)
def create_profile_submission(
    request: ProfileSubmissionCreateRequest, submissions: SubmissionServiceDep
):
    """Record a sent candidate profile and schedule its follow-up call."""
    submission = submissions.create_profile_submission_followup(
        application_id=request.application_id,
        customer_id=request.customer_id,
        sent_by=request.sent_by,
        sent_at=request.sent_at,
    )
    return ProfileSubmissionResponse.from_model(submission)


@router.get("", response_model=ProfileSubmissionListResponse)
def list_profile_submissions(
    submissions: SubmissionServiceDep,
    status_filter: Optional[str] = Query(None, alias="status"),
    application_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    """List submissions, most recently sent first."""
    items = submissions.list_submissions(
        status=status_filter, application_id=application_id, limit=limit
    )
    return ProfileSubmissionListResponse(
        submissions=[ProfileSubmissionResponse.from_model(s) for s in items],
        total=len(items),
    )


@router.get("/{submission_id}", response_model=ProfileSubmissionResponse)
def get_profile_submission(submission_id: int, submissions: SubmissionServiceDep):
    submission = submissions.get_submission(submission_id)
    if submission is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Profile submission {submission_id} not found",
        )
    return ProfileSubmissionResponse.from_model(submission)


@router.post("/{submission_id}/status", response_model=ProfileSubmissionTransitionResponse)
def update_profile_submission_status(
    submission_id: int,
    request: ProfileSubmissionStatusRequest,
    submissions: SubmissionServiceDep,
):
    """Move a submission forward. Backward moves are rejected."""
    result = submissions.update_status(
        submission_id,
        request.status,
        request.acting_user_id,
        response_details=request.response_details,
    )
    raise_for_transition(result)
    submission = submissions.get_submission(submission_id)
    return ProfileSubmissionTransitionResponse(
        ok=result.ok,
        changed=result.changed,
        status=result.status,
        submission=ProfileSubmissionResponse.from_model(submission),
    )
