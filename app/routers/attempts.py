"""Attempt endpoints: the student's own attempt lifecycle and staff grading tools."""

from typing import List

from fastapi import APIRouter, Body, Depends, Query

from app.deps import get_repository, get_verifier, require_role
from app.models import ROLE_STUDENT, STAFF_ROLES, User
from app.schemas import (
    AdminAttemptOut,
    AnswerIn,
    AttemptListOut,
    AttemptOut,
    VerdictPatchIn,
    VisibilityPatchIn,
)
from app.services import attempt_service
from app.services.attempt_service import ADMIN_PAGE_DEFAULT, ADMIN_PAGE_MAX
from app.services.repository import ExamRepository

router = APIRouter()

require_student = require_role([ROLE_STUDENT])
require_staff = require_role(STAFF_ROLES)


# --- Student ---


@router.post("/{exam_id}/attempts/start", response_model=AttemptOut, status_code=201)
def start_attempt(
    exam_id: int,
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_student),
):
    return attempt_service.start_attempt(repo, current_user, exam_id)


@router.patch("/{exam_id}/attempts/answer", response_model=AttemptOut)
async def modify_attempt(
    exam_id: int,
    payload: AnswerIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    verifier=Depends(get_verifier),
    current_user: User = Depends(require_student),
):
    return await attempt_service.modify_attempt(repo, verifier, current_user, exam_id, payload.task_id, payload.answer)


@router.post("/{exam_id}/attempts/stop", response_model=AttemptOut)
async def stop_attempt(
    exam_id: int,
    repo: ExamRepository = Depends(get_repository),
    verifier=Depends(get_verifier),
    current_user: User = Depends(require_student),
):
    return await attempt_service.stop_attempt(repo, verifier, current_user, exam_id)


@router.get("/{exam_id}/attempts/last", response_model=AttemptOut)
async def get_last_attempt(
    exam_id: int,
    repo: ExamRepository = Depends(get_repository),
    verifier=Depends(get_verifier),
    current_user: User = Depends(require_student),
):
    return await attempt_service.get_last_attempt(repo, verifier, current_user, exam_id)


@router.get("/{exam_id}/attempts/my", response_model=AttemptListOut)
async def list_my_attempts(
    exam_id: int,
    repo: ExamRepository = Depends(get_repository),
    verifier=Depends(get_verifier),
    current_user: User = Depends(require_student),
):
    return await attempt_service.list_user_attempts(repo, verifier, current_user, exam_id)


# --- Staff ---


@router.get("/{exam_id}/attempts", response_model=List[AdminAttemptOut])
async def list_exam_attempts(
    exam_id: int,
    limit: int = Query(ADMIN_PAGE_DEFAULT, ge=1, le=ADMIN_PAGE_MAX),
    offset: int = Query(0, ge=0),
    ungraded_first: bool = Query(False),
    repo: ExamRepository = Depends(get_repository),
    verifier=Depends(get_verifier),
    current_user: User = Depends(require_staff),
):
    return await attempt_service.list_exam_attempts(repo, verifier, exam_id, limit, offset, ungraded_first)


@router.post("/{exam_id}/attempts/score-unscored")
async def score_unscored(
    exam_id: int,
    repo: ExamRepository = Depends(get_repository),
    verifier=Depends(get_verifier),
    current_user: User = Depends(require_staff),
):
    scored = await attempt_service.score_unscored(repo, verifier, exam_id)
    return {"scored": scored}


@router.patch("/{exam_id}/attempts/{attempt_id}/verdict", response_model=AdminAttemptOut)
async def update_verdict(
    exam_id: int,
    attempt_id: int,
    payload: VerdictPatchIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    verifier=Depends(get_verifier),
    current_user: User = Depends(require_staff),
):
    return await attempt_service.update_attempt_verdict(
        repo, verifier, exam_id, attempt_id, payload.task_id, payload.verdict
    )


@router.patch("/{exam_id}/attempts/{attempt_id}/visibility")
def set_attempt_visibility(
    exam_id: int,
    attempt_id: int,
    payload: VisibilityPatchIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_staff),
):
    attempt_service.set_attempt_visibility(repo, exam_id, attempt_id, payload.show_results)
    return {"ok": True}


@router.patch("/{exam_id}/visibility")
def set_exam_visibility(
    exam_id: int,
    payload: VisibilityPatchIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_staff),
):
    updated = attempt_service.set_exam_visibility(repo, exam_id, payload.show_results)
    return {"updated": updated}
