"""Exam catalog endpoints: exams, their ordered entities, and text blocks."""

from fastapi import APIRouter, Body, Depends, Query

from app.deps import get_repository, require_login, require_role
from app.models import STAFF_ROLES, User
from app.schemas import EntitiesIn, ExamOut, ExamUpsertIn, TextIn, TextOut
from app.services import exam_service
from app.services.exam_service import exam_to_out
from app.services.repository import ExamRepository

router = APIRouter()
text_router = APIRouter()


# --- Exams ---


@router.post("", response_model=ExamOut, status_code=201)
def create_exam(
    payload: ExamUpsertIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    return exam_to_out(exam_service.create_exam(repo, payload))


@router.get("/{exam_id}", response_model=ExamOut)
def get_exam(
    exam_id: int,
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_login),
):
    return exam_to_out(exam_service.get_exam(repo, current_user, exam_id))


@router.put("/{exam_id}", response_model=ExamOut)
def update_exam(
    exam_id: int,
    payload: ExamUpsertIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    return exam_to_out(exam_service.update_exam(repo, exam_id, payload))


@router.delete("/{exam_id}", status_code=204)
def delete_exam(
    exam_id: int,
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    exam_service.delete_exam(repo, exam_id)


# --- Entities ---


@router.put("/{exam_id}/entities")
def update_entities(
    exam_id: int,
    payload: EntitiesIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    exam_service.update_entities(repo, exam_id, payload.entities)
    return exam_service.get_entities(repo, exam_id)


@router.get("/{exam_id}/entities")
def get_entities(
    exam_id: int,
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_login),
):
    exam_service.get_exam(repo, current_user, exam_id)
    return exam_service.get_entities(repo, exam_id)


@router.get("/{exam_id}/content")
def get_content(
    exam_id: int,
    full: bool = Query(False),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_login),
):
    """Ordered exam content; students see tasks without grading data."""
    return exam_service.get_extended_entities(repo, current_user, exam_id, full=full)


# --- Texts ---


def _text_out(entity) -> TextOut:
    return TextOut(id=entity.id, text=entity.text)


@text_router.post("", response_model=TextOut, status_code=201)
def create_text(
    payload: TextIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    return _text_out(exam_service.create_text(repo, payload.text))


@text_router.get("/{text_id}", response_model=TextOut)
def get_text(
    text_id: int,
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    return _text_out(repo.get_text(text_id))


@text_router.put("/{text_id}", response_model=TextOut)
def update_text(
    text_id: int,
    payload: TextIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    return _text_out(exam_service.update_text(repo, text_id, payload.text))


@text_router.delete("/{text_id}", status_code=204)
def delete_text(
    text_id: int,
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    exam_service.delete_text(repo, text_id)
