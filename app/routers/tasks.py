"""Task catalog endpoints (teachers and admins only)."""

from typing import List

from fastapi import APIRouter, Body, Depends, Query

from app.deps import get_repository, require_role
from app.models import STAFF_ROLES, User
from app.schemas import TaskOut, TaskUpsertIn
from app.services import task_service
from app.services.repository import ExamRepository
from app.services.task_service import TASKS_PAGE_MAX, task_to_out

router = APIRouter()


@router.post("", response_model=TaskOut, status_code=201)
def create_task(
    payload: TaskUpsertIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    return task_to_out(task_service.create_task(repo, payload))


@router.get("", response_model=List[TaskOut])
def list_tasks(
    limit: int = Query(10, ge=1, le=TASKS_PAGE_MAX),
    offset: int = Query(0, ge=0),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    return [task_to_out(t) for t in task_service.list_tasks(repo, limit, offset)]


@router.get("/{task_id}", response_model=TaskOut)
def get_task(
    task_id: int,
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    return task_to_out(task_service.get_task(repo, task_id))


@router.put("/{task_id}", response_model=TaskOut)
def update_task(
    task_id: int,
    payload: TaskUpsertIn = Body(...),
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    return task_to_out(task_service.update_task(repo, task_id, payload))


@router.delete("/{task_id}", status_code=204)
def delete_task(
    task_id: int,
    repo: ExamRepository = Depends(get_repository),
    current_user: User = Depends(require_role(STAFF_ROLES)),
):
    task_service.delete_task(repo, task_id)
