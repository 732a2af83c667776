"""Task catalog: authoring tasks and keeping referenced tasks immutable."""

import logging
from typing import List

from app.errors import ConflictError
from app.models import Task
from app.schemas import TaskOut, TaskUpsertIn
from app.services.repository import ExamRepository

logger = logging.getLogger(__name__)

TASKS_PAGE_MAX = 20


def task_to_out(task: Task) -> TaskOut:
    return TaskOut(
        id=task.id,
        title=task.title,
        description=task.description,
        task_type=task.task_type,
        points=task.points,
        configuration=task.configuration,
    )


def _task_data(payload: TaskUpsertIn) -> dict:
    return {
        "title": payload.title.strip(),
        "description": payload.description,
        "task_type": payload.task_type,
        "points": payload.points,
        "configuration": payload.configuration.model_dump(mode="json"),
    }


def _ensure_not_referenced(repo: ExamRepository, task_id: int, action: str) -> None:
    if repo.exams_referencing_task(task_id):
        raise ConflictError(f"You should remove this task from all the exams before {action} it")


def create_task(repo: ExamRepository, payload: TaskUpsertIn) -> Task:
    task = repo.create_task(_task_data(payload))
    logger.info("Created %s task %s", task.task_type, task.id)
    return task


def get_task(repo: ExamRepository, task_id: int) -> Task:
    return repo.get_task(task_id)


def list_tasks(repo: ExamRepository, limit: int, offset: int) -> List[Task]:
    return repo.list_tasks(min(limit, TASKS_PAGE_MAX), offset)


def update_task(repo: ExamRepository, task_id: int, payload: TaskUpsertIn) -> Task:
    """Edit a task; refused while any exam uses it (attempts may hold answers for the old shape)."""
    repo.get_task(task_id)
    _ensure_not_referenced(repo, task_id, "editing")
    task = repo.update_task(task_id, _task_data(payload))
    logger.info("Updated task %s", task_id)
    return task


def delete_task(repo: ExamRepository, task_id: int) -> None:
    repo.get_task(task_id)
    _ensure_not_referenced(repo, task_id, "deleting")
    repo.delete_task(task_id)
    logger.info("Deleted task %s", task_id)
