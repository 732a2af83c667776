"""Exam catalog: exams, their ordered entity lists, text blocks and the topic gate."""

import logging
import random
from datetime import datetime
from typing import List, Optional

from app.errors import ConflictError, ForbiddenError
from app.models import ENTITY_TASK, ENTITY_TEXT, STAFF_ROLES, Exam, TextEntity, User
from app.schemas import EntityRef, ExamOut, ExamUpsertIn, parse_task_config, public_config
from app.services.repository import ExamRepository
from app.services.task_service import task_to_out
from app.services.visibility import is_active, results_visible
from app.utils import sanitize_text_block, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def is_staff(user: User) -> bool:
    return user.role in STAFF_ROLES


def can_view_topic(repo: ExamRepository, user: User, topic_id: int) -> bool:
    if is_staff(user):
        return True
    return repo.is_enrolled(topic_id, user.id)


def exam_to_out(exam: Exam) -> ExamOut:
    return ExamOut(
        id=exam.id,
        topic_id=exam.topic_id,
        name=exam.name,
        description=exam.description,
        tries_count=exam.tries_count,
        duration=exam.duration,
        type=exam.type,
        starts_at=exam.starts_at,
        ends_at=exam.ends_at,
    )


def get_exam(repo: ExamRepository, user: User, exam_id: int) -> Exam:
    """Fetch an exam the caller is allowed to see."""
    exam = repo.get_exam(exam_id)
    if not can_view_topic(repo, user, exam.topic_id):
        raise ForbiddenError("You don't have access to this exam")
    return exam


def _exam_data(repo: ExamRepository, payload: ExamUpsertIn) -> dict:
    if not repo.topic_exists(payload.topic_id):
        raise ConflictError("Topic with such id doesn't exist")
    return {
        "topic_id": payload.topic_id,
        "name": payload.name.strip(),
        "description": payload.description,
        "tries_count": payload.tries_count,
        "duration": payload.duration,
        "type": payload.type,
        "starts_at": to_naive_utc(payload.starts_at),
        "ends_at": to_naive_utc(payload.ends_at),
    }


def create_exam(repo: ExamRepository, payload: ExamUpsertIn) -> Exam:
    exam = repo.create_exam(_exam_data(repo, payload))
    logger.info("Created exam %s in topic %s", exam.id, exam.topic_id)
    return exam


def update_exam(repo: ExamRepository, exam_id: int, payload: ExamUpsertIn) -> Exam:
    repo.get_exam(exam_id)
    exam = repo.update_exam(exam_id, _exam_data(repo, payload))
    logger.info("Updated exam %s", exam_id)
    return exam


def delete_exam(repo: ExamRepository, exam_id: int) -> None:
    repo.delete_exam(exam_id)
    logger.info("Deleted exam %s", exam_id)


# ===================== ENTITIES =====================


def update_entities(repo: ExamRepository, exam_id: int, refs: List[EntityRef]) -> None:
    """Replace the ordered entity list of an exam.

    Every reference must exist and appear only once. Tasks that already hold
    answers in this exam's attempts stay in the list.
    """
    repo.get_exam(exam_id)

    seen = set()
    for ref in refs:
        key = (ref.type, ref.id)
        if key in seen:
            raise ConflictError("You can use the same entity only once in an exam")
        seen.add(key)

    task_ids = [ref.id for ref in refs if ref.type == ENTITY_TASK]
    text_ids = [ref.id for ref in refs if ref.type == ENTITY_TEXT]
    missing_tasks = set(task_ids) - set(repo.get_tasks(task_ids))
    if missing_tasks:
        raise ConflictError(f"Tasks {sorted(missing_tasks)} don't exist")
    missing_texts = set(text_ids) - set(repo.get_texts(text_ids))
    if missing_texts:
        raise ConflictError(f"Texts {sorted(missing_texts)} don't exist")

    current_tasks = {e.task_id for e in repo.get_entities(exam_id) if e.entity_type == ENTITY_TASK}
    answered_removed = (current_tasks - set(task_ids)) & set(repo.tasks_answered_in_exam(exam_id))
    if answered_removed:
        raise ConflictError(
            f"Tasks {sorted(answered_removed)} already have answers in this exam's attempts and can't be removed"
        )

    repo.replace_entities(exam_id, [(ref.type, ref.id) for ref in refs])
    logger.info("Exam %s now has %d entities", exam_id, len(refs))


def get_entities(repo: ExamRepository, exam_id: int) -> List[dict]:
    """Ordered `{"type", "id"}` references, as submitted."""
    repo.get_exam(exam_id)
    return [
        {"type": e.entity_type, "id": e.task_id if e.entity_type == ENTITY_TASK else e.text_id}
        for e in repo.get_entities(exam_id)
    ]


def _may_view_content(repo: ExamRepository, user: User, exam_id: int, now: datetime) -> bool:
    if is_staff(user):
        return True
    attempts = repo.list_user_attempts(exam_id, user.id)
    return any(is_active(a, now) or results_visible(a) for a in attempts)


def get_extended_entities(
    repo: ExamRepository,
    user: User,
    exam_id: int,
    full: bool = False,
    rng: Optional[random.Random] = None,
) -> List[dict]:
    """Ordered exam content with task and text bodies resolved.

    Students get the public task projection (no grading data); `full` is only
    honoured for staff.
    """
    get_exam(repo, user, exam_id)
    if not _may_view_content(repo, user, exam_id, utcnow()):
        raise ForbiddenError("You can view exam content only during an attempt or after results are published")

    rng = rng or random.Random()
    show_full = full and is_staff(user)
    entities = repo.get_entities(exam_id)
    tasks = repo.get_tasks([e.task_id for e in entities if e.entity_type == ENTITY_TASK])
    texts = repo.get_texts([e.text_id for e in entities if e.entity_type == ENTITY_TEXT])

    content = []
    for entity in entities:
        if entity.entity_type == ENTITY_TEXT:
            text = texts[entity.text_id]
            content.append({"type": ENTITY_TEXT, "id": text.id, "text": text.text})
            continue

        task = tasks[entity.task_id]
        if show_full:
            body = task_to_out(task).model_dump()
        else:
            config = parse_task_config(task.configuration)
            projected = public_config(config)
            if getattr(config, "shuffle", False):
                rng.shuffle(projected["options"])
            body = {
                "id": task.id,
                "title": task.title,
                "description": task.description,
                "task_type": task.task_type,
                "points": task.points,
                "configuration": projected,
            }
        content.append({"type": ENTITY_TASK, "id": task.id, "task": body})
    return content


# ===================== TEXTS =====================


def create_text(repo: ExamRepository, text: str) -> TextEntity:
    entity = repo.create_text(sanitize_text_block(text))
    logger.info("Created text %s", entity.id)
    return entity


def update_text(repo: ExamRepository, text_id: int, text: str) -> TextEntity:
    entity = repo.update_text(text_id, sanitize_text_block(text))
    logger.info("Updated text %s", text_id)
    return entity


def delete_text(repo: ExamRepository, text_id: int) -> None:
    repo.get_text(text_id)
    if repo.exams_referencing_text(text_id):
        raise ConflictError("You should remove this text from all the exams before deleting it")
    repo.delete_text(text_id)
    logger.info("Deleted text %s", text_id)
