"""Storage port for exams, tasks, texts and attempts, plus its SQLModel adapter.

The services only talk to `ExamRepository`; `SQLModelExamRepository` is the
single concrete adapter and is injected per request through `app.deps`.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Tuple

from sqlalchemy import case, delete, or_, update
from sqlmodel import Session, select

from app.errors import NotFoundError
from app.models import (
    ENTITY_TASK,
    ENTITY_TEXT,
    AttemptAnswer,
    Enrollment,
    Exam,
    ExamAttempt,
    ExamEntity,
    Task,
    TextEntity,
    Topic,
    User,
)
from app.utils import utcnow

EMPTY_SCORING = {"show_results": False, "results": {}}


class ExamRepository(ABC):
    """Everything the attempt engine needs from persistence."""

    # --- identity / topic boundary ---

    @abstractmethod
    def get_user(self, user_id: int) -> User: ...

    @abstractmethod
    def topic_exists(self, topic_id: int) -> bool: ...

    @abstractmethod
    def is_enrolled(self, topic_id: int, user_id: int) -> bool: ...

    # --- exams & entities ---

    @abstractmethod
    def create_exam(self, data: dict) -> Exam: ...

    @abstractmethod
    def get_exam(self, exam_id: int) -> Exam: ...

    @abstractmethod
    def update_exam(self, exam_id: int, data: dict) -> Exam: ...

    @abstractmethod
    def delete_exam(self, exam_id: int) -> None: ...

    @abstractmethod
    def get_entities(self, exam_id: int) -> List[ExamEntity]: ...

    @abstractmethod
    def replace_entities(self, exam_id: int, refs: List[Tuple[str, int]]) -> None: ...

    @abstractmethod
    def get_exam_tasks(self, exam_id: int) -> List[Task]: ...

    @abstractmethod
    def exams_referencing_task(self, task_id: int) -> List[Exam]: ...

    @abstractmethod
    def exams_referencing_text(self, text_id: int) -> List[Exam]: ...

    @abstractmethod
    def tasks_answered_in_exam(self, exam_id: int) -> List[int]: ...

    # --- tasks & texts ---

    @abstractmethod
    def create_task(self, data: dict) -> Task: ...

    @abstractmethod
    def get_task(self, task_id: int) -> Task: ...

    @abstractmethod
    def get_tasks(self, task_ids: List[int]) -> Dict[int, Task]: ...

    @abstractmethod
    def list_tasks(self, limit: int, offset: int) -> List[Task]: ...

    @abstractmethod
    def update_task(self, task_id: int, data: dict) -> Task: ...

    @abstractmethod
    def delete_task(self, task_id: int) -> None: ...

    @abstractmethod
    def create_text(self, text: str) -> TextEntity: ...

    @abstractmethod
    def get_text(self, text_id: int) -> TextEntity: ...

    @abstractmethod
    def get_texts(self, text_ids: List[int]) -> Dict[int, TextEntity]: ...

    @abstractmethod
    def update_text(self, text_id: int, text: str) -> TextEntity: ...

    @abstractmethod
    def delete_text(self, text_id: int) -> None: ...

    # --- attempts ---

    @abstractmethod
    def create_attempt(self, exam_id: int, user_id: int, started_at: datetime, ends_at: datetime) -> ExamAttempt: ...

    @abstractmethod
    def get_attempt(self, attempt_id: int) -> ExamAttempt: ...

    @abstractmethod
    def get_last_attempt(self, exam_id: int, user_id: int) -> ExamAttempt: ...

    @abstractmethod
    def list_user_attempts(self, exam_id: int, user_id: int) -> List[ExamAttempt]: ...

    @abstractmethod
    def list_exam_attempts(self, exam_id: int, limit: int, offset: int, ungraded_first: bool) -> List[ExamAttempt]: ...

    @abstractmethod
    def list_expired_unscored_attempts(self, exam_id: int, now: datetime) -> List[ExamAttempt]: ...

    @abstractmethod
    def set_attempt_end(self, attempt_id: int, ends_at: datetime) -> None: ...

    @abstractmethod
    def get_answers(self, attempt_id: int) -> Dict[int, dict]: ...

    @abstractmethod
    def upsert_answer(self, attempt_id: int, task_id: int, answer: dict) -> None: ...

    @abstractmethod
    def save_scoring_if_unscored(self, attempt_id: int, scoring_data: dict, pending_review: bool) -> bool:
        """Store scoring only if the attempt was never scored. Returns True if this call won."""

    @abstractmethod
    def update_scoring(self, attempt_id: int, scoring_data: dict, pending_review: bool) -> None: ...

    @abstractmethod
    def set_visibility(self, attempt_id: int, show_results: bool) -> None: ...

    @abstractmethod
    def set_visibility_for_exam(self, exam_id: int, show_results: bool) -> int: ...


class SQLModelExamRepository(ExamRepository):
    def __init__(self, session: Session):
        self.session = session

    def _commit_refresh(self, obj):
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    # --- identity / topic boundary ---

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("No user found")
        return user

    def topic_exists(self, topic_id: int) -> bool:
        return self.session.get(Topic, topic_id) is not None

    def is_enrolled(self, topic_id: int, user_id: int) -> bool:
        enrollment = self.session.exec(
            select(Enrollment).where(Enrollment.topic_id == topic_id, Enrollment.user_id == user_id)
        ).first()
        return enrollment is not None

    # --- exams & entities ---

    def create_exam(self, data: dict) -> Exam:
        return self._commit_refresh(Exam(**data))

    def get_exam(self, exam_id: int) -> Exam:
        exam = self.session.get(Exam, exam_id)
        if not exam:
            raise NotFoundError("Exam with such id doesn't exist")
        return exam

    def update_exam(self, exam_id: int, data: dict) -> Exam:
        exam = self.get_exam(exam_id)
        for key, value in data.items():
            setattr(exam, key, value)
        exam.updated_at = utcnow()
        return self._commit_refresh(exam)

    def delete_exam(self, exam_id: int) -> None:
        exam = self.get_exam(exam_id)
        attempt_ids = select(ExamAttempt.id).where(ExamAttempt.exam_id == exam_id)
        self.session.exec(delete(AttemptAnswer).where(AttemptAnswer.attempt_id.in_(attempt_ids)))
        self.session.exec(delete(ExamAttempt).where(ExamAttempt.exam_id == exam_id))
        self.session.exec(delete(ExamEntity).where(ExamEntity.exam_id == exam_id))
        self.session.delete(exam)
        self.session.commit()

    def get_entities(self, exam_id: int) -> List[ExamEntity]:
        return list(
            self.session.exec(
                select(ExamEntity).where(ExamEntity.exam_id == exam_id).order_by(ExamEntity.order_index)
            ).all()
        )

    def replace_entities(self, exam_id: int, refs: List[Tuple[str, int]]) -> None:
        # Single transaction: old list removed and new list inserted together
        self.session.exec(delete(ExamEntity).where(ExamEntity.exam_id == exam_id))
        for index, (entity_type, entity_id) in enumerate(refs):
            self.session.add(
                ExamEntity(
                    exam_id=exam_id,
                    entity_type=entity_type,
                    task_id=entity_id if entity_type == ENTITY_TASK else None,
                    text_id=entity_id if entity_type == ENTITY_TEXT else None,
                    order_index=index,
                )
            )
        self.session.commit()

    def get_exam_tasks(self, exam_id: int) -> List[Task]:
        rows = self.session.exec(
            select(Task)
            .join(ExamEntity, ExamEntity.task_id == Task.id)
            .where(ExamEntity.exam_id == exam_id, ExamEntity.entity_type == ENTITY_TASK)
            .order_by(ExamEntity.order_index)
        ).all()
        return list(rows)

    def exams_referencing_task(self, task_id: int) -> List[Exam]:
        return list(
            self.session.exec(
                select(Exam).join(ExamEntity, ExamEntity.exam_id == Exam.id).where(ExamEntity.task_id == task_id)
            ).all()
        )

    def exams_referencing_text(self, text_id: int) -> List[Exam]:
        return list(
            self.session.exec(
                select(Exam).join(ExamEntity, ExamEntity.exam_id == Exam.id).where(ExamEntity.text_id == text_id)
            ).all()
        )

    def tasks_answered_in_exam(self, exam_id: int) -> List[int]:
        rows = self.session.exec(
            select(AttemptAnswer.task_id)
            .join(ExamAttempt, ExamAttempt.id == AttemptAnswer.attempt_id)
            .where(ExamAttempt.exam_id == exam_id)
            .distinct()
        ).all()
        return list(rows)

    # --- tasks & texts ---

    def create_task(self, data: dict) -> Task:
        return self._commit_refresh(Task(**data))

    def get_task(self, task_id: int) -> Task:
        task = self.session.get(Task, task_id)
        if not task:
            raise NotFoundError("Task not found")
        return task

    def get_tasks(self, task_ids: List[int]) -> Dict[int, Task]:
        if not task_ids:
            return {}
        tasks = self.session.exec(select(Task).where(Task.id.in_(task_ids))).all()
        return {t.id: t for t in tasks}

    def list_tasks(self, limit: int, offset: int) -> List[Task]:
        return list(self.session.exec(select(Task).order_by(Task.id).offset(offset).limit(limit)).all())

    def update_task(self, task_id: int, data: dict) -> Task:
        task = self.get_task(task_id)
        for key, value in data.items():
            setattr(task, key, value)
        return self._commit_refresh(task)

    def delete_task(self, task_id: int) -> None:
        task = self.get_task(task_id)
        self.session.delete(task)
        self.session.commit()

    def create_text(self, text: str) -> TextEntity:
        return self._commit_refresh(TextEntity(text=text))

    def get_text(self, text_id: int) -> TextEntity:
        text = self.session.get(TextEntity, text_id)
        if not text:
            raise NotFoundError("Text with such id doesn't exist")
        return text

    def get_texts(self, text_ids: List[int]) -> Dict[int, TextEntity]:
        if not text_ids:
            return {}
        texts = self.session.exec(select(TextEntity).where(TextEntity.id.in_(text_ids))).all()
        return {t.id: t for t in texts}

    def update_text(self, text_id: int, text: str) -> TextEntity:
        entity = self.get_text(text_id)
        entity.text = text
        return self._commit_refresh(entity)

    def delete_text(self, text_id: int) -> None:
        entity = self.get_text(text_id)
        self.session.delete(entity)
        self.session.commit()

    # --- attempts ---

    def create_attempt(self, exam_id: int, user_id: int, started_at: datetime, ends_at: datetime) -> ExamAttempt:
        attempt = ExamAttempt(
            exam_id=exam_id,
            user_id=user_id,
            started_at=started_at,
            ends_at=ends_at,
            scoring_data=dict(EMPTY_SCORING, results={}),
        )
        return self._commit_refresh(attempt)

    def get_attempt(self, attempt_id: int) -> ExamAttempt:
        attempt = self.session.get(ExamAttempt, attempt_id)
        if not attempt:
            raise NotFoundError("Attempt with such id doesn't exist")
        return attempt

    def get_last_attempt(self, exam_id: int, user_id: int) -> ExamAttempt:
        attempt = self.session.exec(
            select(ExamAttempt)
            .where(ExamAttempt.exam_id == exam_id, ExamAttempt.user_id == user_id)
            .order_by(ExamAttempt.started_at.desc(), ExamAttempt.id.desc())
        ).first()
        if not attempt:
            raise NotFoundError("Such user has no attempts in this exam")
        return attempt

    def list_user_attempts(self, exam_id: int, user_id: int) -> List[ExamAttempt]:
        return list(
            self.session.exec(
                select(ExamAttempt)
                .where(ExamAttempt.exam_id == exam_id, ExamAttempt.user_id == user_id)
                .order_by(ExamAttempt.started_at, ExamAttempt.id)
            ).all()
        )

    def list_exam_attempts(self, exam_id: int, limit: int, offset: int, ungraded_first: bool) -> List[ExamAttempt]:
        stmt = select(ExamAttempt).where(ExamAttempt.exam_id == exam_id)
        if ungraded_first:
            # pending review or never scored sorts first
            ungraded = case((or_(ExamAttempt.pending_review.is_(True), ExamAttempt.scored_at.is_(None)), 0), else_=1)
            stmt = stmt.order_by(ungraded, ExamAttempt.started_at, ExamAttempt.id)
        else:
            stmt = stmt.order_by(ExamAttempt.started_at, ExamAttempt.id)
        return list(self.session.exec(stmt.offset(offset).limit(limit)).all())

    def list_expired_unscored_attempts(self, exam_id: int, now: datetime) -> List[ExamAttempt]:
        return list(
            self.session.exec(
                select(ExamAttempt)
                .where(
                    ExamAttempt.exam_id == exam_id,
                    ExamAttempt.scored_at.is_(None),
                    ExamAttempt.ends_at <= now,
                )
                .order_by(ExamAttempt.started_at, ExamAttempt.id)
            ).all()
        )

    def set_attempt_end(self, attempt_id: int, ends_at: datetime) -> None:
        self.session.exec(update(ExamAttempt).where(ExamAttempt.id == attempt_id).values(ends_at=ends_at))
        self.session.commit()

    def get_answers(self, attempt_id: int) -> Dict[int, dict]:
        rows = self.session.exec(select(AttemptAnswer).where(AttemptAnswer.attempt_id == attempt_id)).all()
        return {row.task_id: dict(row.answer) for row in rows}

    def upsert_answer(self, attempt_id: int, task_id: int, answer: dict) -> None:
        existing = self.session.exec(
            select(AttemptAnswer).where(AttemptAnswer.attempt_id == attempt_id, AttemptAnswer.task_id == task_id)
        ).first()
        if existing:
            existing.answer = answer
            existing.saved_at = utcnow()
            self.session.add(existing)
        else:
            self.session.add(AttemptAnswer(attempt_id=attempt_id, task_id=task_id, answer=answer))
        self.session.commit()

    def save_scoring_if_unscored(self, attempt_id: int, scoring_data: dict, pending_review: bool) -> bool:
        result = self.session.exec(
            update(ExamAttempt)
            .where(ExamAttempt.id == attempt_id, ExamAttempt.scored_at.is_(None))
            .values(scoring_data=scoring_data, pending_review=pending_review, scored_at=utcnow())
        )
        self.session.commit()
        # ORM copies loaded earlier in this session are now stale
        self.session.expire_all()
        return result.rowcount == 1

    def update_scoring(self, attempt_id: int, scoring_data: dict, pending_review: bool) -> None:
        self.session.exec(
            update(ExamAttempt)
            .where(ExamAttempt.id == attempt_id)
            .values(scoring_data=scoring_data, pending_review=pending_review)
        )
        self.session.commit()
        self.session.expire_all()

    def set_visibility(self, attempt_id: int, show_results: bool) -> None:
        attempt = self.get_attempt(attempt_id)
        attempt.scoring_data = dict(attempt.scoring_data, show_results=show_results)
        self._commit_refresh(attempt)

    def set_visibility_for_exam(self, exam_id: int, show_results: bool) -> int:
        attempts = self.session.exec(select(ExamAttempt).where(ExamAttempt.exam_id == exam_id)).all()
        for attempt in attempts:
            attempt.scoring_data = dict(attempt.scoring_data, show_results=show_results)
            self.session.add(attempt)
        self.session.commit()
        return len(attempts)
