"""Attempt lifecycle: start / modify / stop, finalization, regrade and visibility.

States: no attempt -> active (ends_at > now) -> ended -> scored. An ended
attempt is scored eagerly by `stop_attempt`, or later by `finalize_if_expired`
which every read path calls before projecting the stored data. Scoring is
committed with a conditional write, so an attempt is scored at most once no
matter how many callers race to finalize it.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from app.errors import ConflictError, NotFoundError, NotInTimeError, ValidationError
from app.models import EXAM_TYPE_INSTANT, Exam, ExamAttempt, Task, User
from app.schemas import (
    AdminAttemptOut,
    AttemptListOut,
    AttemptOut,
    CTFdConfig,
    LongTextConfig,
    OnReview,
    ScoringData,
    ShortTextConfig,
    TaskAnswer,
    TaskVerdict,
    parse_task_answer,
    parse_task_config,
)
from app.services.exam_service import get_exam
from app.services.repository import ExamRepository
from app.services.scoring import collect_ctfd_solves, score_answers
from app.services.visibility import admin_view, is_active, max_score_of, student_view
from app.utils import sanitize_feedback, utcnow

logger = logging.getLogger(__name__)

# Upper bound for attempts of exams without duration and closing time
UNLIMITED_ENDS_AT = datetime(9999, 12, 31)

ADMIN_PAGE_DEFAULT = 10
ADMIN_PAGE_MAX = 20


def compute_ends_at(exam: Exam, now: datetime) -> datetime:
    ends_at = UNLIMITED_ENDS_AT
    if exam.duration:
        ends_at = now + timedelta(seconds=exam.duration)
    if exam.ends_at is not None:
        ends_at = min(ends_at, exam.ends_at)
    return ends_at


def _find_task(tasks: List[Task], task_id: int) -> Task:
    for task in tasks:
        if task.id == task_id:
            return task
    raise NotFoundError("This exam has no such task")


def _active_attempt(repo: ExamRepository, exam_id: int, user_id: int, now: datetime) -> ExamAttempt:
    try:
        attempt = repo.get_last_attempt(exam_id, user_id)
    except NotFoundError:
        raise NotFoundError("You have no active attempts") from None
    if not is_active(attempt, now):
        raise NotFoundError("You have no active attempts")
    return attempt


# ===================== SCORING =====================


async def score_attempt(
    repo: ExamRepository,
    verifier,
    attempt: ExamAttempt,
    exam: Optional[Exam] = None,
    tasks: Optional[List[Task]] = None,
) -> ScoringData:
    """Grade an ended attempt and commit the result unless someone already did.

    The verifier is awaited before the write; no lock is held meanwhile. If the
    conditional write loses, the stored scoring of the winner is returned.
    """
    exam = exam or repo.get_exam(attempt.exam_id)
    tasks = tasks if tasks is not None else repo.get_exam_tasks(exam.id)
    user = repo.get_user(attempt.user_id)

    answers: Dict[int, TaskAnswer] = {
        task_id: parse_task_answer(raw) for task_id, raw in repo.get_answers(attempt.id).items()
    }
    solved = await collect_ctfd_solves(tasks, user.email, verifier)
    for task_id, answer in solved.items():
        answers.setdefault(task_id, answer)

    show_results = exam.type == EXAM_TYPE_INSTANT or bool(attempt.scoring_data.get("show_results"))
    scoring = score_answers(answers, tasks, show_results)

    attempt_id = attempt.id
    won = repo.save_scoring_if_unscored(
        attempt_id,
        scoring.model_dump(mode="json"),
        scoring.has_pending_review(),
    )
    if not won:
        logger.warning("Attempt %s was already scored by a concurrent request", attempt_id)
        return ScoringData.model_validate(repo.get_attempt(attempt_id).scoring_data)

    logger.info(
        "Scored attempt %s: %d verdict(s), total %.2f, show_results=%s",
        attempt_id,
        len(scoring.results),
        scoring.total_score(),
        show_results,
    )
    return scoring


def needs_finalization(repo: ExamRepository, attempt: ExamAttempt, now: datetime) -> bool:
    if attempt.scored_at is not None or is_active(attempt, now):
        return False
    return bool(repo.get_answers(attempt.id))


async def finalize_if_expired(
    repo: ExamRepository,
    verifier,
    attempt: ExamAttempt,
    exam: Optional[Exam] = None,
    tasks: Optional[List[Task]] = None,
) -> bool:
    """Score an attempt that ran out of time with answers but no scoring. Returns True if it did."""
    if not needs_finalization(repo, attempt, utcnow()):
        return False
    await score_attempt(repo, verifier, attempt, exam, tasks)
    return True


# ===================== STUDENT OPERATIONS =====================


def start_attempt(repo: ExamRepository, user: User, exam_id: int) -> AttemptOut:
    exam = get_exam(repo, user, exam_id)
    now = utcnow()

    if exam.starts_at is not None and exam.starts_at > now:
        raise NotInTimeError("Exam hasn't started yet")
    if exam.ends_at is not None and exam.ends_at <= now:
        raise NotInTimeError("Exam has ended")

    # check-then-insert: two simultaneous starts by one user are not serialized
    attempts = repo.list_user_attempts(exam_id, user.id)
    has_active = any(is_active(a, now) for a in attempts)
    out_of_tries = exam.tries_count != 0 and len(attempts) >= exam.tries_count
    if has_active or out_of_tries:
        raise ConflictError("You can't start exam: you either have an active attempt or ran out of attempts")

    attempt = repo.create_attempt(exam_id, user.id, now, compute_ends_at(exam, now))
    logger.info("User %s started attempt %s on exam %s (ends %s)", user.id, attempt.id, exam_id, attempt.ends_at)
    tasks = repo.get_exam_tasks(exam_id)
    return student_view(attempt, {}, max_score_of(tasks), now)


async def modify_attempt(
    repo: ExamRepository,
    verifier,
    user: User,
    exam_id: int,
    task_id: int,
    answer: TaskAnswer,
) -> AttemptOut:
    """Record the answer to one task of the caller's active attempt (last write wins)."""
    get_exam(repo, user, exam_id)
    attempt = _active_attempt(repo, exam_id, user.id, utcnow())

    tasks = repo.get_exam_tasks(exam_id)
    task = _find_task(tasks, task_id)
    config = parse_task_config(task.configuration)

    if config.name != answer.name:
        raise ValidationError("You've sent an answer for another task type")
    if isinstance(config, (ShortTextConfig, LongTextConfig)) and len(answer.answer) > config.max_chars_count:
        raise ValidationError(f"Your answer length is more than allowed ({config.max_chars_count})")
    if isinstance(config, CTFdConfig) and not await verifier.is_solved_by_email(config.task_id, user.email):
        raise ValidationError("You haven't solved this task yet")

    repo.upsert_answer(attempt.id, task_id, answer.model_dump(mode="json"))
    logger.info("Attempt %s: saved %s answer for task %s", attempt.id, answer.name, task_id)
    return student_view(attempt, repo.get_answers(attempt.id), max_score_of(tasks), utcnow())


async def stop_attempt(repo: ExamRepository, verifier, user: User, exam_id: int) -> AttemptOut:
    """End the caller's active attempt now and score it.

    A last attempt that already timed out is scored if needed, but the caller
    still gets NotFound: there was nothing active to stop.
    """
    exam = get_exam(repo, user, exam_id)
    now = utcnow()
    try:
        attempt = repo.get_last_attempt(exam_id, user.id)
    except NotFoundError:
        raise NotFoundError("You have no active attempts") from None

    tasks = repo.get_exam_tasks(exam_id)
    if not is_active(attempt, now):
        if attempt.scored_at is None:
            await score_attempt(repo, verifier, attempt, exam, tasks)
        raise NotFoundError("You have no active attempts")

    attempt_id = attempt.id
    repo.set_attempt_end(attempt_id, now)
    logger.info("User %s stopped attempt %s on exam %s", user.id, attempt_id, exam_id)
    await score_attempt(repo, verifier, repo.get_attempt(attempt_id), exam, tasks)

    attempt = repo.get_attempt(attempt_id)
    return student_view(attempt, repo.get_answers(attempt_id), max_score_of(tasks), utcnow())


async def get_last_attempt(repo: ExamRepository, verifier, user: User, exam_id: int) -> AttemptOut:
    exam = get_exam(repo, user, exam_id)
    tasks = repo.get_exam_tasks(exam_id)
    attempt = repo.get_last_attempt(exam_id, user.id)
    attempt_id = attempt.id
    await finalize_if_expired(repo, verifier, attempt, exam, tasks)

    attempt = repo.get_attempt(attempt_id)
    return student_view(attempt, repo.get_answers(attempt_id), max_score_of(tasks), utcnow())


async def list_user_attempts(repo: ExamRepository, verifier, user: User, exam_id: int) -> AttemptListOut:
    exam = get_exam(repo, user, exam_id)
    tasks = repo.get_exam_tasks(exam_id)
    for attempt in repo.list_user_attempts(exam_id, user.id):
        await finalize_if_expired(repo, verifier, attempt, exam, tasks)

    now = utcnow()
    max_score = max_score_of(tasks)
    attempts = repo.list_user_attempts(exam_id, user.id)
    views = [student_view(a, repo.get_answers(a.id), max_score, now) for a in attempts]

    attempts_left = None
    if exam.tries_count:
        attempts_left = max(exam.tries_count - len(attempts), 0)
    return AttemptListOut(
        attempts=views,
        attempts_left=attempts_left,
        ran_out_of_attempts=attempts_left == 0,
    )


# ===================== STAFF OPERATIONS =====================


async def score_unscored(repo: ExamRepository, verifier, exam_id: int) -> int:
    """Finalize every expired attempt of the exam that still waits for scoring."""
    exam = repo.get_exam(exam_id)
    tasks = repo.get_exam_tasks(exam_id)
    scored = 0
    for attempt in repo.list_expired_unscored_attempts(exam_id, utcnow()):
        if await finalize_if_expired(repo, verifier, attempt, exam, tasks):
            scored += 1
    if scored:
        logger.info("Finalized %d expired attempt(s) of exam %s", scored, exam_id)
    return scored


async def list_exam_attempts(
    repo: ExamRepository,
    verifier,
    exam_id: int,
    limit: int = ADMIN_PAGE_DEFAULT,
    offset: int = 0,
    ungraded_first: bool = False,
) -> List[AdminAttemptOut]:
    await score_unscored(repo, verifier, exam_id)

    tasks = repo.get_exam_tasks(exam_id)
    max_score = max_score_of(tasks)
    now = utcnow()
    attempts = repo.list_exam_attempts(exam_id, min(limit, ADMIN_PAGE_MAX), offset, ungraded_first)
    return [admin_view(a, repo.get_answers(a.id), max_score, now) for a in attempts]


def _check_manual_verdict(verdict: TaskVerdict, task: Task) -> TaskVerdict:
    if isinstance(verdict, OnReview):
        return verdict
    if verdict.max_score != task.points:
        raise ValidationError(f"max_score must be equal to the task points ({task.points})")
    if not 0 <= verdict.score <= verdict.max_score:
        raise ValidationError("score must be between 0 and max_score")
    if verdict.comment is not None:
        verdict = verdict.model_copy(update={"comment": sanitize_feedback(verdict.comment) or None})
    return verdict


async def update_attempt_verdict(
    repo: ExamRepository,
    verifier,
    exam_id: int,
    attempt_id: int,
    task_id: int,
    verdict: TaskVerdict,
) -> AdminAttemptOut:
    """Manual regrade of one task within an ended attempt."""
    exam = repo.get_exam(exam_id)
    attempt = repo.get_attempt(attempt_id)
    if attempt.exam_id != exam_id:
        raise NotFoundError("Attempt with such id doesn't exist in this exam")
    if is_active(attempt, utcnow()):
        raise ConflictError("You can't grade an attempt that is still in progress")

    tasks = repo.get_exam_tasks(exam_id)
    task = _find_task(tasks, task_id)
    verdict = _check_manual_verdict(verdict, task)

    if attempt.scored_at is None:
        await score_attempt(repo, verifier, attempt, exam, tasks)

    scoring = ScoringData.model_validate(repo.get_attempt(attempt_id).scoring_data)
    scoring.results[task_id] = verdict
    scoring.results = dict(sorted(scoring.results.items()))
    repo.update_scoring(attempt_id, scoring.model_dump(mode="json"), scoring.has_pending_review())
    logger.info("Regraded task %s of attempt %s: %s", task_id, attempt_id, verdict.verdict)

    attempt = repo.get_attempt(attempt_id)
    return admin_view(attempt, repo.get_answers(attempt_id), max_score_of(tasks), utcnow())


def set_attempt_visibility(repo: ExamRepository, exam_id: int, attempt_id: int, show_results: bool) -> None:
    repo.get_exam(exam_id)
    if repo.get_attempt(attempt_id).exam_id != exam_id:
        raise NotFoundError("Attempt with such id doesn't exist in this exam")
    repo.set_visibility(attempt_id, show_results)
    logger.info("Attempt %s show_results=%s", attempt_id, show_results)


def set_exam_visibility(repo: ExamRepository, exam_id: int, show_results: bool) -> int:
    repo.get_exam(exam_id)
    count = repo.set_visibility_for_exam(exam_id, show_results)
    logger.info("Exam %s show_results=%s on %d attempt(s)", exam_id, show_results, count)
    return count
