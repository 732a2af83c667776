"""Result visibility policy: what an attempt looks like to its student vs. to staff.

`show_results` on the stored scoring data is the only gate. Instant exams set
it when the attempt is scored; delayed exams keep it off until staff flip it.
"""

from datetime import datetime
from typing import Dict, List

from app.models import ExamAttempt, Task
from app.schemas import AdminAttemptOut, AttemptOut, ScoringData


def max_score_of(tasks: List[Task]) -> int:
    """Sum of points over every task of the exam, answered or not."""
    return sum(task.points for task in tasks)


def is_active(attempt: ExamAttempt, now: datetime) -> bool:
    return attempt.ends_at > now


def results_visible(attempt: ExamAttempt) -> bool:
    return bool((attempt.scoring_data or {}).get("show_results", False))


def student_view(attempt: ExamAttempt, answers: Dict[int, dict], max_score: int, now: datetime) -> AttemptOut:
    scoring = ScoringData.model_validate(attempt.scoring_data or {})
    visible = scoring.show_results
    return AttemptOut(
        id=attempt.id,
        exam_id=attempt.exam_id,
        user_id=attempt.user_id,
        started_at=attempt.started_at,
        ends_at=attempt.ends_at,
        active=is_active(attempt, now),
        answer_data=answers,
        scoring_data=scoring if visible else None,
        score=scoring.total_score() if visible else None,
        max_score=max_score,
    )


def admin_view(attempt: ExamAttempt, answers: Dict[int, dict], max_score: int, now: datetime) -> AdminAttemptOut:
    scoring = ScoringData.model_validate(attempt.scoring_data or {})
    return AdminAttemptOut(
        id=attempt.id,
        exam_id=attempt.exam_id,
        user_id=attempt.user_id,
        started_at=attempt.started_at,
        ends_at=attempt.ends_at,
        active=is_active(attempt, now),
        answer_data=answers,
        scoring_data=scoring,
        scored_at=attempt.scored_at,
        pending_review=attempt.pending_review,
        score=scoring.total_score(),
        max_score=max_score,
    )
