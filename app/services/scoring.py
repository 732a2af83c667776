"""Scoring engine: turns an attempt's answers into per-task verdicts.

`grade_answer` and `score_answers` are pure; the only I/O lives in
`collect_ctfd_solves`, which asks the challenge platform which CTFd tasks the
user has solved so they can be graded even if the student never submitted them.
"""

import logging
from typing import Dict, List

from app.errors import ServerError
from app.models import Task
from app.schemas import (
    CTFdAnswer,
    CTFdConfig,
    FileUploadAnswer,
    FileUploadConfig,
    FullScore,
    Incorrect,
    LongTextAnswer,
    LongTextConfig,
    MultipleChoiceAnswer,
    MultipleChoiceConfig,
    OnReview,
    OrderingAnswer,
    OrderingConfig,
    PartialScore,
    ScoringData,
    ShortTextAnswer,
    ShortTextConfig,
    SingleChoiceAnswer,
    SingleChoiceConfig,
    TaskAnswer,
    TaskConfig,
    TaskVerdict,
    parse_task_config,
)

logger = logging.getLogger(__name__)


def _full(points: float) -> FullScore:
    return FullScore(score=points, max_score=points)


def _incorrect(points: float) -> Incorrect:
    return Incorrect(score=0.0, max_score=points)


def grade_single_choice(answer: SingleChoiceAnswer, config: SingleChoiceConfig, points: float) -> TaskVerdict:
    if answer.answer == config.options[config.correct]:
        return _full(points)
    return _incorrect(points)


def grade_multiple_choice(answer: MultipleChoiceAnswer, config: MultipleChoiceConfig, points: float) -> TaskVerdict:
    correct = {config.options[i] for i in config.correct}
    submitted = set(answer.answers)
    if submitted == correct:
        return _full(points)
    if not config.partial_score:
        return _incorrect(points)

    # wrong picks cancel right ones; missing picks only cost their own share
    hits = len(correct & submitted)
    misses = len(submitted - correct)
    multiplier = (hits - misses) / len(correct)
    if multiplier <= 0:
        return _incorrect(points)
    return PartialScore(score=points * multiplier, max_score=points)


def grade_short_text(answer: ShortTextAnswer, config: ShortTextConfig, points: float) -> TaskVerdict:
    if not config.auto_grade:
        return OnReview()
    if config.case_sensitive:
        accepted = answer.answer in config.answers
    else:
        submitted = answer.answer.lower()
        accepted = any(a.lower() == submitted for a in config.answers)
    return _full(points) if accepted else _incorrect(points)


def grade_ordering(answer: OrderingAnswer, config: OrderingConfig, points: float) -> TaskVerdict:
    accepted = [[config.items[i] for i in permutation] for permutation in config.answers]
    if any(answer.answer == candidate for candidate in accepted):
        return _full(points)
    return _incorrect(points)


def grade_answer(answer: TaskAnswer, config: TaskConfig, points: float) -> TaskVerdict:
    """Grade one answer against its task configuration.

    A pair whose variants disagree cannot be produced by `modify`, so it is
    reported as an internal error rather than a wrong answer.
    """
    if isinstance(config, SingleChoiceConfig) and isinstance(answer, SingleChoiceAnswer):
        return grade_single_choice(answer, config, points)
    if isinstance(config, MultipleChoiceConfig) and isinstance(answer, MultipleChoiceAnswer):
        return grade_multiple_choice(answer, config, points)
    if isinstance(config, ShortTextConfig) and isinstance(answer, ShortTextAnswer):
        return grade_short_text(answer, config, points)
    if isinstance(config, OrderingConfig) and isinstance(answer, OrderingAnswer):
        return grade_ordering(answer, config, points)
    if isinstance(config, LongTextConfig) and isinstance(answer, LongTextAnswer):
        return OnReview()
    if isinstance(config, FileUploadConfig) and isinstance(answer, FileUploadAnswer):
        return OnReview()
    if isinstance(config, CTFdConfig) and isinstance(answer, CTFdAnswer):
        # the answer only exists once the platform confirmed the solve
        return _full(points)
    raise ServerError(f"Answer of type '{answer.name}' stored for a '{config.name}' task")


def score_answers(answers: Dict[int, TaskAnswer], tasks: List[Task], show_results: bool) -> ScoringData:
    """Grade every answered task of an exam."""
    tasks_by_id = {task.id: task for task in tasks}
    results: Dict[int, TaskVerdict] = {}
    for task_id in sorted(answers):
        task = tasks_by_id.get(task_id)
        if task is None:
            raise ServerError(f"There is an answer for task {task_id} which is not in the exam")
        config = parse_task_config(task.configuration)
        results[task_id] = grade_answer(answers[task_id], config, float(task.points))
    return ScoringData(show_results=show_results, results=results)


async def collect_ctfd_solves(tasks: List[Task], email: str, verifier) -> Dict[int, CTFdAnswer]:
    """Synthetic answers for every CTFd task the platform reports as solved."""
    solved: Dict[int, CTFdAnswer] = {}
    for task in tasks:
        config = parse_task_config(task.configuration)
        if not isinstance(config, CTFdConfig):
            continue
        if await verifier.is_solved_by_email(config.task_id, email):
            solved[task.id] = CTFdAnswer()
    if solved:
        logger.info("CTFd reports %d solved task(s) for %s", len(solved), email)
    return solved
