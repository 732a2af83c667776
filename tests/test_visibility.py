"""Tests for the result visibility policy and staff grading tools."""

import asyncio
from datetime import timedelta

import pytest

from conftest import make_attempt, make_exam
from app.errors import ConflictError, NotFoundError, ValidationError
from app.schemas import FullScore, Incorrect, OnReview, PartialScore
from app.services import attempt_service
from app.services.visibility import admin_view, max_score_of, student_view
from app.utils import utcnow


def _answered_attempt(repo, exam, user, answers, ended=True):
    attempt = make_attempt(exam, user, minutes_ago=30, minutes_left=-1 if ended else 30)
    for task_id, answer in answers.items():
        repo.upsert_answer(attempt.id, task_id, answer)
    return attempt


class TestProjection:
    def test_hidden_results_for_student(self, repo, exam, enrolled_student):
        attempt = make_attempt(exam, enrolled_student)
        attempt.scoring_data = {
            "show_results": False,
            "results": {"1": {"verdict": "full_score", "score": 10, "max_score": 10}},
        }
        view = student_view(attempt, {}, 45, utcnow())
        assert view.scoring_data is None
        assert view.score is None
        assert view.max_score == 45

    def test_visible_results_for_student(self, repo, exam, enrolled_student):
        attempt = make_attempt(exam, enrolled_student)
        attempt.scoring_data = {
            "show_results": True,
            "results": {"1": {"verdict": "partial_score", "score": 2.5, "max_score": 10}},
        }
        view = student_view(attempt, {}, 45, utcnow())
        assert view.score == 2.5
        assert isinstance(view.scoring_data.results[1], PartialScore)

    def test_admin_always_sees_scores(self, repo, exam, enrolled_student):
        attempt = make_attempt(exam, enrolled_student)
        attempt.scoring_data = {
            "show_results": False,
            "results": {"1": {"verdict": "incorrect", "score": 0, "max_score": 10}, "2": {"verdict": "on_review"}},
        }
        view = admin_view(attempt, {}, 45, utcnow())
        assert view.score == 0.0
        assert isinstance(view.scoring_data.results[2], OnReview)

    def test_max_score_counts_every_task(self, repo, exam):
        assert max_score_of(repo.get_exam_tasks(exam.id)) == 45


class TestVisibilityMutations:
    def test_per_attempt(self, repo, fake_verifier, delayed_exam, single_choice_task, enrolled_student):
        attempt = _answered_attempt(
            repo, delayed_exam, enrolled_student, {single_choice_task.id: {"name": "single_choice", "answer": "Paris"}}
        )
        asyncio.run(attempt_service.score_unscored(repo, fake_verifier, delayed_exam.id))
        hidden = asyncio.run(attempt_service.get_last_attempt(repo, fake_verifier, enrolled_student, delayed_exam.id))
        assert hidden.score is None

        attempt_service.set_attempt_visibility(repo, delayed_exam.id, attempt.id, True)
        shown = asyncio.run(attempt_service.get_last_attempt(repo, fake_verifier, enrolled_student, delayed_exam.id))
        assert shown.score == 10.0

    def test_per_attempt_wrong_exam(self, repo, exam, delayed_exam, enrolled_student):
        attempt = make_attempt(exam, enrolled_student)
        with pytest.raises(NotFoundError):
            attempt_service.set_attempt_visibility(repo, delayed_exam.id, attempt.id, True)

    def test_per_exam(self, repo, delayed_exam, enrolled_student, outsider_student):
        make_attempt(delayed_exam, enrolled_student)
        make_attempt(delayed_exam, outsider_student)
        assert attempt_service.set_exam_visibility(repo, delayed_exam.id, True) == 2
        assert all(a.scoring_data["show_results"] for a in repo.list_exam_attempts(delayed_exam.id, 10, 0, False))

    def test_flag_set_before_scoring_survives(self, repo, fake_verifier, delayed_exam, single_choice_task, enrolled_student):
        attempt = _answered_attempt(
            repo, delayed_exam, enrolled_student, {single_choice_task.id: {"name": "single_choice", "answer": "Paris"}}
        )
        attempt_service.set_exam_visibility(repo, delayed_exam.id, True)
        asyncio.run(attempt_service.score_unscored(repo, fake_verifier, delayed_exam.id))
        assert repo.get_attempt(attempt.id).scoring_data["show_results"] is True


class TestScoreUnscored:
    def test_only_expired_attempts_with_answers(self, repo, fake_verifier, exam, single_choice_task, enrolled_student, outsider_student):
        answer = {single_choice_task.id: {"name": "single_choice", "answer": "Paris"}}
        expired = _answered_attempt(repo, exam, enrolled_student, answer)
        running = _answered_attempt(repo, exam, outsider_student, answer, ended=False)
        empty = make_attempt(exam, enrolled_student, minutes_ago=90, minutes_left=-60)

        assert asyncio.run(attempt_service.score_unscored(repo, fake_verifier, exam.id)) == 1
        assert repo.get_attempt(expired.id).scored_at is not None
        assert repo.get_attempt(running.id).scored_at is None
        assert repo.get_attempt(empty.id).scored_at is None

    def test_listing_finalizes_and_sorts_ungraded_first(
        self, repo, fake_verifier, exam, single_choice_task, long_text_task, enrolled_student, outsider_student
    ):
        graded = _answered_attempt(
            repo, exam, enrolled_student, {single_choice_task.id: {"name": "single_choice", "answer": "Paris"}}
        )
        on_review = _answered_attempt(
            repo, exam, outsider_student, {long_text_task.id: {"name": "long_text", "answer": "essay"}}
        )
        listing = asyncio.run(attempt_service.list_exam_attempts(repo, fake_verifier, exam.id, ungraded_first=True))
        assert [a.id for a in listing] == [on_review.id, graded.id]
        assert listing[0].pending_review is True
        assert listing[1].score == 10.0

    def test_pagination(self, repo, fake_verifier, exam, enrolled_student):
        for i in range(3):
            make_attempt(exam, enrolled_student, minutes_ago=60 - i, minutes_left=-50)
        page = asyncio.run(attempt_service.list_exam_attempts(repo, fake_verifier, exam.id, limit=2, offset=2))
        assert len(page) == 1


class TestManualRegrade:
    def _scored(self, repo, fake_verifier, exam, user, answers):
        attempt = _answered_attempt(repo, exam, user, answers)
        asyncio.run(attempt_service.score_unscored(repo, fake_verifier, exam.id))
        return attempt

    def test_grades_on_review_task(self, repo, fake_verifier, exam, long_text_task, enrolled_student):
        attempt = self._scored(
            repo, fake_verifier, exam, enrolled_student, {long_text_task.id: {"name": "long_text", "answer": "essay"}}
        )
        verdict = PartialScore(score=12, max_score=20, comment="<b>Good</b> start<script>x</script>")
        result = asyncio.run(
            attempt_service.update_attempt_verdict(repo, fake_verifier, exam.id, attempt.id, long_text_task.id, verdict)
        )
        graded = result.scoring_data.results[long_text_task.id]
        assert graded.score == 12
        assert "<" not in graded.comment
        assert result.pending_review is False
        assert repo.get_attempt(attempt.id).pending_review is False

    def test_max_score_must_match_points(self, repo, fake_verifier, exam, long_text_task, enrolled_student):
        attempt = self._scored(
            repo, fake_verifier, exam, enrolled_student, {long_text_task.id: {"name": "long_text", "answer": "essay"}}
        )
        with pytest.raises(ValidationError):
            asyncio.run(
                attempt_service.update_attempt_verdict(
                    repo, fake_verifier, exam.id, attempt.id, long_text_task.id, FullScore(score=10, max_score=10)
                )
            )

    def test_score_above_max(self, repo, fake_verifier, exam, long_text_task, enrolled_student):
        attempt = self._scored(
            repo, fake_verifier, exam, enrolled_student, {long_text_task.id: {"name": "long_text", "answer": "essay"}}
        )
        with pytest.raises(ValidationError):
            asyncio.run(
                attempt_service.update_attempt_verdict(
                    repo, fake_verifier, exam.id, attempt.id, long_text_task.id, PartialScore(score=25, max_score=20)
                )
            )

    def test_active_attempt_cannot_be_regraded(self, repo, fake_verifier, exam, long_text_task, enrolled_student):
        attempt = make_attempt(exam, enrolled_student)
        with pytest.raises(ConflictError):
            asyncio.run(
                attempt_service.update_attempt_verdict(
                    repo, fake_verifier, exam.id, attempt.id, long_text_task.id, Incorrect(max_score=20)
                )
            )

    def test_attempt_from_another_exam(self, repo, fake_verifier, exam, topic, long_text_task, enrolled_student):
        other = make_exam(topic.id, name="Other")
        attempt = make_attempt(other, enrolled_student, minutes_left=-1)
        with pytest.raises(NotFoundError):
            asyncio.run(
                attempt_service.update_attempt_verdict(
                    repo, fake_verifier, exam.id, attempt.id, long_text_task.id, Incorrect(max_score=20)
                )
            )

    def test_task_not_in_exam(self, repo, fake_verifier, exam, ctfd_task, enrolled_student):
        attempt = make_attempt(exam, enrolled_student, minutes_left=-1)
        with pytest.raises(NotFoundError):
            asyncio.run(
                attempt_service.update_attempt_verdict(
                    repo, fake_verifier, exam.id, attempt.id, ctfd_task.id, Incorrect(max_score=30)
                )
            )

    def test_unscored_attempt_is_scored_first(self, repo, fake_verifier, exam, single_choice_task, long_text_task, enrolled_student):
        attempt = _answered_attempt(
            repo,
            exam,
            enrolled_student,
            {
                single_choice_task.id: {"name": "single_choice", "answer": "Paris"},
                long_text_task.id: {"name": "long_text", "answer": "essay"},
            },
        )
        result = asyncio.run(
            attempt_service.update_attempt_verdict(
                repo, fake_verifier, exam.id, attempt.id, long_text_task.id, FullScore(score=20, max_score=20)
            )
        )
        assert result.score == 30.0
        assert list(result.scoring_data.results) == sorted([single_choice_task.id, long_text_task.id])
        assert result.scored_at is not None
        assert result.scored_at <= utcnow() + timedelta(seconds=1)
