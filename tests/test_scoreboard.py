from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from quiz_league.core.errors import AlreadyAttempted
from quiz_league.core.models import QuizResult
from quiz_league.core.services.scoreboard import Scoreboard, map_result

_BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


def _result(user_id: str, quiz_id: str, score: int, time_spent: int, minutes_later: int = 0) -> QuizResult:
    return QuizResult(
        id=str(uuid4()),
        user_id=user_id,
        quiz_id=quiz_id,
        player_name=f"Player {user_id}",
        score=score,
        total_questions=5,
        time_spent=time_spent,
        completed_at=_BASE_TIME + timedelta(minutes=minutes_later),
    )


def test_leaderboard_orders_by_score_then_time(db):
    scoreboard = Scoreboard(db)
    scoreboard.record_result(_result("u1", "quiz", 30, 120))
    scoreboard.record_result(_result("u2", "quiz", 30, 90))
    scoreboard.record_result(_result("u3", "quiz", 10, 5))

    ranking = [(result.score, result.time_spent) for result in scoreboard.list_results("quiz")]

    assert ranking == [(30, 90), (30, 120), (10, 5)]


def test_negative_scores_sort_below_zero(db):
    scoreboard = Scoreboard(db)
    scoreboard.record_result(_result("u1", "quiz", -4, 10))
    scoreboard.record_result(_result("u2", "quiz", 0, 60))
    scoreboard.record_result(_result("u3", "quiz", -12, 1))

    assert [result.score for result in scoreboard.list_results("quiz")] == [0, -4, -12]


def test_global_feed_is_newest_first(db):
    scoreboard = Scoreboard(db)
    scoreboard.record_result(_result("u1", "quiz-a", 50, 10, minutes_later=1))
    scoreboard.record_result(_result("u1", "quiz-b", 5, 10, minutes_later=3))
    scoreboard.record_result(_result("u2", "quiz-a", 20, 10, minutes_later=2))

    assert [result.score for result in scoreboard.list_results()] == [5, 20, 50]


def test_duplicate_result_is_rejected_by_storage(db):
    scoreboard = Scoreboard(db)
    scoreboard.record_result(_result("u1", "quiz", 10, 10))
    db.commit()

    with pytest.raises(AlreadyAttempted):
        scoreboard.record_result(_result("u1", "quiz", 99, 1))

    assert [result.score for result in scoreboard.list_results("quiz")] == [10]


def test_reset_results_for_one_quiz(db):
    scoreboard = Scoreboard(db)
    scoreboard.record_result(_result("u1", "quiz-a", 10, 10))
    scoreboard.record_result(_result("u2", "quiz-a", 20, 10))
    scoreboard.record_result(_result("u1", "quiz-b", 30, 10))

    assert scoreboard.reset_results("quiz-a") == 2
    assert [result.quiz_id for result in scoreboard.list_results()] == ["quiz-b"]
    assert scoreboard.reset_results() == 1
    assert scoreboard.list_results() == []


def test_reset_keeps_sessions(manager, make_quiz, register_player):
    quiz = make_quiz()
    player = register_player()
    manager.start_quiz(player.token, quiz.id)
    manager.submit_result(player.user.id, player.user.id, quiz.id, [])

    manager.reset_results(quiz.id)

    assert manager.list_results() == []
    assert len(manager.list_sessions()) == 1


def test_result_payload_shape(db):
    recorded = Scoreboard(db).record_result(_result("u1", "quiz", 18, 42))

    payload = map_result(recorded)

    assert payload == {
        "id": recorded.id,
        "userId": "u1",
        "quizId": "quiz",
        "playerName": "Player u1",
        "score": 18,
        "totalQuestions": 5,
        "timeSpent": 42,
        "completedAt": "2024-05-01T12:00:00+00:00",
    }
