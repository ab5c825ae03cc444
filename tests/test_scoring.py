from __future__ import annotations

import pytest

from quiz_league.core.errors import (
    AlreadyAttempted,
    Forbidden,
    NotFound,
    QuizNotActive,
    TimeLimitExceeded,
    ValidationError,
)
from quiz_league.core.models import Question, QuizResult, QuizStatus, SubmittedAnswer
from quiz_league.core.quiz_manager import QuizManager
from quiz_league.core.services.scoreboard import Scoreboard
from quiz_league.core.services.scoring import (
    LEGACY_SUBMISSION_WARNING,
    is_late,
    score_answer,
    score_answers,
)


def _question(question_id: str = "q1", time_limit: int = 30, positive: int = 10, negative: int = 2) -> Question:
    return Question(
        id=question_id,
        text="Which colour is grass?",
        options=["Red", "Green", "Blue"],
        correct_answer=1,
        positive_points=positive,
        negative_points=negative,
        time_limit_seconds=time_limit,
    )


def test_correct_answer_earns_points_and_time_bonus():
    scored = score_answer(_question(), SubmittedAnswer("q1", 1, time_spent=6))

    assert scored.is_correct
    assert scored.base_points == 10
    assert scored.time_bonus == 8
    assert scored.score == 18


@pytest.mark.parametrize("time_spent", [0, 6, 29, 30, None])
def test_wrong_answer_never_earns_bonus(time_spent):
    scored = score_answer(_question(), SubmittedAnswer("q1", 2, time_spent=time_spent))

    assert not scored.is_correct
    assert scored.time_bonus == 0
    assert scored.score == -2


def test_null_answer_is_scored_as_incorrect():
    scored = score_answer(_question(), SubmittedAnswer("q1", None, time_spent=0))

    assert not scored.is_correct
    assert scored.score == -2


def test_missing_time_spent_counts_as_full_time():
    scored = score_answer(_question(), SubmittedAnswer("q1", 1))

    assert scored.time_spent == 30
    assert scored.score == 10


def test_time_spent_is_clamped_to_question_limit():
    too_fast = score_answer(_question(), SubmittedAnswer("q1", 1, time_spent=-12))
    too_slow = score_answer(_question(), SubmittedAnswer("q1", 1, time_spent=500))

    assert too_fast.time_spent == 0
    assert too_fast.time_bonus == 10
    assert too_slow.time_spent == 30
    assert too_slow.time_bonus == 0


def test_score_answers_skips_unknown_and_repeated_questions():
    questions = [_question("q1"), _question("q2", negative=5)]
    answers = [
        SubmittedAnswer("q1", 1, time_spent=30),
        SubmittedAnswer("q1", 1, time_spent=0),
        SubmittedAnswer("missing", 1, time_spent=0),
        SubmittedAnswer("q2", 0, time_spent=3),
    ]

    total, breakdown = score_answers(questions, answers)

    assert [item.question_id for item in breakdown] == ["q1", "q2"]
    assert total == 10 - 5


def test_total_score_may_be_negative():
    questions = [_question("q1", negative=4), _question("q2", negative=4)]

    total, _ = score_answers(questions, [SubmittedAnswer("q1", None), SubmittedAnswer("q2", 0)])

    assert total == -8


def test_lateness_boundary():
    assert not is_late(66, 60)
    assert is_late(67, 60)


# --- Submission through the manager ---


def _submit(manager: QuizManager, token, quiz, answers=None, user_id=None, declared_score=None):
    owner = token.user.id
    return manager.submit_result(owner, user_id or owner, quiz.id, answers or [], declared_score)


def test_submission_is_scored_from_server_question_data(manager, clock, make_quiz, register_player):
    quiz = make_quiz(time_limits=(30, 30))
    player = register_player()
    manager.start_quiz(player.token, quiz.id)
    clock.advance(20)

    first, second = quiz.questions
    receipt = _submit(
        manager,
        player,
        quiz,
        [SubmittedAnswer(first.id, 1, time_spent=6), SubmittedAnswer(second.id, 0, time_spent=4)],
    )

    assert receipt.warning is None
    assert receipt.result.score == 18 - 2
    assert receipt.result.time_spent == 20
    assert receipt.result.total_questions == 2
    assert receipt.result.player_name == "Player One"


def test_partial_submission_records_full_quiz_size(manager, make_quiz, register_player):
    quiz = make_quiz(time_limits=(30, 30, 30))
    player = register_player()
    manager.start_quiz(player.token, quiz.id)

    receipt = _submit(manager, player, quiz, [SubmittedAnswer(quiz.questions[0].id, 1, time_spent=30)])

    assert receipt.result.total_questions == 3
    assert receipt.result.score == 10


def test_second_submission_is_rejected(manager, make_quiz, register_player):
    quiz = make_quiz()
    player = register_player()
    manager.start_quiz(player.token, quiz.id)
    _submit(manager, player, quiz, [SubmittedAnswer(quiz.questions[0].id, 1, time_spent=10)])

    with pytest.raises(AlreadyAttempted):
        _submit(manager, player, quiz, [SubmittedAnswer(quiz.questions[1].id, 1, time_spent=1)])

    assert len(manager.list_results(quiz.id)) == 1


def test_submission_within_grace_period_succeeds(manager, clock, make_quiz, register_player):
    quiz = make_quiz(time_limits=(30, 30))
    player = register_player()
    manager.start_quiz(player.token, quiz.id)
    clock.advance(66)

    receipt = _submit(manager, player, quiz)

    assert receipt.result.time_spent == 66
    assert manager.list_sessions(active_only=True) == []


def test_late_submission_is_rejected_and_session_left_open(manager, clock, make_quiz, register_player):
    quiz = make_quiz(time_limits=(30, 30))
    player = register_player()
    session = manager.start_quiz(player.token, quiz.id)
    clock.advance(67)

    with pytest.raises(TimeLimitExceeded):
        _submit(manager, player, quiz, [SubmittedAnswer(quiz.questions[0].id, 1, time_spent=1)])

    assert manager.list_results(quiz.id) == []
    assert [open_session.id for open_session in manager.list_sessions(active_only=True)] == [session.id]


def test_submitting_for_another_user_is_forbidden(manager, make_quiz, register_player):
    quiz = make_quiz()
    player = register_player()
    other = register_player("Player Two", "5550002")
    manager.start_quiz(other.token, quiz.id)

    with pytest.raises(Forbidden):
        _submit(manager, player, quiz, user_id=other.user.id)

    assert manager.list_results() == []


def test_submission_for_inactive_quiz_is_rejected(manager, make_quiz, register_player):
    quiz = make_quiz()
    player = register_player()
    manager.start_quiz(player.token, quiz.id)
    manager.update_quiz(quiz.id, status=QuizStatus.COMPLETED)

    with pytest.raises(QuizNotActive):
        _submit(manager, player, quiz)


def test_submission_for_unknown_quiz_is_not_found(manager, register_player):
    player = register_player()

    with pytest.raises(NotFound):
        manager.submit_result(player.user.id, player.user.id, "no-such-quiz", [])


def test_sessionless_submission_uses_declared_score_with_warning(manager, make_quiz, register_player):
    quiz = make_quiz()
    player = register_player()

    receipt = _submit(manager, player, quiz, declared_score=42)

    assert receipt.warning == LEGACY_SUBMISSION_WARNING
    assert receipt.result.score == 42
    assert receipt.result.time_spent == 0


def test_sessionless_submission_prefers_computed_score(manager, make_quiz, register_player):
    quiz = make_quiz()
    player = register_player()

    receipt = _submit(
        manager,
        player,
        quiz,
        [SubmittedAnswer(quiz.questions[0].id, 1, time_spent=30)],
        declared_score=1000,
    )

    assert receipt.warning is not None
    assert receipt.result.score == 10


def test_sessionless_submission_rejected_when_legacy_disabled(session_factory, settings, clock, make_quiz, register_player):
    quiz = make_quiz()
    player = register_player()
    strict = QuizManager(
        session_factory,
        settings.model_copy(update={"allow_legacy_submissions": False}),
        clock,
    )

    with pytest.raises(ValidationError):
        _submit(strict, player, quiz, declared_score=42)

    assert strict.list_results() == []


def test_conflicting_result_write_keeps_session_open(manager, db, clock, make_quiz, register_player, monkeypatch):
    quiz = make_quiz()
    player = register_player()
    session = manager.start_quiz(player.token, quiz.id)
    # A concurrent submission for the same pair lands after the pre-check.
    Scoreboard(db).record_result(
        QuizResult(
            id="winner",
            user_id=player.user.id,
            quiz_id=quiz.id,
            player_name=player.user.name,
            score=5,
            total_questions=len(quiz.questions),
            time_spent=3,
            completed_at=clock(),
        )
    )
    db.commit()
    monkeypatch.setattr(Scoreboard, "has_result", lambda self, user_id, quiz_id: False)
    clock.advance(10)

    with pytest.raises(AlreadyAttempted):
        _submit(manager, player, quiz)

    assert [result.id for result in manager.list_results(quiz.id)] == ["winner"]
    assert [open_session.id for open_session in manager.list_sessions(active_only=True)] == [session.id]
