from datetime import datetime, timezone

from quiz_client import events
from quiz_client.models import ResultSource, SnapshotSource


def test_new_question_extracts_answers_and_flags():
    question = events.parse_new_question({
        "questionIndex": 2,
        "questionText": "Pick primes",
        "answers": [{"id": 11, "text": "2"}, {"answerId": "b", "label": "4"}, {"content": "5"}],
        "questionType": "MultipleChoice",
        "timeLimitSeconds": 30,
        "startTime": "2026-01-01T10:00:00Z",
    })

    assert question.raw_index == 2
    assert question.text == "Pick primes"
    assert [(a.id, a.text) for a in question.answers] == [("11", "2"), ("b", "4"), ("2", "5")]
    assert question.is_multiple_choice
    assert question.time_limit_seconds == 30
    assert question.start_time == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_new_question_defaults_on_malformed_payload():
    question = events.parse_new_question({"timeLimitSeconds": "soon", "answers": "none"})

    assert question.time_limit_seconds == 20
    assert question.answers == ()
    assert question.raw_index is None
    assert not question.is_multiple_choice
    assert events.parse_new_question(None).text == ""


def test_new_question_nested_text_and_choices():
    question = events.parse_new_question({"question": {"text": "Nested?"}, "choices": ["yes", "no"]})

    assert question.text == "Nested?"
    assert [(a.id, a.text) for a in question.answers] == [("0", "yes"), ("1", "no")]


def test_start_time_as_epoch_milliseconds():
    parsed = events.parse_start_time(1_767_261_600_000)

    assert parsed == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert events.parse_start_time("yesterday") is None


def test_index_conversion_and_last_question():
    assert events.to_canonical_index(1, index_base=1) == 0
    assert events.to_canonical_index(0, index_base=0) == 0
    assert events.to_canonical_index(0, index_base=1) == 0
    assert events.is_last_question(5, 5, index_base=1)
    assert not events.is_last_question(4, 5, index_base=1)
    assert events.is_last_question(4, 5, index_base=0)
    assert not events.is_last_question(None, 5)
    assert not events.is_last_question(3, None)


def test_personal_result_fields():
    result = events.parse_question_result({
        "isCorrect": True,
        "correctAnswers": [{"id": "a1"}, "a3"],
        "score": 1200,
        "currentRank": 2,
        "questionIndex": 3,
        "totalQuestions": 10,
        "topPlayers": [{"id": "p1", "score": 1500}, {"id": "p2", "score": 1200}],
    }, ResultSource.PERSONAL)

    assert result.correct is True
    assert result.correct_answer_ids == ("a1", "a3")
    assert (result.score, result.rank) == (1200, 2)
    assert [p.id for p in result.leaderboard] == ["p1", "p2"]
    assert (result.raw_index, result.total_questions) == (3, 10)


def test_correct_answers_from_flagged_answers_or_single_field():
    flagged = events.parse_question_result(
        {"answers": [{"id": "x", "isCorrect": True}, {"id": "y"}]}, ResultSource.TIME_ENDED
    )
    single = events.parse_question_result({"correctAnswer": {"answerId": "z"}}, ResultSource.TIME_ENDED)

    assert flagged.correct_answer_ids == ("x",)
    assert single.correct_answer_ids == ("z",)
    assert flagged.correct is None


def test_joined_game_reads_nested_player():
    joined = events.parse_joined_game({
        "player": {"playerId": "p9", "userName": "ALICE"},
        "players": [{"playerId": "p9", "userName": "ALICE"}, {"id": "p2", "name": "Bob"}],
        "gameTitle": "Capitals",
        "totalQuestions": 3,
    })

    assert joined.player_id == "p9"
    assert joined.user_name == "ALICE"
    assert [p.name for p in joined.players] == ["ALICE", "Bob"]
    assert (joined.game_title, joined.total_questions) == ("Capitals", 3)


def test_roster_update_from_flat_player_and_bare_list():
    flat = events.parse_roster_update({"playerId": "p3", "userName": "Carol"})
    bare = events.parse_roster_update([{"id": "p1", "name": "Ann"}])

    assert flat.players is None
    assert flat.player.id == "p3"
    assert [p.id for p in bare.players] == ["p1"]


def test_player_id_from_invoke_result():
    assert events.parse_player_id("p1") == "p1"
    assert events.parse_player_id({"playerId": 5}) == "5"
    assert events.parse_player_id({"player": {"id": "p7"}}) == "p7"
    assert events.parse_player_id(None) is None


def test_errors_from_strings_and_objects():
    assert events.parse_error("Session not found").message == "Session not found"
    assert events.parse_error({"message": "Nope", "reason": "full"}).reason == "full"
    assert events.parse_error(None).message == "Unknown error"
    assert events.parse_room_closed({}).message == "The room was closed by the host"


def test_final_results_snapshot():
    snapshot = events.parse_final_results({"finalLeaderboard": [{"id": "w", "score": 9}]}, SnapshotSource.GAME_ENDED)

    assert snapshot.source == SnapshotSource.GAME_ENDED
    assert snapshot.first.id == "w"
