import pytest

from services.grading import RETRY_MESSAGES, final_grade, parse_grading_reply
from services.pdf_text import excerpt


def test_parse_plain_json():
    reply = parse_grading_reply(
        '{"canDetermineLevel": true, "message": "Done", '
        '"skillResults": [{"skillId": "3", "skillLevelId": 7, "feedback": "Good"}]}'
    )
    assert reply.parsed
    assert reply.can_determine_level is True
    assert [(v.skill_id, v.skill_level_id, v.feedback) for v in reply.skill_results] == [(3, 7, "Good")]


def test_parse_strips_code_fences():
    reply = parse_grading_reply('```json\n{"canDetermineLevel": false, "message": "Tell me more"}\n```')
    assert reply.parsed
    assert reply.message == "Tell me more"
    assert reply.skill_results == []


def test_question_reply_ignores_skill_results():
    reply = parse_grading_reply(
        '{"canDetermineLevel": false, "message": "More?", "skillResults": [{"skillId": 1, "skillLevelId": 2}]}'
    )
    assert reply.skill_results == []


@pytest.mark.parametrize(
    "text",
    [
        "not json at all",
        "[1, 2, 3]",
        '{"message": "no flag"}',
        '{"canDetermineLevel": "yes", "message": "wrong type"}',
        '{"canDetermineLevel": true, "message": "x", "skillResults": [{"skillId": "abc", "skillLevelId": 1}]}',
        "",
    ],
)
def test_malformed_replies_fall_back_to_retry(text):
    reply = parse_grading_reply(text, "es")
    assert reply.parsed is False
    assert reply.can_determine_level is False
    assert reply.message == RETRY_MESSAGES["es"]


def test_final_grade_is_mean_of_relative_ranks():
    assert final_grade([(3, 3)]) == 100.0
    assert final_grade([(1, 4), (3, 4)]) == 50.0
    assert final_grade([(2, 3)]) == 66.67
    assert final_grade([]) == 0.0


def test_excerpt_cuts_on_word_boundary():
    text = "word " * 400
    short = excerpt(text, limit=22)
    assert short.endswith(" ...")
    assert len(short) <= 26
    assert excerpt("brief", limit=22) == "brief"
