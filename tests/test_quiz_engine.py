import random

import pytest

import quiz_engine
from errors import InvalidToken

QUESTIONS = [
    {"question": "First?", "options": ["A", "B"]},
    {"question": "Second?", "options": ["C", "D", "E"]},
    {"question": "Third?", "options": ["F", "G", "H", "I"]},
]


def _pairs(mapping):
    return sorted((q, o) for q, order in mapping for o in order)


def _all_pairs(questions):
    return sorted((q, o) for q, item in enumerate(questions) for o in range(len(item["options"])))


def test_identity_mapping_keeps_original_order():
    assert quiz_engine.identity_mapping(QUESTIONS) == [(0, [0, 1]), (1, [0, 1, 2]), (2, [0, 1, 2, 3])]
    assert quiz_engine.build_mapping(QUESTIONS, randomized=False) == quiz_engine.identity_mapping(QUESTIONS)


@pytest.mark.parametrize("seed", range(25))
def test_shuffled_mapping_is_a_bijection(seed):
    mapping = quiz_engine.build_mapping(QUESTIONS, randomized=True, rng=random.Random(seed))
    assert _pairs(mapping) == _all_pairs(QUESTIONS)
    assert sorted(q for q, _ in mapping) == [0, 1, 2]
    for q, order in mapping:
        assert sorted(order) == list(range(len(QUESTIONS[q]["options"])))


def test_shuffle_does_not_mutate_input():
    mapping = quiz_engine.identity_mapping(QUESTIONS)
    quiz_engine.shuffle_mapping(mapping, random.Random(3))
    assert mapping == quiz_engine.identity_mapping(QUESTIONS)


def test_present_only_reorders_references():
    mapping = [(2, [3, 0, 1, 2]), (0, [1, 0]), (1, [0, 2, 1])]
    assert quiz_engine.present(QUESTIONS, mapping) == [
        {"question": "Third?", "options": ["I", "F", "G", "H"]},
        {"question": "First?", "options": ["B", "A"]},
        {"question": "Second?", "options": ["C", "E", "D"]},
    ]


def test_encode_decode_round_trip():
    mapping = quiz_engine.build_mapping(QUESTIONS, randomized=True, rng=random.Random(7))
    text = quiz_engine.encode_mapping(mapping)
    assert " " not in text
    assert quiz_engine.decode_mapping(text, QUESTIONS) == mapping


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "{}",
        "[[0,[0,1]],[1,[0,1,2]]]",
        "[[0,[0,1]],[0,[0,1]],[2,[0,1,2,3]]]",
        "[[0,[0,0]],[1,[0,1,2]],[2,[0,1,2,3]]]",
        "[[0,[0,1]],[1,[0,1,2]],[2,[0,1,2,9]]]",
        "[[0,[0,1]],[1,[0,1,2]],[5,[0,1,2,3]]]",
        "[[0,[0,1]],[1,[0,1,2]],[2,[0,1,2]]]",
        "[[true,[0,1]],[1,[0,1,2]],[2,[0,1,2,3]]]",
        '[[0,["0",1]],[1,[0,1,2]],[2,[0,1,2,3]]]',
    ],
)
def test_decode_rejects_anything_but_a_bijection(text):
    with pytest.raises(InvalidToken):
        quiz_engine.decode_mapping(text, QUESTIONS)


@pytest.mark.parametrize(
    "count, weight",
    [(1, 100.0), (2, 50.0), (3, 33.3), (6, 16.7), (7, 14.3), (8, 12.5), (16, 6.3)],
)
def test_per_question_weight_rounds_half_up(count, weight):
    assert quiz_engine.per_question_weight(count) == weight


def test_grade_two_question_scenario():
    questions = QUESTIONS[:2]
    correct = [[0], [2]]
    mapping = quiz_engine.identity_mapping(questions)

    assert quiz_engine.grade(mapping, [[0], [2]], correct).score == 100

    result = quiz_engine.grade(mapping, [[1], [2]], correct)
    assert result.score == 50
    assert result.error_question_index == [0]
    assert result.error_answer_indexs == [[1]]


def test_grade_translates_through_shuffled_options():
    questions = QUESTIONS[:2]
    correct = [[0], [2]]
    mapping = [(1, [2, 0, 1]), (0, [1, 0])]
    # "E" is presented first for question 1, "A" second for question 0
    assert quiz_engine.grade(mapping, [[0], [1]], correct).score == 100

    result = quiz_engine.grade(mapping, [[1], [1]], correct)
    assert result.error_question_index == [0]
    assert result.error_answer_indexs == [[1]]


def test_grade_multi_choice_compares_as_sets():
    questions = [{"question": "Pick", "options": ["a", "b", "c", "d"]}]
    mapping = [(0, [3, 2, 1, 0])]
    correct = [[0, 2]]
    assert quiz_engine.grade(mapping, [[3, 1]], correct).score == 100
    assert quiz_engine.grade(mapping, [[1, 3]], correct).score == 100
    assert quiz_engine.grade(mapping, [[3]], correct).score == 0
    assert quiz_engine.grade(mapping, [[3, 1, 0]], correct).score == 0
    assert quiz_engine.grade(mapping, [[3, 3]], correct).score == 0
    assert quiz_engine.grade(mapping, [[]], correct).score == 0


def test_grade_out_of_range_selection_is_wrong():
    mapping = quiz_engine.identity_mapping(QUESTIONS[:1])
    result = quiz_engine.grade(mapping, [[5]], [[0]])
    assert result.score == 0
    assert result.error_answer_indexs == [[5]]


def test_grade_three_questions_edge_cases():
    questions = [{"question": str(i), "options": ["x", "y"]} for i in range(3)]
    mapping = quiz_engine.identity_mapping(questions)
    correct = [[0], [0], [0]]
    assert quiz_engine.grade(mapping, [[0], [0], [0]], correct).score == 100
    assert quiz_engine.grade(mapping, [[0], [0], [1]], correct).score == 67
    assert quiz_engine.grade(mapping, [[0], [1], [1]], correct).score == 34
    assert quiz_engine.grade(mapping, [[1], [1], [1]], correct).score == 0


def test_grade_seven_questions_overshoots_hundred():
    questions = [{"question": str(i), "options": ["x", "y"]} for i in range(7)]
    mapping = quiz_engine.identity_mapping(questions)
    result = quiz_engine.grade(mapping, [[0]] * 7, [[0]] * 7)
    assert result.score == 101


def test_grade_is_deterministic():
    mapping = quiz_engine.build_mapping(QUESTIONS, randomized=True, rng=random.Random(11))
    answers = [[0], [1], [2]]
    correct = [[1], [2], [3]]
    first = quiz_engine.grade(mapping, answers, correct)
    for _ in range(5):
        assert quiz_engine.grade(mapping, answers, correct) == first


def test_expand_history_marks_errors_and_translates_correct_answers():
    questions = QUESTIONS[:2]
    correct = [[0], [2]]
    mapping = [(1, [2, 0, 1]), (0, [1, 0])]
    items = quiz_engine.expand_history(questions, correct, mapping, [1], [[0]])
    assert items == [
        {
            "question": "Second?",
            "options": ["E", "C", "D"],
            "isError": False,
            "errorAnswerIndexs": None,
            "correctAnswerIndexs": [0],
        },
        {
            "question": "First?",
            "options": ["B", "A"],
            "isError": True,
            "errorAnswerIndexs": [0],
            "correctAnswerIndexs": None,
        },
    ]


def test_expand_history_matches_presentation():
    mapping = quiz_engine.build_mapping(QUESTIONS, randomized=True, rng=random.Random(5))
    presented = quiz_engine.present(QUESTIONS, mapping)
    items = quiz_engine.expand_history(QUESTIONS, [[0], [1], [2]], mapping, [], [])
    assert [{"question": i["question"], "options": i["options"]} for i in items] == presented
