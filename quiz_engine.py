"""Shuffle, grading and history reconstruction for forms.

A *mapping* lists, for every presented position, the original question
index and the original option indices in the order they are shown:
``[(2, [1, 0, 2]), (0, [0, 1]), ...]``. Everything the client sees is a
projection of the stored questions through a mapping; nothing here ever
rewrites question text.
"""

from __future__ import annotations

import json
import math
import random
from dataclasses import dataclass, field
from typing import Any, Sequence

from errors import InvalidToken

ShuffleEntry = tuple[int, list[int]]
Mapping = list[ShuffleEntry]


@dataclass(slots=True)
class GradeResult:
    """Outcome of grading one attempt."""

    score: int
    error_question_index: list[int] = field(default_factory=list)
    error_answer_indexs: list[list[int]] = field(default_factory=list)


def identity_mapping(questions: Sequence[dict[str, Any]]) -> Mapping:
    return [(q_index, list(range(len(q["options"])))) for q_index, q in enumerate(questions)]


def shuffle_mapping(mapping: Mapping, rng: random.Random | None = None) -> Mapping:
    """Shuffle every option order independently, then the question order."""
    rng = rng or random.SystemRandom()
    shuffled: Mapping = []
    for q_index, options in mapping:
        order = list(options)
        rng.shuffle(order)
        shuffled.append((q_index, order))
    rng.shuffle(shuffled)
    return shuffled


def build_mapping(
    questions: Sequence[dict[str, Any]],
    randomized: bool,
    rng: random.Random | None = None,
) -> Mapping:
    mapping = identity_mapping(questions)
    if randomized:
        return shuffle_mapping(mapping, rng)
    return mapping


def present(questions: Sequence[dict[str, Any]], mapping: Mapping) -> list[dict[str, Any]]:
    return [
        {
            "question": questions[q_index]["question"],
            "options": [questions[q_index]["options"][o] for o in order],
        }
        for q_index, order in mapping
    ]


def encode_mapping(mapping: Mapping) -> str:
    return json.dumps([[q_index, list(order)] for q_index, order in mapping], separators=(",", ":"))


def decode_mapping(text: str, questions: Sequence[dict[str, Any]]) -> Mapping:
    """Parse a decrypted token and check it is a bijection over ``questions``."""
    try:
        raw = json.loads(text)
    except ValueError as exc:
        raise InvalidToken() from exc

    if not isinstance(raw, list) or len(raw) != len(questions):
        raise InvalidToken()

    mapping: Mapping = []
    for entry in raw:
        if not (isinstance(entry, list) and len(entry) == 2):
            raise InvalidToken()
        q_index, order = entry
        if not _is_index(q_index) or q_index >= len(questions) or not isinstance(order, list):
            raise InvalidToken()
        option_count = len(questions[q_index]["options"])
        if not all(_is_index(o) for o in order) or sorted(order) != list(range(option_count)):
            raise InvalidToken()
        mapping.append((q_index, order))

    if sorted(q_index for q_index, _ in mapping) != list(range(len(questions))):
        raise InvalidToken()
    return mapping


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def per_question_weight(question_count: int) -> float:
    # one decimal, half up
    return math.floor(100 / question_count * 10 + 0.5) / 10


def translate_selection(order: Sequence[int], selected: Sequence[int]) -> list[int] | None:
    """Map presented option indices back to original ones, or None if any is out of range."""
    translated = []
    for index in selected:
        if not 0 <= index < len(order):
            return None
        translated.append(order[index])
    return sorted(translated)


def grade(
    mapping: Mapping,
    answers: Sequence[Sequence[int]],
    correct_answer: Sequence[Sequence[int]],
) -> GradeResult:
    """Grade presented-space ``answers`` against original-space ``correct_answer``.

    The weight of a question is rounded first, the correct weights are summed
    in presentation order and the total is rounded up, so a form with seven
    questions all answered correctly scores 101.
    """
    weight = per_question_weight(len(correct_answer))
    raw_score = 0.0
    result = GradeResult(score=0)
    for position, (q_index, order) in enumerate(mapping):
        selected = list(answers[position])
        if translate_selection(order, selected) == sorted(correct_answer[q_index]):
            raw_score += weight
        else:
            result.error_question_index.append(position)
            result.error_answer_indexs.append(selected)
    result.score = math.ceil(raw_score)
    return result


def expand_history(
    questions: Sequence[dict[str, Any]],
    correct_answer: Sequence[Sequence[int]],
    mapping: Mapping,
    error_question_index: Sequence[int],
    error_answer_indexs: Sequence[Sequence[int]],
) -> list[dict[str, Any]]:
    """Rebuild what the user saw for one past attempt, position by position."""
    picks_by_position = dict(zip(error_question_index, error_answer_indexs))
    items = []
    for position, item in enumerate(present(questions, mapping)):
        q_index, order = mapping[position]
        is_error = position in picks_by_position
        item["isError"] = is_error
        if is_error:
            item["errorAnswerIndexs"] = list(picks_by_position[position])
            item["correctAnswerIndexs"] = None
        else:
            item["errorAnswerIndexs"] = None
            item["correctAnswerIndexs"] = [order.index(o) for o in correct_answer[q_index]]
        items.append(item)
    return items
