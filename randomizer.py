import random
from typing import List, Optional

from schemas import Exam, Question, SnapshotQuestion


def _snapshot_question(question: Question, shuffle_choices: bool, rng: random.Random) -> SnapshotQuestion:
    # Choices travel with their authored index, so the answer key is found by
    # identity rather than by text (duplicate choice texts stay unambiguous).
    order = list(range(len(question.choices)))
    if shuffle_choices:
        rng.shuffle(order)
    return SnapshotQuestion(
        id=question.id,
        text=question.text,
        choices=[question.choices[i] for i in order],
        answer_index=order.index(question.answer_index),
        marks=question.marks,
        choice_order=order,
    )


def build_snapshot(exam: Exam, rng: Optional[random.Random] = None) -> List[SnapshotQuestion]:
    """
    Copy the exam's questions into a session snapshot, shuffling question order
    and/or each question's choices according to the exam's toggles.
    The exam itself is left untouched.
    """
    rng = rng or random.Random()
    questions = list(exam.questions)
    if exam.randomize_questions:
        rng.shuffle(questions)
    return [_snapshot_question(q, exam.randomize_choices, rng) for q in questions]
