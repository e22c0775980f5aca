from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from schemas import DEFAULT_PASSING_SCORE, SnapshotQuestion


class GradeResult(BaseModel):
    score: float
    correct: int
    total: float
    total_questions: int


class ReviewItem(BaseModel):
    question_id: str
    text: str
    selected_index: Optional[int] = None
    selected_text: Optional[str] = None
    correct_index: int
    correct_text: str
    is_correct: bool


def grade(snapshot: Sequence[SnapshotQuestion], responses: Dict[str, int]) -> GradeResult:
    """
    Score responses against the snapshot's answer keys.
    Unanswered and out-of-range selections simply earn nothing.
    """
    score = 0.0
    correct = 0
    for q in snapshot:
        if responses.get(q.id) == q.answer_index:
            score += q.marks
            correct += 1
    return GradeResult(
        score=score,
        correct=correct,
        total=sum(q.marks for q in snapshot),
        total_questions=len(snapshot),
    )


def percentage(score: float, total: float) -> float:
    if not total:
        return 0.0
    return score / total * 100


def is_passed(score: float, total: float, passing_score: Optional[int] = None) -> bool:
    """score/total >= threshold%, compared without dividing so exact ties pass."""
    threshold = DEFAULT_PASSING_SCORE if passing_score is None else passing_score
    if not total:
        return 0 >= threshold
    return score * 100 >= threshold * total


def review(snapshot: Sequence[SnapshotQuestion], responses: Dict[str, int]) -> List[ReviewItem]:
    items = []
    for q in snapshot:
        selected = responses.get(q.id)
        selected_text = None
        if selected is not None and 0 <= selected < len(q.choices):
            selected_text = q.choices[selected]
        items.append(ReviewItem(
            question_id=q.id,
            text=q.text,
            selected_index=selected,
            selected_text=selected_text,
            correct_index=q.answer_index,
            correct_text=q.choices[q.answer_index],
            is_correct=selected == q.answer_index,
        ))
    return items
