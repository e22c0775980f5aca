from datetime import datetime
from typing import Iterable

from schemas import AttemptRecord, Exam, as_utc


def is_available(exam: Exam, as_of: datetime) -> bool:
    """True when `as_of` falls inside the exam's optional [start_date, end_date] window."""
    as_of = as_utc(as_of)
    if exam.start_date is None and exam.end_date is None:
        return True
    if exam.start_date is not None and as_of < exam.start_date:
        return False
    if exam.end_date is not None and as_of > exam.end_date:
        return False
    return True


def attempts_used(records: Iterable[AttemptRecord], user_id: str, exam_id: str) -> int:
    return sum(1 for r in records if r.user_id == user_id and r.exam_id == exam_id)


def can_start(exam: Exam, used: int) -> bool:
    return exam.max_attempts == 0 or used < exam.max_attempts
