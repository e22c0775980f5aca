import csv
import io
import re
from typing import Dict, Iterable, List, Optional

from grading import is_passed, percentage
from schemas import AttemptRecord, User

CSV_HEADER = [
    "Student Name", "Email", "Score", "Total", "Percentage",
    "Correct Answers", "Total Questions", "Status", "Submitted At",
]


def _num(value: float):
    return int(value) if float(value).is_integer() else value


def results_csv(records: Iterable[AttemptRecord], users: Dict[str, User],
                passing_score: Optional[int] = None) -> str:
    """
    One header row, then one row per attempt record.

    Status is judged against `passing_score` (the exam's current threshold), not the
    threshold stored on each record, so an old attempt can show a different status
    here than the taker saw at submission.
    """
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for r in records:
        user = users.get(r.user_id)
        pct = percentage(r.score, r.total)
        writer.writerow([
            user.name if user else "Unknown",
            (user.email if user else None) or "N/A",
            _num(r.score),
            _num(r.total),
            f"{pct:.2f}%",
            r.correct,
            r.total_questions,
            "Passed" if is_passed(r.score, r.total, passing_score) else "Failed",
            r.submitted_at.isoformat(),
        ])
    return out.getvalue()


def results_filename(title: str) -> str:
    return re.sub(r"\s+", "_", title or "exam") + "_results.csv"


def exam_stats(records: List[AttemptRecord], passing_score: Optional[int] = None) -> Dict[str, float]:
    if not records:
        return {
            "total_attempts": 0, "unique_students": 0, "average_score": 0,
            "highest_score": 0, "lowest_score": 0, "pass_rate": 0,
        }
    scores = [percentage(r.score, r.total) for r in records]
    passed = sum(1 for r in records if is_passed(r.score, r.total, passing_score))
    return {
        "total_attempts": len(records),
        "unique_students": len({r.user_id for r in records}),
        "average_score": round(sum(scores) / len(scores), 1),
        "highest_score": round(max(scores), 1),
        "lowest_score": round(min(scores), 1),
        "pass_rate": round(passed / len(records) * 100, 1),
    }
