"""
Exam session controller.

A session moves NOT_STARTED -> IN_PROGRESS -> SUBMITTED | TIMED_OUT | CANCELED.
It owns its snapshot, its responses and its countdown timer; the timer is stopped
on every way out of IN_PROGRESS. All transitions take the session lock, so the
timer thread and API callers never interleave: grading always sees the responses
as they were at the instant of the terminal transition.

SessionRegistry keeps one session per taker and refuses to start a second one
while the first is still in progress.
"""

import logging
import random
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from availability import attempts_used, can_start, is_available
from errors import InvalidState, NotFound, PersistenceFailure, QuotaExceeded, Unavailable
from grading import ReviewItem, grade, is_passed, percentage, review
from randomizer import build_snapshot
from schemas import AttemptRecord, SnapshotQuestion, StoredExam, as_utc

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    TIMED_OUT = "timed_out"
    CANCELED = "canceled"


GRADED_STATES = (SessionState.SUBMITTED, SessionState.TIMED_OUT)


class SubmissionResult(BaseModel):
    state: SessionState
    timed_out: bool
    message: str
    score: float
    correct: int
    total: float
    total_questions: int
    percentage: float
    passed: bool
    passing_score: int
    review: Optional[List[ReviewItem]] = None


class Countdown:
    """One-shot cancellable timer that calls `on_expire` after `seconds`."""

    def __init__(self, seconds: float, on_expire: Callable[[], None],
                 timer_factory: Callable[..., Any] = threading.Timer):
        self.seconds = seconds
        self._on_expire = on_expire
        self._timer_factory = timer_factory
        self._timer = None

    def start(self) -> None:
        self._timer = self._timer_factory(self.seconds, self._on_expire)
        self._timer.daemon = True
        self._timer.start()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def running(self) -> bool:
        return self._timer is not None


class ExamSession:
    def __init__(self, exam: StoredExam, user_id: str, attempts,
                 clock: Callable[[], datetime] = utcnow,
                 timer_factory: Callable[..., Any] = threading.Timer,
                 rng: Optional[random.Random] = None):
        self.exam = exam
        self.user_id = user_id
        self._attempts = attempts
        self._clock = clock
        self._timer_factory = timer_factory
        self._rng = rng
        self._lock = threading.RLock()
        self._countdown: Optional[Countdown] = None

        self.state = SessionState.NOT_STARTED
        self.snapshot: Tuple[SnapshotQuestion, ...] = ()
        self.responses: Dict[str, int] = {}
        self.attempt_number = 0
        self.started_at: Optional[datetime] = None
        self.deadline: Optional[datetime] = None
        # Set when responses are frozen; kept until the append succeeds so a
        # failed save can be retried with the very same record.
        self.record: Optional[AttemptRecord] = None
        self.result: Optional[SubmissionResult] = None

    # ------------------------------------------------------------------ start
    def start(self, as_of: Optional[datetime] = None) -> "ExamSession":
        """
        Gate on availability (at `as_of`, default now) and attempt quota, build
        the snapshot and start the countdown. A zero-length exam times out here.
        """
        with self._lock:
            if self.state is not SessionState.NOT_STARTED:
                raise InvalidState("Session has already been started")

            as_of = as_utc(as_of) if as_of is not None else self._clock()
            if not is_available(self.exam, as_of):
                logger.info("start refused exam=%s user=%s reason=unavailable", self.exam.id, self.user_id)
                raise Unavailable("This exam is not currently available")

            records = self._attempts.query(user_id=self.user_id, exam_id=self.exam.id)
            used = attempts_used(records, self.user_id, self.exam.id)
            if not can_start(self.exam, used):
                logger.info("start refused exam=%s user=%s reason=quota used=%s", self.exam.id, self.user_id, used)
                raise QuotaExceeded(used, self.exam.max_attempts)

            self.snapshot = tuple(build_snapshot(self.exam, self._rng))
            self.attempt_number = used + 1
            self.started_at = self._clock()
            seconds = self.exam.duration_min * 60
            self.deadline = self.started_at + timedelta(seconds=seconds)
            self.state = SessionState.IN_PROGRESS
            logger.info("session started exam=%s user=%s attempt=%s seconds=%s",
                        self.exam.id, self.user_id, self.attempt_number, seconds)

            if seconds <= 0:
                self._time_out()
            else:
                self._countdown = Countdown(seconds, self._on_timer, self._timer_factory)
                self._countdown.start()
            return self

    # -------------------------------------------------------------- operations
    def record_response(self, question_id: str, choice_index: int) -> None:
        with self._lock:
            self._check_deadline()
            self._require_open()
            if question_id not in {q.id for q in self.snapshot}:
                raise NotFound("Question not found in this session")
            self.responses[question_id] = choice_index

    def submit(self) -> SubmissionResult:
        """
        Grade and save. Calling again after the session was graded (manually or
        by timeout) returns the same result and writes nothing.
        """
        with self._lock:
            self._check_deadline()
            if self.state in GRADED_STATES:
                return self.result
            if self.state is not SessionState.IN_PROGRESS:
                raise InvalidState("No exam in progress")
            return self._finalize(timed_out=False)

    def cancel(self) -> None:
        with self._lock:
            self._check_deadline()
            self._require_open()
            self._stop_countdown()
            self.state = SessionState.CANCELED
            logger.info("session canceled exam=%s user=%s", self.exam.id, self.user_id)

    def refresh(self) -> SessionState:
        """Apply a pending timeout, if the deadline has passed."""
        with self._lock:
            self._check_deadline()
            return self.state

    def remaining_seconds(self) -> int:
        if self.state is not SessionState.IN_PROGRESS or self.record is not None:
            return 0
        return max(0, int((self.deadline - self._clock()).total_seconds()))

    @property
    def countdown_running(self) -> bool:
        return self._countdown is not None and self._countdown.running

    # --------------------------------------------------------------- internals
    def _require_open(self) -> None:
        if self.state is not SessionState.IN_PROGRESS:
            raise InvalidState("No exam in progress")
        if self.record is not None:
            raise InvalidState("Responses are closed; submit again to save the attempt")

    def _check_deadline(self) -> None:
        if (self.state is SessionState.IN_PROGRESS and self.record is None
                and self._clock() >= self.deadline):
            self._time_out()

    def _on_timer(self) -> None:
        with self._lock:
            if self.state is SessionState.IN_PROGRESS and self.record is None:
                self._time_out()

    def _time_out(self) -> None:
        logger.info("time up, auto submitting exam=%s user=%s", self.exam.id, self.user_id)
        try:
            self._finalize(timed_out=True)
        except PersistenceFailure:
            # The frozen record stays on the session; submit() retries it.
            logger.exception("auto submit not saved exam=%s user=%s", self.exam.id, self.user_id)

    def _stop_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    def _finalize(self, timed_out: bool) -> SubmissionResult:
        if self.record is None:
            self._stop_countdown()
            graded = grade(self.snapshot, self.responses)
            self.record = AttemptRecord(
                exam_id=self.exam.id,
                user_id=self.user_id,
                exam_title=self.exam.title,
                started_at=self.started_at,
                submitted_at=self._clock(),
                responses=dict(self.responses),
                questions=list(self.snapshot),
                score=graded.score,
                correct=graded.correct,
                total=graded.total,
                total_questions=graded.total_questions,
                passing_score=self.exam.passing_score,
                attempt_number=self.attempt_number,
                timed_out=timed_out,
            )

        self._attempts.append(self.record)

        self.state = SessionState.TIMED_OUT if self.record.timed_out else SessionState.SUBMITTED
        self.result = self._build_result(self.record)
        logger.info("session %s exam=%s user=%s score=%s/%s",
                    self.state.value, self.exam.id, self.user_id, self.record.score, self.record.total)
        return self.result

    def _build_result(self, record: AttemptRecord) -> SubmissionResult:
        pct = percentage(record.score, record.total)
        return SubmissionResult(
            state=self.state,
            timed_out=record.timed_out,
            message="Time up! Your exam was submitted automatically." if record.timed_out
            else "Your responses have been recorded successfully.",
            score=record.score,
            correct=record.correct,
            total=record.total,
            total_questions=record.total_questions,
            percentage=round(pct, 2),
            passed=is_passed(record.score, record.total, record.passing_score),
            passing_score=record.passing_score,
            review=review(record.questions, record.responses) if self.exam.show_feedback else None,
        )

    def view(self) -> Dict[str, Any]:
        """Taker-facing state. Answer keys are never included."""
        with self._lock:
            self._check_deadline()
            return {
                "exam_id": self.exam.id,
                "exam_title": self.exam.title,
                "user_id": self.user_id,
                "state": self.state.value,
                "attempt_number": self.attempt_number,
                "max_attempts": self.exam.max_attempts,
                "started_at": self.started_at,
                "remaining_seconds": self.remaining_seconds(),
                "questions": [
                    {"id": q.id, "text": q.text, "choices": list(q.choices), "marks": q.marks}
                    for q in self.snapshot
                ],
                "responses": dict(self.responses),
                "result": self.result.model_dump(mode="json") if self.result else None,
            }


class SessionRegistry:
    """Active session table, keyed by taker id."""

    def __init__(self, attempts, clock: Callable[[], datetime] = utcnow,
                 timer_factory: Callable[..., Any] = threading.Timer,
                 rng: Optional[random.Random] = None):
        self.attempts = attempts
        self._clock = clock
        self._timer_factory = timer_factory
        self._rng = rng
        self._sessions: Dict[str, ExamSession] = {}
        self._lock = threading.Lock()

    def start(self, exam: StoredExam, user_id: str, as_of: Optional[datetime] = None) -> ExamSession:
        with self._lock:
            current = self._sessions.get(user_id)
            if current is not None and current.refresh() is SessionState.IN_PROGRESS:
                raise InvalidState("An exam is already in progress for this user")
            session = ExamSession(exam, user_id, self.attempts, clock=self._clock,
                                  timer_factory=self._timer_factory, rng=self._rng)
            session.start(as_of)
            self._sessions[user_id] = session
            return session

    def get(self, user_id: str) -> ExamSession:
        session = self._sessions.get(user_id)
        if session is None:
            raise NotFound("No exam session for this user")
        return session
