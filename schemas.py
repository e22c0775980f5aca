"""
Database Schemas for the Exam Session API

Each Pydantic model below that maps to a collection is stored in MongoDB under the
lowercase of the class name (e.g., Exam -> "exam", AttemptRecord -> "attempt").
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_PASSING_SCORE = 60


def new_question_id() -> str:
    return f"q_{uuid4().hex[:8]}"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Question(BaseModel):
    """Multiple-choice question, embedded in its exam"""
    id: str = Field(default_factory=new_question_id, description="Question identifier, unique within the exam")
    text: str = Field(..., description="Question prompt text")
    choices: List[str] = Field(..., min_length=2, description="Answer choices, in authored order")
    answer_index: int = Field(..., ge=0, description="Index of the correct choice in choices")
    marks: float = Field(1, gt=0, description="Marks awarded for a correct answer")

    @model_validator(mode="after")
    def _answer_in_range(self):
        if self.answer_index >= len(self.choices):
            raise ValueError("answer_index must point into choices")
        return self


class SnapshotQuestion(Question):
    """Question as frozen into a session snapshot"""
    choice_order: List[int] = Field(
        default_factory=list,
        description="Authored index of each displayed choice",
    )


class Exam(BaseModel):
    """Exam definition (collection: exam)"""
    subject_id: Optional[str] = Field(None, description="Owning subject")
    title: str = Field(..., description="Exam title")
    description: Optional[str] = Field(None, description="Short description of the exam")
    duration_min: int = Field(10, ge=0, description="Time limit in minutes")
    passing_score: int = Field(DEFAULT_PASSING_SCORE, ge=0, le=100, description="Pass threshold in percent")
    max_attempts: int = Field(0, ge=0, description="Attempts allowed per taker, 0 = unlimited")
    randomize_questions: bool = False
    randomize_choices: bool = False
    show_feedback: bool = True
    start_date: Optional[datetime] = Field(None, description="Opens for attempts at")
    end_date: Optional[datetime] = Field(None, description="Closes for attempts after")
    questions: List[Question] = Field(default_factory=list)

    @field_validator("passing_score", mode="before")
    @classmethod
    def _default_passing_score(cls, v):
        return DEFAULT_PASSING_SCORE if v is None else v

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc(cls, v):
        return as_utc(v)

    @model_validator(mode="after")
    def _window_order(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @model_validator(mode="after")
    def _unique_question_ids(self):
        ids = [q.id for q in self.questions]
        if len(ids) != len(set(ids)):
            raise ValueError("question ids must be unique within an exam")
        return self


class StoredExam(Exam):
    """Exam as read back from the store, with its document id"""
    id: str


class AttemptRecord(BaseModel):
    """A finalized attempt (collection: attempt). Never updated once written."""
    exam_id: str
    user_id: str
    exam_title: Optional[str] = None
    started_at: datetime
    submitted_at: datetime
    responses: Dict[str, int] = Field(default_factory=dict, description="question id -> selected choice index")
    questions: List[SnapshotQuestion] = Field(default_factory=list, description="Session snapshot")
    score: float = 0
    correct: int = 0
    total: float = 0
    total_questions: int = 0
    passing_score: int = DEFAULT_PASSING_SCORE
    attempt_number: int = 1
    timed_out: bool = False

    @field_validator("started_at", "submitted_at")
    @classmethod
    def _utc(cls, v):
        return as_utc(v)


class User(BaseModel):
    """Taker as looked up for reports (collection: user)"""
    name: str
    email: Optional[str] = None
