import logging
import os
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from database import db, diagnostics
from errors import ExamError, QuotaExceeded
from exam_session import SessionRegistry
from reports import exam_stats, results_csv, results_filename
from repository import AttemptRepository, ExamRepository, UserDirectory
from schemas import Exam, Question, new_question_id

app = FastAPI(title="Exam Session API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sessions = SessionRegistry(AttemptRepository(db)) if db is not None else None


def _database():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def _sessions() -> SessionRegistry:
    if sessions is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return sessions


@app.exception_handler(ExamError)
async def exam_error_handler(request: Request, exc: ExamError):
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, QuotaExceeded):
        body["used"] = exc.used
        body["limit"] = exc.limit
    return JSONResponse(status_code=exc.status_code, content=body)


@app.get("/")
def read_root():
    return {"message": "Exam Session API running"}


# Exams


@app.get("/api/exams")
def list_exams():
    try:
        return ExamRepository(_database()).list()
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/exams", response_model=dict)
def create_exam(exam: Exam):
    try:
        inserted_id = ExamRepository(_database()).create(exam)
        return {"id": inserted_id}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/exams/{exam_id}")
def get_exam(exam_id: str):
    return ExamRepository(_database()).get(exam_id).model_dump()


@app.delete("/api/exams/{exam_id}", response_model=dict)
def delete_exam(exam_id: str):
    ExamRepository(_database()).delete(exam_id)
    return {"deleted": exam_id}


class CreateQuestion(BaseModel):
    exam_id: str
    text: str
    choices: List[str] = Field(..., min_length=2)
    answer_index: int = Field(..., ge=0)
    marks: float = Field(1, gt=0)


@app.post("/api/questions", response_model=dict)
def add_question(q: CreateQuestion):
    if q.answer_index >= len(q.choices):
        raise HTTPException(status_code=422, detail="answer_index must point into choices")
    question = Question(id=new_question_id(), text=q.text, choices=q.choices,
                        answer_index=q.answer_index, marks=q.marks)
    return {"id": ExamRepository(_database()).add_question(q.exam_id, question)}


@app.get("/api/exams/{exam_id}/questions")
def list_questions(exam_id: str):
    exam = ExamRepository(_database()).get(exam_id)
    return [q.model_dump() for q in exam.questions]


# Sessions


class StartSession(BaseModel):
    exam_id: str
    user_id: str


class RecordResponse(BaseModel):
    question_id: str
    choice_index: int


@app.post("/api/sessions", status_code=201)
def start_session(payload: StartSession):
    registry = _sessions()
    exam = ExamRepository(_database()).get(payload.exam_id)
    return registry.start(exam, payload.user_id).view()


@app.get("/api/sessions/{user_id}")
def get_session(user_id: str):
    return _sessions().get(user_id).view()


@app.put("/api/sessions/{user_id}/responses")
def record_response(user_id: str, payload: RecordResponse):
    session = _sessions().get(user_id)
    session.record_response(payload.question_id, payload.choice_index)
    return {"question_id": payload.question_id, "choice_index": payload.choice_index,
            "remaining_seconds": session.remaining_seconds()}


@app.post("/api/sessions/{user_id}/submit")
def submit_session(user_id: str):
    return _sessions().get(user_id).submit().model_dump(mode="json")


@app.post("/api/sessions/{user_id}/cancel")
def cancel_session(user_id: str):
    session = _sessions().get(user_id)
    session.cancel()
    return {"state": session.state.value}


# Results


def _attempt_docs(records):
    return [r.model_dump(mode="json") for r in records]


@app.get("/api/exams/{exam_id}/attempts")
def get_attempts(exam_id: str):
    return _attempt_docs(AttemptRepository(_database()).query(exam_id=exam_id))


@app.get("/api/users/{user_id}/attempts")
def get_user_attempts(user_id: str, exam_id: Optional[str] = None):
    return _attempt_docs(AttemptRepository(_database()).query(user_id=user_id, exam_id=exam_id))


@app.get("/api/exams/{exam_id}/stats")
def get_exam_stats(exam_id: str):
    database = _database()
    exam = ExamRepository(database).get(exam_id)
    records = AttemptRepository(database).query(exam_id=exam_id)
    return exam_stats(records, exam.passing_score)


@app.get("/api/exams/{exam_id}/results.csv")
def export_results(exam_id: str):
    database = _database()
    exam = ExamRepository(database).get(exam_id)
    records = AttemptRepository(database).query(exam_id=exam_id)
    users = UserDirectory(database).lookup(r.user_id for r in records)
    return Response(
        content=results_csv(records, users, exam.passing_score),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{results_filename(exam.title)}"'},
    )


@app.get("/test")
def test_database():
    return diagnostics(db)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
