"""
Mongo-backed stores for exams, attempt records and taker lookups.

Attempt records are append-only: this module never updates or deletes them,
including when their exam is deleted.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from database import create_document, get_documents
from errors import NotFound, PersistenceFailure
from schemas import AttemptRecord, Exam, Question, StoredExam, User

logger = logging.getLogger(__name__)


def to_str_id(doc):
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def _object_id(value: str, what: str = "Document") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")


class ExamRepository:
    collection = "exam"

    def __init__(self, database):
        self.db = database

    def create(self, exam: Exam) -> str:
        return create_document(self.collection, exam, database=self.db)

    def get(self, exam_id: str) -> StoredExam:
        doc = self.db[self.collection].find_one({"_id": _object_id(exam_id, "Exam")})
        if not doc:
            raise NotFound("Exam not found")
        return StoredExam(**to_str_id(doc))

    def list(self) -> List[Dict[str, Any]]:
        result = []
        for doc in self.db[self.collection].find({}):
            e = to_str_id(doc)
            e["total_questions"] = len(e.get("questions") or [])
            result.append(e)
        return result

    def add_question(self, exam_id: str, question: Question) -> str:
        res = self.db[self.collection].update_one(
            {"_id": _object_id(exam_id, "Exam")},
            {"$push": {"questions": question.model_dump()}},
        )
        if not res.matched_count:
            raise NotFound("Exam not found")
        return question.id

    def delete(self, exam_id: str) -> None:
        res = self.db[self.collection].delete_one({"_id": _object_id(exam_id, "Exam")})
        if not res.deleted_count:
            raise NotFound("Exam not found")


class AttemptRepository:
    collection = "attempt"

    def __init__(self, database):
        self.db = database

    def append(self, record: AttemptRecord) -> str:
        try:
            return create_document(self.collection, record, database=self.db)
        except PyMongoError as e:
            logger.error("attempt append failed exam=%s user=%s: %s", record.exam_id, record.user_id, e)
            raise PersistenceFailure(f"Could not save attempt: {e}") from e

    def query(self, user_id: Optional[str] = None, exam_id: Optional[str] = None) -> List[AttemptRecord]:
        filt = {}
        if user_id is not None:
            filt["user_id"] = user_id
        if exam_id is not None:
            filt["exam_id"] = exam_id
        records = []
        for doc in get_documents(self.collection, filt, database=self.db):
            doc = dict(doc)
            doc.pop("_id", None)
            records.append(AttemptRecord(**doc))
        return records


class UserDirectory:
    collection = "user"

    def __init__(self, database):
        self.db = database

    def lookup(self, user_ids: Iterable[str]) -> Dict[str, User]:
        keys = []
        for uid in set(user_ids):
            keys.append(uid)
            if ObjectId.is_valid(uid):
                keys.append(ObjectId(uid))
        users = {}
        for doc in self.db[self.collection].find({"_id": {"$in": keys}}):
            users[str(doc["_id"])] = User(name=doc.get("name") or "Unknown", email=doc.get("email"))
        return users
