import copy
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from repository import AttemptRepository  # noqa: E402
from schemas import StoredExam  # noqa: E402


def _matches(doc, filt):
    for key, expected in filt.items():
        if isinstance(expected, dict) and "$in" in expected:
            if doc.get(key) not in expected["$in"]:
                return False
        elif doc.get(key) != expected:
            return False
    return True


class FakeCursor(list):
    def limit(self, n):
        return FakeCursor(self[:n])


class FakeCollection:
    def __init__(self):
        self.docs = []
        self.fail_inserts = 0

    def insert_one(self, doc):
        if self.fail_inserts:
            self.fail_inserts -= 1
            raise PyMongoError("connection reset")
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    def find(self, filt=None):
        return FakeCursor(copy.deepcopy(d) for d in self.docs if _matches(d, filt or {}))

    def find_one(self, filt=None):
        found = self.find(filt)
        return found[0] if found else None

    def update_one(self, filt, update):
        for d in self.docs:
            if _matches(d, filt):
                for key, value in update.get("$push", {}).items():
                    d.setdefault(key, []).append(copy.deepcopy(value))
                return SimpleNamespace(matched_count=1)
        return SimpleNamespace(matched_count=0)

    def delete_one(self, filt):
        for i, d in enumerate(self.docs):
            if _matches(d, filt):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class FakeDB:
    name = "exam_test"

    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    def list_collection_names(self):
        return list(self.collections)


class FakeTimer:
    """Stands in for threading.Timer; fire() runs the callback like an expiry would."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled:
            self.function()


class FakeTimers(list):
    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.append(timer)
        return timer


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def fake_db():
    return FakeDB()


@pytest.fixture
def attempts(fake_db):
    return AttemptRepository(fake_db)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def timers():
    return FakeTimers()


def _exam(**overrides):
    data = {
        "id": str(ObjectId()),
        "subject_id": "sub_general",
        "title": "General Knowledge",
        "description": "Short general knowledge quiz",
        "duration_min": 5,
        "passing_score": 60,
        "max_attempts": 3,
        "questions": [
            {"id": "q_capital", "text": "What is the capital of Bangladesh?",
             "choices": ["Chittagong", "Khulna", "Dhaka", "Barishal"], "answer_index": 2, "marks": 1},
            {"id": "q_html", "text": "HTML stands for?",
             "choices": ["Hyper Trainer Marking Language", "Hyper Text Markup Language",
                         "High Text Markup Language", "None"], "answer_index": 1, "marks": 1},
        ],
    }
    data.update(overrides)
    return StoredExam(**data)


@pytest.fixture
def make_exam():
    return _exam
