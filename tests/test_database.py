from pymongo.errors import PyMongoError

import database
from database import create_document, diagnostics, get_documents


class BrokenDB:
    name = "exam_test"

    def list_collection_names(self):
        raise PyMongoError("server selection timeout")


def test_diagnostics_connected(fake_db):
    fake_db["exam"].insert_one({"title": "t"})
    report = diagnostics(fake_db)
    assert report["connection_status"] == "Connected"
    assert report["database"] == "connected"
    assert report["database_name"] == "exam_test"
    assert report["collections"] == ["exam"]


def test_diagnostics_unconfigured(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    report = diagnostics()
    assert report["connection_status"] == "Not Connected"
    assert report["database"] == "not configured"
    assert report["collections"] == []


def test_diagnostics_reports_driver_error():
    report = diagnostics(BrokenDB())
    assert report["connection_status"] == "Not Connected"
    assert report["database"].startswith("error: server selection timeout")


def test_create_and_get_documents(fake_db):
    doc_id = create_document("user", {"name": "Demo Student"}, database=fake_db)
    docs = get_documents("user", {"name": "Demo Student"}, database=fake_db)
    assert str(docs[0]["_id"]) == doc_id
    assert docs[0]["created_at"] == docs[0]["updated_at"]
