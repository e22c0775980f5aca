"""
MongoDB access shared by the API.

`db` is None when DATABASE_URL is not configured; callers check for that.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def _require_db(database):
    database = db if database is None else database
    if database is None:
        raise RuntimeError("Database not configured. Set DATABASE_URL and DATABASE_NAME.")
    return database


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    database = _require_db(database)
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = datetime.now(timezone.utc)
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, database=None) -> List[Dict[str, Any]]:
    database = _require_db(database)
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def diagnostics(database=None) -> Dict[str, Any]:
    """Connection report for the /test endpoint; never raises."""
    database = db if database is None else database
    report: Dict[str, Any] = {
        "backend": "running",
        "database": "not configured",
        "database_url": "set" if DATABASE_URL else "not set",
        "database_name": getattr(database, "name", None) or DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database is None:
        return report
    try:
        report["collections"] = sorted(database.list_collection_names())[:10]
    except PyMongoError as e:
        report["database"] = f"error: {str(e)[:50]}"
        return report
    report["database"] = "connected"
    report["connection_status"] = "Connected"
    return report
