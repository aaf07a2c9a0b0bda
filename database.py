"""
MongoDB access for the Family Habits API.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; every
data route then answers 500 through `collection()`.
"""
import logging
import os
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def collection(name: str):
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db[name]


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc["created_at"] = now
    doc["updated_at"] = now
    res = collection(collection_name).insert_one(doc)
    return str(res.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None) -> List[dict]:
    return list(collection(collection_name).find(filter_dict or {}))


def parse_object_id(value: str, label: str = "id") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {label} format")


def serialize_doc(doc: Optional[dict]) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, (datetime, date)):
            out[k] = v.isoformat()
        else:
            out[k] = v
    return out


def serialize_list(docs: List[dict]) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in docs]


def ensure_indexes():
    # Uniqueness backs the one-account-per-subject, one-assignment-per-child
    # and one-completion-per-day rules under concurrent requests.
    collection("user").create_index([("uid", ASCENDING)], unique=True)
    collection("user").create_index([("email", ASCENDING)], unique=True)
    collection("user").create_index([("family_id", ASCENDING)])
    collection("habit").create_index([("created_by", ASCENDING)])
    collection("habitschedule").create_index([("habit_id", ASCENDING)])
    collection("userhabit").create_index([("user_id", ASCENDING), ("habit_id", ASCENDING)], unique=True)
    collection("habitcompletion").create_index(
        [("user_habit_id", ASCENDING), ("completed_on", ASCENDING)], unique=True
    )
    collection("reward").create_index([("family_id", ASCENDING)])
    collection("userreward").create_index([("user_id", ASCENDING), ("redeemed_at", ASCENDING)])
    logger.info("Indexes ensured on %s", getattr(db, "name", "database"))
