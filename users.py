import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

import database
from schemas import User

logger = logging.getLogger(__name__)


def find_by_uid(uid: str) -> Optional[dict]:
    return database.collection("user").find_one({"uid": uid})


def resolve_or_create(uid: str, email: str, name: str = "") -> dict:
    """Return the user for a verified subject, creating it on first sight."""
    user = find_by_uid(uid)
    if user:
        return user
    try:
        database.create_document("user", User(uid=uid, email=email.lower(), name=name or ""))
    except DuplicateKeyError:
        # Either a concurrent first request won the insert, or the email is
        # already registered under another subject.
        user = find_by_uid(uid)
        if user:
            return user
        raise HTTPException(status_code=409, detail="Email already registered")
    logger.info("Created user for subject %s", uid)
    return find_by_uid(uid)


def require_user(uid: str) -> dict:
    user = find_by_uid(uid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def require_family_member(uid: str) -> dict:
    user = require_user(uid)
    if not user.get("family_id"):
        raise HTTPException(status_code=400, detail="User is not associated with any family")
    return user


def require_role(user: dict, role: str, message: Optional[str] = None):
    if user.get("role") != role:
        raise HTTPException(status_code=400, detail=message or f"Only {role}s can perform this action")


def public_profile(user: dict) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "uid": user.get("uid"),
        "email": user.get("email"),
        "name": user.get("name"),
        "role": user.get("role"),
        "points": int(user.get("points", 0)),
    }
