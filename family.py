import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException

import database
import users
from schemas import Family


logger = logging.getLogger(__name__)


def _require_family(family_id: str) -> dict:
    family = database.collection("family").find_one({"_id": database.parse_object_id(family_id, "familyId")})
    if not family:
        raise HTTPException(status_code=404, detail="Family not found")
    return family


def get_family_with_members(family_id: str) -> Optional[dict]:
    family = database.collection("family").find_one({"_id": database.parse_object_id(family_id, "familyId")})
    if not family:
        return None
    members = database.collection("user").find({"family_id": family_id})
    return {
        "family": database.serialize_doc(family),
        "members": [users.public_profile(m) for m in members],
    }


def create_family(uid: str, name: str) -> dict:
    user = users.require_user(uid)
    if user.get("family_id"):
        raise HTTPException(status_code=409, detail="User already belongs to a family")

    family_id = database.create_document("family", Family(name=name))
    database.collection("user").update_one(
        {"_id": user["_id"]},
        {"$set": {"family_id": family_id, "role": "parent", "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info("User %s created family %s", uid, family_id)
    return get_family_with_members(family_id)


def add_member(family_id: str, email: str, role: str) -> dict:
    _require_family(family_id)

    target = database.collection("user").find_one({"email": email.lower()})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target.get("family_id"):
        raise HTTPException(status_code=409, detail="User already belongs to a family")

    database.collection("user").update_one(
        {"_id": target["_id"]},
        {"$set": {"family_id": family_id, "role": role, "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info("Added user %s to family %s as %s", target["_id"], family_id, role)
    return get_family_with_members(family_id)


def update_member(family_id: str, member_id: str, updates: dict) -> dict:
    _require_family(family_id)
    member_oid = database.parse_object_id(member_id, "memberId")

    member = database.collection("user").find_one({"_id": member_oid, "family_id": family_id})
    if not member:
        raise HTTPException(status_code=404, detail="User not found in this family")

    data = {k: v for k, v in updates.items() if k in ("name", "role") and v is not None}
    if not data:
        raise HTTPException(status_code=400, detail="No fields to update")

    data["updated_at"] = datetime.now(timezone.utc)
    database.collection("user").update_one({"_id": member_oid}, {"$set": data})
    return get_family_with_members(family_id)


def delete_family(family_id: str, uid: str) -> dict:
    """
    Dissolve a family. Members are kept but lose their family and role.

    Runs as two writes without a transaction: if the family delete fails after
    members were cleared, the family document is left without members.
    """
    family = _require_family(family_id)

    user = database.collection("user").find_one({"uid": uid, "family_id": family_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found in this family")
    users.require_role(user, "parent", "Only parents can delete the family")

    res = database.collection("user").update_many(
        {"family_id": family_id},
        {"$set": {"family_id": None, "role": None, "updated_at": datetime.now(timezone.utc)}},
    )
    database.collection("family").delete_one({"_id": family["_id"]})
    logger.info("Family %s deleted by %s, %d members released", family_id, uid, res.modified_count)
    return {"message": "Family deleted successfully"}
