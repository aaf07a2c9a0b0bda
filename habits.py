import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

import database
import users
from schemas import Habit, HabitSchedule, UserHabit

logger = logging.getLogger(__name__)

HABIT_FIELDS = ("title", "description", "points", "emoji")
NULLABLE_FIELDS = ("description", "emoji")


# Helpers

def _family_member_ids(family_id: str) -> List[str]:
    return [str(m["_id"]) for m in database.collection("user").find({"family_id": family_id}, {"_id": 1})]


def get_schedule(habit_id: str) -> List[str]:
    return [s["day_of_week"] for s in database.collection("habitschedule").find({"habit_id": habit_id})]


def _write_schedule(habit_id: str, days: List[str]):
    for day in days:
        database.create_document("habitschedule", HabitSchedule(habit_id=habit_id, day_of_week=day))


def _user_name(user_id: str) -> str:
    creator = database.collection("user").find_one({"_id": database.parse_object_id(user_id)})
    return (creator or {}).get("name") or "Unknown"


def _assigned_to(habit_id: str) -> List[dict]:
    out = []
    for assignment in database.collection("userhabit").find({"habit_id": habit_id}):
        assignee = database.collection("user").find_one({"_id": ObjectId(assignment["user_id"])})
        if not assignee:
            continue
        out.append({
            "uid": assignee.get("uid"),
            "name": assignee.get("name"),
            "is_active": bool(assignment.get("is_active", True)),
        })
    return out


def _with_details(habit: dict) -> dict:
    habit_id = str(habit["_id"])
    data = database.serialize_doc(habit)
    data["schedule"] = get_schedule(habit_id)
    data["assigned_to"] = _assigned_to(habit_id)
    data["created_by"] = _user_name(habit["created_by"])
    return data


def require_visible_habit(habit_id: str, family_id: str) -> dict:
    """Load a habit whose creator belongs to the given family.

    Habits of other families are reported as missing rather than forbidden.
    """
    habit = database.collection("habit").find_one({"_id": database.parse_object_id(habit_id, "habitId")})
    if not habit:
        raise HTTPException(status_code=404, detail="Habit not found")
    creator = database.collection("user").find_one({"_id": ObjectId(habit["created_by"])})
    if not creator or creator.get("family_id") != family_id:
        raise HTTPException(status_code=404, detail="Habit not found")
    return habit


def _require_creator(habit: dict, user: dict, action: str):
    if habit["created_by"] != str(user["_id"]):
        raise HTTPException(status_code=400, detail=f"Only the creator can {action} this habit")


# Catalog

def create(uid: str, data: dict) -> dict:
    user = users.require_family_member(uid)
    habit = Habit(
        title=data["title"],
        description=data.get("description"),
        points=data["points"],
        emoji=data.get("emoji"),
        created_by=str(user["_id"]),
    )
    habit_id = database.create_document("habit", habit)
    _write_schedule(habit_id, data.get("schedule") or [])
    logger.info("User %s created habit %s", uid, habit_id)

    doc = database.serialize_doc(database.collection("habit").find_one({"_id": ObjectId(habit_id)}))
    doc["schedule"] = get_schedule(habit_id)
    return doc


def find_all(uid: str) -> List[dict]:
    user = users.require_family_member(uid)
    member_ids = _family_member_ids(user["family_id"])
    habits = database.collection("habit").find({"created_by": {"$in": member_ids}})
    return [_with_details(h) for h in habits]


def find_one(habit_id: str, uid: str) -> dict:
    user = users.require_family_member(uid)
    habit = require_visible_habit(habit_id, user["family_id"])
    return _with_details(habit)


def update(habit_id: str, uid: str, updates: dict) -> dict:
    user = users.require_family_member(uid)
    habit = require_visible_habit(habit_id, user["family_id"])
    _require_creator(habit, user, "update")
    habit_id = str(habit["_id"])

    data = {
        k: v for k, v in updates.items()
        if k in HABIT_FIELDS and (v is not None or k in NULLABLE_FIELDS)
    }
    data["updated_at"] = datetime.now(timezone.utc)
    database.collection("habit").update_one({"_id": habit["_id"]}, {"$set": data})

    if updates.get("schedule") is not None:
        # Replace, never merge
        database.collection("habitschedule").delete_many({"habit_id": habit_id})
        _write_schedule(habit_id, updates["schedule"])

    doc = database.serialize_doc(database.collection("habit").find_one({"_id": habit["_id"]}))
    doc["schedule"] = get_schedule(habit_id)
    return doc


def remove(habit_id: str, uid: str) -> dict:
    user = users.require_family_member(uid)
    habit = require_visible_habit(habit_id, user["family_id"])
    _require_creator(habit, user, "delete")
    habit_id = str(habit["_id"])

    # Completions, assignments, schedules, then the habit itself
    assignment_ids = [
        str(a["_id"]) for a in database.collection("userhabit").find({"habit_id": habit_id}, {"_id": 1})
    ]
    database.collection("habitcompletion").delete_many({"user_habit_id": {"$in": assignment_ids}})
    database.collection("userhabit").delete_many({"habit_id": habit_id})
    database.collection("habitschedule").delete_many({"habit_id": habit_id})
    database.collection("habit").delete_one({"_id": habit["_id"]})
    logger.info("User %s deleted habit %s", uid, habit_id)
    return {"message": "Habit deleted successfully"}


# Assignments

def assign_habit(habit_id: str, uid: str, child_id: str, is_active: Optional[bool] = None) -> dict:
    parent = users.require_family_member(uid)
    users.require_role(parent, "parent")
    habit = require_visible_habit(habit_id, parent["family_id"])

    child = database.collection("user").find_one({"_id": database.parse_object_id(child_id, "childId")})
    if not child:
        raise HTTPException(status_code=404, detail="Child not found")
    if child.get("role") != "child":
        raise HTTPException(status_code=400, detail="User is not a child")
    if child.get("family_id") != parent["family_id"]:
        raise HTTPException(status_code=400, detail="Child does not belong to your family")

    query = {"user_id": str(child["_id"]), "habit_id": str(habit["_id"])}
    if database.collection("userhabit").find_one(query):
        raise HTTPException(status_code=409, detail="Habit is already assigned to this child")

    assignment = UserHabit(
        user_id=query["user_id"],
        habit_id=query["habit_id"],
        assigned_at=datetime.now(timezone.utc),
        is_active=True if is_active is None else is_active,
    )
    try:
        assignment_id = database.create_document("userhabit", assignment)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Habit is already assigned to this child")
    logger.info("Habit %s assigned to child %s", habit_id, child_id)

    return {
        "message": "Habit assigned successfully",
        "assignment": database.serialize_doc(
            database.collection("userhabit").find_one({"_id": ObjectId(assignment_id)})
        ),
    }


def get_assigned_habits(uid: str) -> List[dict]:
    user = users.require_family_member(uid)
    out = []
    for assignment in database.collection("userhabit").find({"user_id": str(user["_id"])}):
        habit = database.collection("habit").find_one({"_id": ObjectId(assignment["habit_id"])})
        if not habit:
            continue
        out.append({
            "id": str(assignment["_id"]),
            "is_active": bool(assignment.get("is_active", True)),
            "habit": {
                "id": str(habit["_id"]),
                "title": habit.get("title"),
                "description": habit.get("description"),
                "points": habit.get("points"),
                "emoji": habit.get("emoji"),
                "created_by": habit.get("created_by"),
                "schedule": get_schedule(str(habit["_id"])),
            },
        })
    return out


def _find_family_assignment(habit_id: str, parent: dict, child_id: Optional[str]) -> dict:
    query: Dict[str, object] = {"habit_id": str(database.parse_object_id(habit_id, "habitId"))}
    if child_id:
        query["user_id"] = str(database.parse_object_id(child_id, "childId"))
    assignment = database.collection("userhabit").find_one(query)
    if not assignment:
        raise HTTPException(status_code=404, detail="Habit assignment not found")

    child = database.collection("user").find_one({"_id": ObjectId(assignment["user_id"])})
    if not child or child.get("family_id") != parent["family_id"]:
        raise HTTPException(status_code=404, detail="Habit assignment not found")
    return assignment


def update_assignment(habit_id: str, uid: str, is_active: bool, child_id: Optional[str] = None) -> dict:
    parent = users.require_family_member(uid)
    users.require_role(parent, "parent")
    assignment = _find_family_assignment(habit_id, parent, child_id)

    database.collection("userhabit").update_one(
        {"_id": assignment["_id"]},
        {"$set": {"is_active": is_active, "updated_at": datetime.now(timezone.utc)}},
    )
    assignment = database.collection("userhabit").find_one({"_id": assignment["_id"]})
    return {"message": "Assignment updated successfully", "assignment": database.serialize_doc(assignment)}


def remove_assignment(habit_id: str, uid: str, child_id: Optional[str] = None) -> dict:
    parent = users.require_family_member(uid)
    users.require_role(parent, "parent")
    assignment = _find_family_assignment(habit_id, parent, child_id)

    database.collection("habitcompletion").delete_many({"user_habit_id": str(assignment["_id"])})
    database.collection("userhabit").delete_one({"_id": assignment["_id"]})
    logger.info("Assignment %s removed by %s", assignment["_id"], uid)
    return {"message": "Assignment removed successfully"}
