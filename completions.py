"""
Habit completions and point accrual.

A child may complete an active assignment once per local calendar day, and
only on a day listed in the habit's schedule. Days follow the server clock.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import database
import users
from schemas import DAYS_OF_WEEK, HabitCompletion

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now()


def _day_bounds(now: datetime):
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def complete_habit(habit_id: str, uid: str, note: Optional[str] = None) -> dict:
    child = users.require_family_member(uid)
    users.require_role(child, "child", "Only children can perform this action")

    habit = database.collection("habit").find_one({"_id": database.parse_object_id(habit_id, "habitId")})
    if not habit:
        raise HTTPException(status_code=404, detail="Habit not found")
    habit_id = str(habit["_id"])

    assignment = database.collection("userhabit").find_one(
        {"habit_id": habit_id, "user_id": str(child["_id"]), "is_active": True}
    )
    if not assignment:
        raise HTTPException(status_code=400, detail="Habit is not assigned to you or is not active")

    now = _now()
    day_code = DAYS_OF_WEEK[now.weekday()]
    if not database.collection("habitschedule").find_one({"habit_id": habit_id, "day_of_week": day_code}):
        raise HTTPException(status_code=400, detail="This habit is not scheduled for today")

    user_habit_id = str(assignment["_id"])
    start, end = _day_bounds(now)
    existing = database.collection("habitcompletion").find_one(
        {"user_habit_id": user_habit_id, "completed_at": {"$gte": start, "$lt": end}}
    )
    if existing:
        raise HTTPException(status_code=400, detail="Habit already completed today")

    completion = HabitCompletion(
        user_habit_id=user_habit_id,
        completed_at=now,
        completed_on=now.date().isoformat(),
        note=note,
    )
    try:
        completion_id = database.create_document("habitcompletion", completion)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Habit already completed today")

    # Not atomic with the insert above: a failure here keeps the completion
    # without crediting the points.
    points = int(habit.get("points", 0))
    updated = database.collection("user").find_one_and_update(
        {"_id": child["_id"]},
        {"$inc": {"points": points}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Child %s completed habit %s for %d points", uid, habit_id, points)

    return {
        "message": "Habit completed successfully",
        "points_earned": points,
        "total_points": int((updated or {}).get("points", 0)),
        "completion": database.serialize_doc(
            database.collection("habitcompletion").find_one({"_id": ObjectId(completion_id)})
        ),
    }


def get_completions(habit_id: str, uid: str) -> List[dict]:
    user = users.require_user(uid)
    if not user.get("family_id"):
        raise HTTPException(status_code=404, detail="User not found or not in a family")
    habit_id = str(database.parse_object_id(habit_id, "habitId"))

    if user.get("role") == "child":
        assignment = database.collection("userhabit").find_one({"habit_id": habit_id, "user_id": str(user["_id"])})
        if not assignment:
            raise HTTPException(status_code=404, detail="Habit is not assigned to you")
        cursor = (
            database.collection("habitcompletion")
            .find({"user_habit_id": str(assignment["_id"])})
            .sort("completed_at", DESCENDING)
        )
        return database.serialize_list(list(cursor))

    if user.get("role") == "parent":
        children = {
            str(c["_id"]): c
            for c in database.collection("user").find({"family_id": user["family_id"], "role": "child"})
        }
        assignments = list(
            database.collection("userhabit").find({"habit_id": habit_id, "user_id": {"$in": list(children)}})
        )
        if not assignments:
            return []
        child_by_assignment = {str(a["_id"]): children[a["user_id"]] for a in assignments}

        cursor = (
            database.collection("habitcompletion")
            .find({"user_habit_id": {"$in": list(child_by_assignment)}})
            .sort("completed_at", DESCENDING)
        )
        out = []
        for completion in cursor:
            data = database.serialize_doc(completion)
            data["user"] = users.public_profile(child_by_assignment[completion["user_habit_id"]])
            out.append(data)
        return out

    raise HTTPException(status_code=400, detail="Invalid role")
