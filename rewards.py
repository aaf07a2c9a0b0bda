import logging
from datetime import datetime, timezone
from typing import List

from bson import ObjectId
from fastapi import HTTPException
from pymongo import DESCENDING, ReturnDocument

import database
import users
from schemas import DEFAULT_REWARD_EMOJI, Reward, UserReward

logger = logging.getLogger(__name__)

REWARD_FIELDS = ("title", "description", "points_required", "emoji")
NULLABLE_FIELDS = ("description",)


def _require_family_user(uid: str) -> dict:
    user = database.collection("user").find_one({"uid": uid})
    if not user or not user.get("family_id"):
        raise HTTPException(status_code=404, detail="User not found or not associated with a family")
    return user


def _require_reward(reward_id: str) -> dict:
    reward = database.collection("reward").find_one({"_id": database.parse_object_id(reward_id, "rewardId")})
    if not reward:
        raise HTTPException(status_code=404, detail="Reward not found")
    return reward


def create_reward(uid: str, data: dict) -> dict:
    user = _require_family_user(uid)
    users.require_role(user, "parent", "Only a parent can add rewards")
    family_id = user["family_id"]
    if not database.collection("family").find_one({"_id": ObjectId(family_id)}):
        raise HTTPException(status_code=404, detail="Family not found")

    reward = Reward(
        family_id=family_id,
        title=data["title"],
        description=data.get("description"),
        points_required=data["points_required"],
        emoji=data.get("emoji") or DEFAULT_REWARD_EMOJI,
        created_by=str(user["_id"]),
    )
    reward_id = database.create_document("reward", reward)
    logger.info("Reward %s created in family %s", reward_id, family_id)
    return database.serialize_doc(database.collection("reward").find_one({"_id": ObjectId(reward_id)}))


def get_all_rewards(uid: str) -> List[dict]:
    user = _require_family_user(uid)
    return database.serialize_list(database.get_documents("reward", {"family_id": user["family_id"]}))


def update_reward(uid: str, reward_id: str, updates: dict) -> dict:
    user = _require_family_user(uid)
    users.require_role(user, "parent", "Only a parent can update rewards")
    reward = _require_reward(reward_id)
    if reward["family_id"] != user["family_id"]:
        raise HTTPException(status_code=400, detail="Cannot update a reward from another family")

    data = {
        k: v for k, v in updates.items()
        if k in REWARD_FIELDS and (v is not None or k in NULLABLE_FIELDS)
    }
    if "emoji" in updates and updates["emoji"] is None:
        data["emoji"] = DEFAULT_REWARD_EMOJI
    if not data:
        raise HTTPException(status_code=400, detail="No fields provided for update")

    data["updated_at"] = datetime.now(timezone.utc)
    database.collection("reward").update_one({"_id": reward["_id"]}, {"$set": data})
    return database.serialize_doc(database.collection("reward").find_one({"_id": reward["_id"]}))


def delete_reward(uid: str, reward_id: str) -> dict:
    user = _require_family_user(uid)
    users.require_role(user, "parent", "Only a parent can delete rewards")
    reward = _require_reward(reward_id)
    if reward["family_id"] != user["family_id"]:
        raise HTTPException(status_code=400, detail="Cannot delete a reward from another family")

    database.collection("userreward").delete_many({"reward_id": str(reward["_id"])})
    database.collection("reward").delete_one({"_id": reward["_id"]})
    logger.info("Reward %s deleted by %s", reward["_id"], uid)
    return {"message": "Reward successfully deleted"}


def purchase_reward(uid: str, reward_id: str) -> dict:
    """
    Spend a child's points on a reward of their family.

    The decrement is conditional on the balance still covering the cost; the
    balance never goes below zero.
    """
    user = _require_family_user(uid)
    users.require_role(user, "child", "Only a child can redeem rewards")
    reward = _require_reward(reward_id)
    if reward["family_id"] != user["family_id"]:
        raise HTTPException(status_code=400, detail="Cannot redeem a reward from another family")

    cost = int(reward.get("points_required", 0))
    if int(user.get("points", 0)) < cost:
        raise HTTPException(status_code=400, detail="Insufficient points")

    updated = database.collection("user").find_one_and_update(
        {"_id": user["_id"], "points": {"$gte": cost}},
        {"$inc": {"points": -cost}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=400, detail="Insufficient points")

    redemption = UserReward(
        user_id=str(user["_id"]),
        reward_id=str(reward["_id"]),
        redeemed_at=datetime.now(timezone.utc),
    )
    redemption_id = database.create_document("userreward", redemption)
    logger.info("Child %s redeemed reward %s for %d points", uid, reward["_id"], cost)

    data = database.serialize_doc(database.collection("userreward").find_one({"_id": ObjectId(redemption_id)}))
    data["total_points"] = int(updated.get("points", 0))
    return data


def get_purchased_rewards(uid: str) -> List[dict]:
    user = _require_family_user(uid)
    profile = users.public_profile(user)
    cursor = database.collection("userreward").find({"user_id": str(user["_id"])}).sort("redeemed_at", DESCENDING)

    out = []
    for redemption in cursor:
        reward = database.collection("reward").find_one({"_id": ObjectId(redemption["reward_id"])})
        if not reward:
            continue
        out.append({
            "user": profile,
            "reward": {
                "id": str(reward["_id"]),
                "title": reward.get("title"),
                "description": reward.get("description"),
                "points_required": reward.get("points_required"),
                "emoji": reward.get("emoji", DEFAULT_REWARD_EMOJI),
            },
            "redeemed_at": redemption["redeemed_at"].isoformat(),
        })
    return out
