import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field

import completions
import database
import family
import habits
import rewards
import users
from auth import Identity, get_identity
from schemas import DayOfWeek, Role

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("family_habits")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; running without a database")
    yield


# App setup
app = FastAPI(title="Family Habits API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request / response models
class UserOut(BaseModel):
    id: str
    uid: str
    email: EmailStr
    name: Optional[str] = None
    role: Optional[Role] = None
    family_id: Optional[str] = None
    points: int = 0


class AuthOut(BaseModel):
    user: UserOut


class FamilyIn(BaseModel):
    name: str = Field(..., min_length=2)


class MemberIn(BaseModel):
    email: EmailStr
    role: Role


class MemberUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[Role] = None


class HabitIn(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    points: int = Field(..., ge=0)
    schedule: List[DayOfWeek] = Field(default_factory=list)
    emoji: Optional[str] = Field(None, max_length=2)


class HabitUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    points: Optional[int] = Field(None, ge=0)
    schedule: Optional[List[DayOfWeek]] = None
    emoji: Optional[str] = Field(None, max_length=2)


class AssignIn(BaseModel):
    child_id: str
    is_active: Optional[bool] = None


class AssignmentUpdate(BaseModel):
    is_active: bool
    child_id: Optional[str] = None


class CompletionIn(BaseModel):
    note: Optional[str] = None


class RewardIn(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    points_required: int = Field(..., ge=0)
    emoji: Optional[str] = None


class RewardUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    points_required: Optional[int] = Field(None, ge=0)
    emoji: Optional[str] = None


def _user_out(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "uid": user["uid"],
        "email": user["email"],
        "name": user.get("name"),
        "role": user.get("role"),
        "family_id": user.get("family_id"),
        "points": int(user.get("points", 0)),
    }


@app.get("/")
def read_root():
    return {"message": "Family Habits backend running"}

@app.get("/version")
def version():
    return {"version": os.getenv("APP_VERSION", "0.1.0")}


# Auth
@app.post("/auth", response_model=AuthOut)
async def authenticate(identity: Identity = Depends(get_identity)):
    user = users.resolve_or_create(identity.uid, identity.email, identity.name)
    return {"user": _user_out(user)}

@app.get("/auth/me", response_model=UserOut)
async def me(identity: Identity = Depends(get_identity)):
    return _user_out(users.require_user(identity.uid))


# Family
@app.get("/family")
async def get_family(identity: Identity = Depends(get_identity)):
    user = users.find_by_uid(identity.uid)
    if not user or not user.get("family_id"):
        raise HTTPException(status_code=404, detail="User is not associated with any family")
    result = family.get_family_with_members(user["family_id"])
    if result is None:
        raise HTTPException(status_code=404, detail="Family not found")
    return result

@app.post("/family")
async def create_family(body: FamilyIn, identity: Identity = Depends(get_identity)):
    return family.create_family(identity.uid, body.name)

@app.delete("/family")
async def delete_family(identity: Identity = Depends(get_identity)):
    user = users.require_family_member(identity.uid)
    users.require_role(user, "parent", "Only parents can delete the family")
    return family.delete_family(user["family_id"], identity.uid)

@app.post("/family/members")
async def add_member(body: MemberIn, identity: Identity = Depends(get_identity)):
    user = users.require_family_member(identity.uid)
    users.require_role(user, "parent", "Only parents can add family members")
    return family.add_member(user["family_id"], body.email, body.role)

@app.patch("/family/members/{member_id}")
async def update_member(member_id: str, body: MemberUpdate, identity: Identity = Depends(get_identity)):
    user = users.require_family_member(identity.uid)
    users.require_role(user, "parent", "Only parents can edit family members")
    return family.update_member(user["family_id"], member_id, body.model_dump(exclude_unset=True))


# Habits
@app.get("/habits")
async def list_habits(identity: Identity = Depends(get_identity)):
    return habits.find_all(identity.uid)

@app.post("/habits")
async def create_habit(body: HabitIn, identity: Identity = Depends(get_identity)):
    return habits.create(identity.uid, body.model_dump())

@app.get("/habits/assigned/me")
async def assigned_habits(identity: Identity = Depends(get_identity)):
    return habits.get_assigned_habits(identity.uid)

@app.patch("/habits/assigned/{habit_id}")
async def update_assignment(habit_id: str, body: AssignmentUpdate, identity: Identity = Depends(get_identity)):
    return habits.update_assignment(habit_id, identity.uid, body.is_active, body.child_id)

@app.delete("/habits/assigned/{habit_id}")
async def remove_assignment(habit_id: str, child_id: Optional[str] = None, identity: Identity = Depends(get_identity)):
    return habits.remove_assignment(habit_id, identity.uid, child_id)

@app.get("/habits/{habit_id}")
async def get_habit(habit_id: str, identity: Identity = Depends(get_identity)):
    return habits.find_one(habit_id, identity.uid)

@app.patch("/habits/{habit_id}")
async def update_habit(habit_id: str, body: HabitUpdate, identity: Identity = Depends(get_identity)):
    return habits.update(habit_id, identity.uid, body.model_dump(exclude_unset=True))

@app.delete("/habits/{habit_id}")
async def delete_habit(habit_id: str, identity: Identity = Depends(get_identity)):
    return habits.remove(habit_id, identity.uid)

@app.post("/habits/{habit_id}/assign")
async def assign_habit(habit_id: str, body: AssignIn, identity: Identity = Depends(get_identity)):
    return habits.assign_habit(habit_id, identity.uid, body.child_id, body.is_active)


# Completions
@app.get("/habits/{habit_id}/completions")
async def list_completions(habit_id: str, identity: Identity = Depends(get_identity)):
    return completions.get_completions(habit_id, identity.uid)

@app.post("/habits/{habit_id}/completions")
async def complete_habit(habit_id: str, body: Optional[CompletionIn] = None, identity: Identity = Depends(get_identity)):
    return completions.complete_habit(habit_id, identity.uid, body.note if body else None)


# Rewards
@app.get("/rewards")
async def list_rewards(identity: Identity = Depends(get_identity)):
    return rewards.get_all_rewards(identity.uid)

@app.post("/rewards")
async def create_reward(body: RewardIn, identity: Identity = Depends(get_identity)):
    return rewards.create_reward(identity.uid, body.model_dump())

@app.get("/rewards/redeemed")
async def redeemed_rewards(identity: Identity = Depends(get_identity)):
    return rewards.get_purchased_rewards(identity.uid)

@app.patch("/rewards/{reward_id}")
async def update_reward(reward_id: str, body: RewardUpdate, identity: Identity = Depends(get_identity)):
    return rewards.update_reward(identity.uid, reward_id, body.model_dump(exclude_unset=True))

@app.delete("/rewards/{reward_id}")
async def delete_reward(reward_id: str, identity: Identity = Depends(get_identity)):
    return rewards.delete_reward(identity.uid, reward_id)

@app.post("/rewards/{reward_id}/redeem")
async def redeem_reward(reward_id: str, identity: Identity = Depends(get_identity)):
    return rewards.purchase_reward(identity.uid, reward_id)


# Health/test
@app.get("/test")
def test_database():
    response = {"backend": "Running", "connection_status": "Not Connected", "collections": []}
    if database.db is None:
        return response
    try:
        response["collections"] = database.db.list_collection_names()
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.exception("Database check failed")
        response["error"] = str(e)[:80]
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
