"""
Database Schemas for the Family Habits API

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name (e.g., HabitSchedule -> "habitschedule"). References to
other documents are stored as stringified ObjectIds.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["parent", "child"]
DayOfWeek = Literal["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

# Index 0 is Monday, matching datetime.weekday()
DAYS_OF_WEEK = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

DEFAULT_REWARD_EMOJI = "🎁"


class User(BaseModel):
    uid: str = Field(..., description="Subject identifier from the identity provider")
    email: EmailStr = Field(..., description="User email, lower-cased")
    name: str = Field("", description="Display name")
    role: Optional[Role] = Field(None, description="Role inside the family")
    family_id: Optional[str] = Field(None, description="Family id (stringified ObjectId)")
    points: int = Field(0, ge=0, description="Current point balance")


class Family(BaseModel):
    name: str = Field(..., min_length=2)


class Habit(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    points: int = Field(..., ge=0)
    emoji: Optional[str] = None
    created_by: str = Field(..., description="Creator user id")


class HabitSchedule(BaseModel):
    """
    Collection: habitschedule
    One row per scheduled weekday; replaced wholesale when the habit's schedule changes
    """
    habit_id: str
    day_of_week: DayOfWeek


class UserHabit(BaseModel):
    """
    Collection: userhabit
    Assignment of a habit to a child, unique per (user_id, habit_id)
    """
    user_id: str = Field(..., description="Child user id")
    habit_id: str
    assigned_at: datetime
    is_active: bool = True


class HabitCompletion(BaseModel):
    """
    Collection: habitcompletion
    At most one per assignment per local calendar day
    """
    user_habit_id: str
    completed_at: datetime = Field(..., description="Server-local time of completion")
    completed_on: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="YYYY-MM-DD")
    note: Optional[str] = None


class Reward(BaseModel):
    family_id: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    points_required: int = Field(..., ge=0)
    emoji: str = DEFAULT_REWARD_EMOJI
    created_by: str


class UserReward(BaseModel):
    """
    Collection: userreward
    Redemption of a reward by a child
    """
    user_id: str
    reward_id: str
    redeemed_at: datetime
