from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class SpotKind(str, Enum):
    free = "free"
    fixed = "fixed"
    variable = "variable"
    work = "work"


class SessionStatus(str, Enum):
    pending = "pending"
    paid = "paid"


class EmailKind(str, Enum):
    login = "login"
    post = "post"
    confirmation = "confirmation"


class EmailState(str, Enum):
    queued = "queued"
    sent = "sent"
    errored = "errored"


def normalize_email(value: str) -> str:
    value = (value or "").strip().lower()
    local, _, domain = value.partition("@")
    if not local or not domain:
        raise ValueError("email must look like name@domain")
    return value


class UserOut(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    version: int
    created_at: datetime


class UserUpdate(BaseModel):
    email: str
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str):
        return normalize_email(value)

    @field_validator("phone")
    @classmethod
    def _blank_phone(cls, value: Optional[str]):
        return value or None


class LoginForm(BaseModel):
    email: EmailStr


class ListOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None


class EventOut(BaseModel):
    id: int
    slug: str
    title: str
    description: Optional[str] = None
    starts_at: datetime
    ends_at: datetime
    capacity: int
    unlisted: bool = False
    guest_list_id: Optional[int] = None
    created_at: datetime


class SpotOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    qty_total: int
    qty_per_person: int
    kind: SpotKind
    sort: int = 0
    required_contribution: Optional[int] = None
    min_contribution: Optional[int] = None
    max_contribution: Optional[int] = None
    suggested_contribution: Optional[int] = None
    required_notice_hours: Optional[int] = None


class RsvpSessionOut(BaseModel):
    id: int
    event_id: int
    token: str
    status: SessionStatus
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    user_id: Optional[int] = None
    payment_client_secret: Optional[str] = None
    payment_intent_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class RsvpOut(BaseModel):
    id: int
    event_id: int
    spot_id: int
    session_id: int
    contribution: int
    status: SessionStatus
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    user_id: Optional[int] = None
    checkin_at: Optional[datetime] = None
    spot_name: Optional[str] = None


class SelectionItem(BaseModel):
    spot_id: int
    qty: int = Field(ge=0)
    contribution: Optional[int] = Field(default=None, ge=0)


class AttendeeIn(BaseModel):
    rsvp_id: int
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str
    is_me: bool = False

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str):
        return normalize_email(value)


class LineItem(BaseModel):
    name: str
    quantity: int
    unit_price: int


class SpotStat(BaseModel):
    name: str
    value: int


class EventStats(BaseModel):
    remaining_capacity: int
    remaining_spots: Dict[int, int]
    spot_stats: Dict[int, List[SpotStat]]


class PostOut(BaseModel):
    id: int
    slug: str
    title: str
    author: str
    content: str
    created_at: datetime


class EmailOut(BaseModel):
    id: int
    kind: EmailKind
    state: EmailState
    user_id: Optional[int] = None
    address: str
    post_id: Optional[int] = None
    list_id: Optional[int] = None
    event_id: Optional[int] = None
    notification_id: Optional[int] = None
    rsvp_session_id: Optional[int] = None
    login_token_id: Optional[int] = None
    batch_id: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None
    errored_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None


class EmailBatchOut(BaseModel):
    id: int
    size: int
    sent: int
    errored: int
    created_at: datetime
    updated_at: datetime

    @property
    def done(self) -> bool:
        return self.sent + self.errored >= self.size
