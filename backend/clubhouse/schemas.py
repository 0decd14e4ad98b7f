# clubhouse/schemas.py
from datetime import datetime
from typing import Any, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, validate_email

ThreadCategory = Literal["announcements", "general", "show-tell", "help"]


def _email(value: str) -> str:
    v = (value or "").strip()
    try:
        _, normalized = validate_email(v)
    except ValueError:
        raise ValueError("Invalid email address")
    return normalized.lower()


def _bounded(value: Optional[str], lo: int, hi: int, too_short: str, too_long: str) -> Optional[str]:
    if value is None:
        return None
    v = value.strip()
    if len(v) < lo:
        raise ValueError(too_short)
    if len(v) > hi:
        raise ValueError(too_long)
    return v


def _required(value, info: ValidationInfo):
    if value is None:
        label = info.field_name.replace("_", " ").capitalize()
        raise ValueError(f"{label} cannot be null")
    return value


# -----------------------------
# AUTH
# -----------------------------
class SignupIn(BaseModel):
    email: str
    password: str
    full_name: str

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _email(v)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        if len(v or "") < 8:
            raise ValueError("Password must be at least 8 characters")
        return v

    @field_validator("full_name")
    @classmethod
    def check_full_name(cls, v: str) -> str:
        return _bounded(
            v, 2, 50,
            "Name must be at least 2 characters",
            "Name must be less than 50 characters",
        )


class LoginIn(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _email(v)

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required")
        return v


class RefreshIn(BaseModel):
    refresh_token: Optional[str] = None


class ForgotPasswordIn(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _email(v)


class ResetPasswordIn(BaseModel):
    password: str

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        if len(v or "") < 8:
            raise ValueError("Password must be at least 8 characters")
        return v


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: Optional[str] = None
    bio: Optional[str] = None
    is_admin: bool
    membership_tier: str
    founding_number: Optional[int] = None
    created_at: datetime


class SessionOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


# -----------------------------
# LEADS
# -----------------------------
class LeadIn(BaseModel):
    email: str
    name: Optional[str] = None
    full_name: Optional[str] = None
    pain_level: Optional[int] = None
    source: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _email(v)

    @field_validator("name", "full_name")
    @classmethod
    def check_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return _bounded(
            v, 2, 50,
            "Name must be at least 2 characters",
            "Name must be less than 50 characters",
        )

    @field_validator("pain_level")
    @classmethod
    def check_pain(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return None
        if v < 1 or v > 10:
            raise ValueError("Pain level must be between 1 and 10")
        return v

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.full_name


class OptoutIn(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _email(v)


class LeadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: Optional[str] = None
    stage: str
    source: str
    pain_level: Optional[int] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# -----------------------------
# THREADS / COMMENTS
# -----------------------------
def _title(v: Optional[str]) -> Optional[str]:
    return _bounded(
        v, 5, 200,
        "Title must be at least 5 characters",
        "Title must be less than 200 characters",
    )


def _content(v: Optional[str]) -> Optional[str]:
    return _bounded(
        v, 10, 10000,
        "Content must be at least 10 characters",
        "Content must be less than 10000 characters",
    )


class ThreadCreateIn(BaseModel):
    title: str
    content: str
    category: ThreadCategory

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        return _title(v)

    @field_validator("content")
    @classmethod
    def check_content(cls, v: str) -> str:
        return _content(v)


class ThreadUpdateIn(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: Optional[str]) -> Optional[str]:
        return _title(v)

    @field_validator("content")
    @classmethod
    def check_content(cls, v: Optional[str]) -> Optional[str]:
        return _content(v)


class CommentCreateIn(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def check_content(cls, v: str) -> str:
        return _bounded(
            v, 1, 5000,
            "Comment cannot be empty",
            "Comment must be less than 5000 characters",
        )


class AuthorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: Optional[str] = None
    founding_number: Optional[int] = None


class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    thread_id: int
    content: str
    created_at: datetime
    updated_at: datetime
    author: Optional[AuthorOut] = None


class ThreadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    content: str
    category: str
    is_pinned: bool
    is_deleted: bool
    last_activity_at: datetime
    created_at: datetime
    updated_at: datetime
    author: Optional[AuthorOut] = None


# -----------------------------
# COURSES / MODULES / LESSONS
# -----------------------------
class CourseCreateIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    is_free: bool = False
    order_index: int = 1


class CourseUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_free: Optional[bool] = None
    order_index: Optional[int] = None

    @field_validator("title", "is_free", "order_index")
    @classmethod
    def check_not_null(cls, v, info):
        return _required(v, info)


class CourseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    is_free: bool
    order_index: int
    created_at: datetime


class ModuleCreateIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    order_index: int = 0
    is_collapsed: bool = False


class ModuleUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    order_index: Optional[int] = None
    is_collapsed: Optional[bool] = None

    @field_validator("title", "order_index", "is_collapsed")
    @classmethod
    def check_not_null(cls, v, info):
        return _required(v, info)


class LessonCreateIn(BaseModel):
    course_id: int
    module_id: Optional[int] = None
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    wistia_video_id: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    order_index: int = 1


class LessonUpdateIn(BaseModel):
    module_id: Optional[int] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    wistia_video_id: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    order_index: Optional[int] = None

    @field_validator("title", "order_index")
    @classmethod
    def check_not_null(cls, v, info):
        return _required(v, info)


class LessonOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    module_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    wistia_video_id: Optional[str] = None
    duration_minutes: Optional[int] = None
    order_index: int


class ModuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    title: str
    order_index: int
    is_collapsed: bool
    lessons: list[LessonOut] = []


# -----------------------------
# EVENTS
# -----------------------------
class EventCreateIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = None
    meeting_url: Optional[str] = None
    start_at: datetime
    end_at: Optional[datetime] = None
    capacity: Optional[int] = Field(default=None, ge=1)


class EventUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = None
    meeting_url: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    capacity: Optional[int] = Field(default=None, ge=1)

    @field_validator("title", "start_at")
    @classmethod
    def check_not_null(cls, v, info):
        return _required(v, info)


class EventInviteIn(BaseModel):
    message: Optional[str] = None


# -----------------------------
# PROFILE / ADMIN
# -----------------------------
class ProfileUpdateIn(BaseModel):
    full_name: Optional[str] = None
    bio: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("full_name")
    @classmethod
    def check_full_name(cls, v: Optional[str]) -> Optional[str]:
        return _bounded(
            v, 2, 50,
            "Name must be at least 2 characters",
            "Name must be less than 50 characters",
        )


class AdminUserUpdateIn(BaseModel):
    is_admin: Optional[bool] = None
    membership_tier: Optional[Literal["free", "paid"]] = None


# -----------------------------
# SITE CONTENT
# -----------------------------
class SiteContentIn(BaseModel):
    content: dict[str, Any]

    @field_validator("content")
    @classmethod
    def check_content(cls, v: dict) -> dict:
        if not v:
            raise ValueError("Content cannot be empty")
        return v


# -----------------------------
# STRIPE
# -----------------------------
class CheckoutSimpleIn(BaseModel):
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        return _email(v) if v else None


class PaymentIntentIn(BaseModel):
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        return _email(v) if v else None


class CreatePaymentIn(BaseModel):
    payment_method_id: str = Field(min_length=1)


class CreateSubscriptionIn(BaseModel):
    payment_method_id: str = Field(min_length=1)


class CancelSubscriptionIn(BaseModel):
    subscription_id: Optional[str] = None
