# clubhouse/access.py
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import auth
from .database import get_db
from .models import Course, StripeSubscription, User, TIER_PAID

logger = logging.getLogger(__name__)

LEVEL_ANONYMOUS = "anonymous"
LEVEL_FREE = "free"
LEVEL_ACTIVE = "active"
LEVEL_ADMIN = "admin"

COMMUNITY_HOME = "/threads"
PAYMENT_PAGE = "/payment"


@dataclass(frozen=True)
class AccessDecision:
    level: str
    user_id: Optional[str] = None
    is_admin: bool = False
    membership_tier: Optional[str] = None
    subscription_status: Optional[str] = None

    @property
    def has_full_access(self) -> bool:
        return self.level in (LEVEL_ACTIVE, LEVEL_ADMIN)

    @property
    def is_signed_in(self) -> bool:
        return self.level != LEVEL_ANONYMOUS

    def allows(self, allow_free_tier: bool = False) -> bool:
        if self.has_full_access:
            return True
        return allow_free_tier and self.level == LEVEL_FREE

    def to_dict(self) -> dict:
        d = asdict(self)
        d["has_full_access"] = self.has_full_access
        return d


@dataclass(frozen=True)
class CourseAccess:
    has_access: bool
    reason: Optional[str] = None
    requires_upgrade: bool = False


def active_subscription(db: Session, user_id: str) -> Optional[StripeSubscription]:
    return db.scalar(
        select(StripeSubscription)
        .where(
            StripeSubscription.user_id == user_id,
            StripeSubscription.status == "active",
        )
        .limit(1)
    )


def latest_subscription(db: Session, user_id: str) -> Optional[StripeSubscription]:
    return db.scalar(
        select(StripeSubscription)
        .where(StripeSubscription.user_id == user_id)
        .order_by(StripeSubscription.updated_at.desc())
        .limit(1)
    )


def evaluate_access(db: Session, user: Optional[User]) -> AccessDecision:
    """
    Single evaluation order: admin -> active subscription -> tier.
    Always reads current rows; nothing is cached between requests.
    """
    if user is None:
        return AccessDecision(level=LEVEL_ANONYMOUS)

    tier = user.membership_tier

    if user.is_admin:
        return AccessDecision(
            level=LEVEL_ADMIN,
            user_id=user.id,
            is_admin=True,
            membership_tier=tier,
        )

    sub = active_subscription(db, user.id)
    if sub is not None:
        return AccessDecision(
            level=LEVEL_ACTIVE,
            user_id=user.id,
            membership_tier=tier,
            subscription_status=sub.status,
        )

    latest = latest_subscription(db, user.id)
    if tier == TIER_PAID:
        # tier is only a hint; entitlement comes from the subscription row
        logger.warning("ACCESS tier=paid without active subscription for user %s", user.id)

    return AccessDecision(
        level=LEVEL_FREE,
        user_id=user.id,
        membership_tier=tier,
        subscription_status=latest.status if latest else None,
    )


def redirect_target(decision: AccessDecision) -> str:
    return COMMUNITY_HOME if decision.has_full_access else PAYMENT_PAGE


def course_access(db: Session, user: Optional[User], course: Course) -> CourseAccess:
    if user is None:
        return CourseAccess(False, reason="not_authenticated")

    if course.is_free:
        return CourseAccess(True)

    if evaluate_access(db, user).has_full_access:
        return CourseAccess(True)

    return CourseAccess(False, reason="tier_mismatch", requires_upgrade=True)


# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------
def require_access(allow_free_tier: bool = False):
    """
    Dependency factory:
        user: User = Depends(require_access())
        user: User = Depends(require_access(allow_free_tier=True))
    """

    def _dependency(
        db: Session = Depends(get_db),
        user: User = Depends(auth.get_current_user),
    ) -> User:
        decision = evaluate_access(db, user)
        if not decision.allows(allow_free_tier):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "Active subscription required", "redirect_to": PAYMENT_PAGE},
            )
        return user

    return _dependency


def require_admin(user: User = Depends(auth.get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return user
