# clubhouse/billing.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import stripe
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import email_templates
from .access import active_subscription
from .config import get_settings
from .emailer import send_email_if_configured
from .models import (
    Lead,
    StripeCustomer,
    StripeEvent,
    StripeSubscription,
    User,
    LEAD_STAGE_MEMBER,
    LEAD_STAGE_OPTOUT,
    TIER_FREE,
    TIER_PAID,
    utcnow,
)

logger = logging.getLogger(__name__)

ONE_TIME_PERIOD_DAYS = 30


# -----------------------------
# Billing feature flag
# -----------------------------
def billing_enabled() -> bool:
    return get_settings().billing_enabled


def require_billing_enabled() -> None:
    if not billing_enabled():
        raise HTTPException(status_code=503, detail="Billing disabled")


# -----------------------------
# Stripe config helpers
# -----------------------------
def init_stripe() -> None:
    require_billing_enabled()
    key = get_settings().stripe_secret_key
    if not key:
        logger.error("STRIPE not configured (missing STRIPE_SECRET_KEY)")
        raise HTTPException(status_code=500, detail="Payment provider not configured")
    stripe.api_key = key


def webhook_secret() -> str:
    wh = get_settings().stripe_webhook_secret
    if not wh:
        logger.error("STRIPE not configured (missing STRIPE_WEBHOOK_SECRET)")
        raise HTTPException(status_code=500, detail="Payment provider not configured")
    return wh


def price_id() -> str:
    pid = get_settings().stripe_price_id
    if not pid:
        logger.error("STRIPE not configured (missing STRIPE_PRICE_ID)")
        raise HTTPException(status_code=500, detail="Payment provider not configured")
    return pid


def unix_to_dt(v: Optional[int]) -> Optional[datetime]:
    if not v:
        return None
    try:
        return datetime.fromtimestamp(int(v), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        return None


# -----------------------------
# Customers
# -----------------------------
def customer_for_user(db: Session, user_id: str) -> Optional[StripeCustomer]:
    return db.scalar(select(StripeCustomer).where(StripeCustomer.user_id == user_id))


def user_for_customer(db: Session, stripe_customer_id: Optional[str]) -> Optional[User]:
    if not stripe_customer_id:
        return None
    row = db.scalar(
        select(StripeCustomer).where(StripeCustomer.stripe_customer_id == stripe_customer_id)
    )
    return db.get(User, row.user_id) if row else None


def _upsert_customer(db: Session, user_id: str, stripe_customer_id: Optional[str]) -> None:
    if not stripe_customer_id:
        return
    row = customer_for_user(db, user_id)
    if row is None:
        db.add(StripeCustomer(user_id=user_id, stripe_customer_id=stripe_customer_id))
    elif row.stripe_customer_id != stripe_customer_id:
        row.stripe_customer_id = stripe_customer_id


def get_or_create_customer(db: Session, user: User) -> str:
    """
    Stripe customer id for the user, creating (and storing) one if needed.
    Stripe must already be initialized.
    """
    row = customer_for_user(db, user.id)
    if row:
        return row.stripe_customer_id

    customer = stripe.Customer.create(
        email=user.email,
        name=user.full_name or None,
        metadata={"userId": user.id},
    )
    db.add(StripeCustomer(user_id=user.id, stripe_customer_id=customer["id"]))
    db.commit()
    return customer["id"]


# -----------------------------
# Entitlements
# -----------------------------
def _mark_lead_member(db: Session, user: User) -> None:
    lead = db.scalar(select(Lead).where(Lead.email == user.email))
    if lead is None:
        db.add(
            Lead(
                email=user.email,
                name=user.full_name,
                stage=LEAD_STAGE_MEMBER,
                source="payment",
                user_id=user.id,
                member_at=utcnow(),
            )
        )
        return

    # an opted-out lead becomes a member once they pay
    if lead.stage != LEAD_STAGE_MEMBER:
        if lead.stage == LEAD_STAGE_OPTOUT:
            lead.optout_at = None
        lead.stage = LEAD_STAGE_MEMBER
        lead.member_at = utcnow()
    lead.user_id = lead.user_id or user.id


def activate_membership(
    db: Session,
    user_id: str,
    subscription_id: str,
    stripe_customer_id: Optional[str] = None,
    current_period_end: Optional[datetime] = None,
    cancel_at_period_end: bool = False,
    amount_cents: Optional[int] = None,
    currency: Optional[str] = None,
) -> StripeSubscription:
    """
    Grants membership in ONE transaction:
      - customer mapping
      - subscription row (status=active)
      - users.membership_tier = paid
      - leads.stage = member
    Nothing is written if any step fails.
    """
    user = db.get(User, user_id)
    if user is None:
        raise ValueError(f"Unknown user {user_id}")

    was_active = active_subscription(db, user_id) is not None

    try:
        _upsert_customer(db, user.id, stripe_customer_id)

        sub = db.get(StripeSubscription, subscription_id)
        if sub is None:
            sub = StripeSubscription(id=subscription_id, user_id=user.id)
            db.add(sub)
        sub.status = "active"
        sub.current_period_end = current_period_end
        sub.cancel_at_period_end = bool(cancel_at_period_end)

        if user.membership_tier != TIER_PAID:
            user.membership_tier = TIER_PAID
            user.tier_updated_at = utcnow()

        _mark_lead_member(db, user)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("ACTIVATION FAILED for user %s (subscription %s)", user_id, subscription_id)
        raise

    logger.info("MEMBERSHIP ACTIVATED for user %s (subscription %s)", user.id, subscription_id)

    if not was_active:
        s = get_settings()
        parts = email_templates.upgrade_confirmation(
            org_name=s.org_name,
            full_name=user.full_name,
            email=user.email,
            subscription_id=subscription_id,
            amount_cents=amount_cents if amount_cents is not None else s.membership_price_cents,
            currency=currency or s.membership_currency,
            next_billing_date=current_period_end,
            base_url=s.app_base_url,
        )
        send_email_if_configured(user.email, parts.subject, parts.body)

    return sub


def _recompute_tier(db: Session, user: User) -> None:
    has_active = active_subscription(db, user.id) is not None
    wanted = TIER_PAID if has_active else TIER_FREE
    if user.membership_tier != wanted:
        user.membership_tier = wanted
        user.tier_updated_at = utcnow()


def sync_subscription_status(
    db: Session,
    subscription_id: str,
    status: str,
    current_period_end: Optional[datetime] = None,
    cancel_at_period_end: Optional[bool] = None,
    user_id: Optional[str] = None,
    stripe_customer_id: Optional[str] = None,
) -> Optional[StripeSubscription]:
    """
    Applies a provider-side status change. An "active" status goes through
    activate_membership; anything else updates the row and drops the tier
    to free once no active subscription remains.
    Returns None when the subscription can't be tied to a user.
    """
    status = (status or "").strip().lower() or "incomplete"

    sub = db.get(StripeSubscription, subscription_id)
    if sub is not None:
        user_id = sub.user_id
    elif not user_id:
        user = user_for_customer(db, stripe_customer_id)
        user_id = user.id if user else None

    if not user_id or db.get(User, user_id) is None:
        logger.warning("WEBHOOK subscription %s has no matching user", subscription_id)
        return None

    if status == "active":
        return activate_membership(
            db,
            user_id,
            subscription_id,
            stripe_customer_id=stripe_customer_id,
            current_period_end=current_period_end or (sub.current_period_end if sub else None),
            cancel_at_period_end=bool(cancel_at_period_end) if cancel_at_period_end is not None else bool(sub and sub.cancel_at_period_end),
        )

    try:
        _upsert_customer(db, user_id, stripe_customer_id)
        if sub is None:
            sub = StripeSubscription(id=subscription_id, user_id=user_id)
            db.add(sub)
        sub.status = status
        if current_period_end is not None:
            sub.current_period_end = current_period_end
        if cancel_at_period_end is not None:
            sub.cancel_at_period_end = bool(cancel_at_period_end)
        db.flush()

        _recompute_tier(db, db.get(User, user_id))
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("SUBSCRIPTION %s -> %s (user %s)", subscription_id, status, user_id)
    return sub


# -----------------------------
# Webhook events
# -----------------------------
def event_already_processed(db: Session, event_id: Optional[str]) -> bool:
    return bool(event_id) and db.get(StripeEvent, event_id) is not None


def mark_event_processed(db: Session, event_id: Optional[str], event_type: Optional[str]) -> None:
    if not event_id:
        return
    db.add(StripeEvent(id=event_id, event_type=event_type))
    db.commit()


def _meta(obj: dict) -> dict:
    md = obj.get("metadata") or {}
    return dict(md)


def _resolve_user_id(db: Session, *candidates: Optional[str], customer_id: Optional[str] = None, email: Optional[str] = None) -> Optional[str]:
    for c in candidates:
        if c and db.get(User, c) is not None:
            return c

    user = user_for_customer(db, customer_id)
    if user:
        return user.id

    email_n = (email or "").strip().lower()
    if email_n:
        user = db.scalar(select(User).where(User.email == email_n))
        if user:
            return user.id
    return None


def _retrieve_subscription(sub_id: str) -> dict:
    return stripe.Subscription.retrieve(sub_id)


def handle_event(db: Session, event: dict) -> dict:
    """
    Applies one verified webhook event. This is the only code path that
    turns a paying user into an active member.
    """
    etype = (event.get("type") or "").strip()
    obj = event.get("data", {}).get("object", {}) or {}
    md = _meta(obj)

    if etype == "checkout.session.completed":
        customer_id = obj.get("customer")
        details = obj.get("customer_details") or {}
        user_id = _resolve_user_id(
            db,
            obj.get("client_reference_id"),
            md.get("userId"),
            customer_id=customer_id,
            email=obj.get("customer_email") or details.get("email"),
        )
        if not user_id:
            logger.warning("WEBHOOK checkout.session.completed without a user (%s)", obj.get("id"))
            return {"ignored": True, "type": etype}

        if obj.get("mode") == "payment":
            pi_id = obj.get("payment_intent") or obj.get("id")
            activate_membership(
                db,
                user_id,
                pi_id,
                stripe_customer_id=customer_id,
                current_period_end=utcnow() + timedelta(days=ONE_TIME_PERIOD_DAYS),
                amount_cents=obj.get("amount_total"),
                currency=obj.get("currency"),
            )
            return {"handled": etype}

        sub_id = obj.get("subscription")
        if not sub_id:
            return {"ignored": True, "type": etype}

        sub = _retrieve_subscription(sub_id)
        status = sub.get("status") or "incomplete"
        if status == "active":
            activate_membership(
                db,
                user_id,
                sub_id,
                stripe_customer_id=customer_id,
                current_period_end=unix_to_dt(sub.get("current_period_end")),
                cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
                amount_cents=obj.get("amount_total"),
                currency=obj.get("currency"),
            )
        else:
            sync_subscription_status(
                db,
                sub_id,
                status,
                current_period_end=unix_to_dt(sub.get("current_period_end")),
                user_id=user_id,
                stripe_customer_id=customer_id,
            )
        return {"handled": etype}

    if etype in ("customer.subscription.created", "customer.subscription.updated", "customer.subscription.deleted"):
        status = "canceled" if etype == "customer.subscription.deleted" else (obj.get("status") or "incomplete")
        user_id = _resolve_user_id(db, md.get("userId"), customer_id=obj.get("customer"))
        row = sync_subscription_status(
            db,
            obj.get("id"),
            status,
            current_period_end=unix_to_dt(obj.get("current_period_end")),
            cancel_at_period_end=obj.get("cancel_at_period_end"),
            user_id=user_id,
            stripe_customer_id=obj.get("customer"),
        )
        return {"handled": etype} if row else {"ignored": True, "type": etype}

    if etype in ("invoice.paid", "invoice.payment_succeeded"):
        sub_id = obj.get("subscription")
        if not sub_id:
            return {"ignored": True, "type": etype}
        sub = _retrieve_subscription(sub_id)
        user_id = _resolve_user_id(db, _meta(sub).get("userId"), customer_id=obj.get("customer"))
        row = sync_subscription_status(
            db,
            sub_id,
            sub.get("status") or "active",
            current_period_end=unix_to_dt(sub.get("current_period_end")),
            cancel_at_period_end=sub.get("cancel_at_period_end"),
            user_id=user_id,
            stripe_customer_id=obj.get("customer"),
        )
        return {"handled": etype} if row else {"ignored": True, "type": etype}

    if etype == "invoice.payment_failed":
        sub_id = obj.get("subscription")
        if not sub_id or db.get(StripeSubscription, sub_id) is None:
            return {"ignored": True, "type": etype}
        sync_subscription_status(db, sub_id, "past_due", stripe_customer_id=obj.get("customer"))
        return {"handled": etype}

    if etype == "payment_intent.succeeded":
        if md.get("type") != "membership":
            return {"ignored": True, "type": etype}
        user_id = _resolve_user_id(
            db,
            md.get("userId"),
            customer_id=obj.get("customer"),
            email=md.get("userEmail") or obj.get("receipt_email"),
        )
        if not user_id:
            logger.warning("WEBHOOK payment_intent.succeeded without a user (%s)", obj.get("id"))
            return {"ignored": True, "type": etype}
        activate_membership(
            db,
            user_id,
            obj.get("id"),
            stripe_customer_id=obj.get("customer"),
            current_period_end=utcnow() + timedelta(days=ONE_TIME_PERIOD_DAYS),
            amount_cents=obj.get("amount_received") or obj.get("amount"),
            currency=obj.get("currency"),
        )
        return {"handled": etype}

    logger.info("WEBHOOK ignored %s", etype)
    return {"ignored": True, "type": etype}
