# clubhouse/routers/stripe_routes.py
from __future__ import annotations

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from clubhouse import auth, billing, schemas
from clubhouse.access import (
    evaluate_access,
    latest_subscription,
    require_admin,
)
from clubhouse.config import get_settings
from clubhouse.database import SessionLocal, get_db
from clubhouse.models import StripeSubscription, User
from clubhouse.payment_poller import poll_for_activation

logger = logging.getLogger(__name__)

# All payment endpoints live under /api/stripe
router = APIRouter(prefix="/api/stripe", tags=["stripe"])

SUCCESS_PATH = "/payment/success?session_id={CHECKOUT_SESSION_ID}"
CANCEL_PATH = "/payment"


def _provider_error(action: str, e: Exception) -> HTTPException:
    logger.error("STRIPE %s failed: %s", action, e)
    return HTTPException(status_code=502, detail="Payment provider error. Please try again.")


def _checkout_urls() -> tuple[str, str]:
    base = get_settings().app_base_url
    return f"{base}{SUCCESS_PATH}", f"{base}{CANCEL_PATH}"


def _ensure_not_active(db: Session, user: Optional[User]) -> None:
    if user is not None and evaluate_access(db, user).has_full_access:
        raise HTTPException(status_code=400, detail="Subscription already active")


def _create_checkout_session(user_id: Optional[str], email: Optional[str], customer_id: Optional[str] = None) -> str:
    success_url, cancel_url = _checkout_urls()
    params = {
        "mode": "subscription",
        "line_items": [{"price": billing.price_id(), "quantity": 1}],
        "allow_promotion_codes": True,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": {"userId": user_id} if user_id else {},
    }
    if user_id:
        params["client_reference_id"] = user_id
        params["subscription_data"] = {"metadata": {"userId": user_id}}
    if customer_id:
        params["customer"] = customer_id
    elif email:
        params["customer_email"] = email

    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        raise _provider_error("checkout", e)
    return session["url"]


# -----------------------------
# Checkout (hosted)
# -----------------------------
@router.post("/checkout")
def stripe_checkout(db: Session = Depends(get_db), user: User = Depends(auth.get_current_user)):
    billing.init_stripe()
    _ensure_not_active(db, user)

    row = billing.customer_for_user(db, user.id)
    url = _create_checkout_session(user.id, user.email, row.stripe_customer_id if row else None)
    return {"url": url}


@router.post("/checkout-simple")
def stripe_checkout_simple(
    payload: Optional[schemas.CheckoutSimpleIn] = None,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(auth.get_optional_user),
):
    billing.init_stripe()
    _ensure_not_active(db, user)

    email = (user.email if user else None) or (payload.email if payload else None)
    url = _create_checkout_session(user.id if user else None, email)
    return {"url": url}


# -----------------------------
# Elements (embedded card form)
# -----------------------------
@router.post("/payment-intent")
def stripe_payment_intent(
    payload: Optional[schemas.PaymentIntentIn] = None,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(auth.get_optional_user),
):
    billing.init_stripe()
    _ensure_not_active(db, user)

    email = (user.email if user else None) or (payload.email if payload else None)
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")

    s = get_settings()
    metadata = {"userEmail": email, "type": "membership"}
    if user:
        metadata["userId"] = user.id

    try:
        intent = stripe.PaymentIntent.create(
            amount=s.membership_price_cents,
            currency=s.membership_currency,
            automatic_payment_methods={"enabled": True},
            receipt_email=email,
            metadata=metadata,
        )
    except stripe.StripeError as e:
        raise _provider_error("payment-intent", e)

    return {"clientSecret": intent["client_secret"]}


@router.post("/create-payment")
def stripe_create_payment(
    payload: schemas.CreatePaymentIn,
    db: Session = Depends(get_db),
    user: User = Depends(auth.get_current_user),
):
    """
    Charges the card now. Membership is granted by the payment_intent.succeeded
    webhook, never here.
    """
    billing.init_stripe()
    _ensure_not_active(db, user)
    s = get_settings()

    try:
        customer_id = billing.get_or_create_customer(db, user)
        intent = stripe.PaymentIntent.create(
            amount=s.membership_price_cents,
            currency=s.membership_currency,
            customer=customer_id,
            payment_method=payload.payment_method_id,
            confirm=True,
            metadata={"userId": user.id, "userEmail": user.email, "type": "membership"},
            return_url=f"{s.app_base_url}/payment/success",
        )
    except stripe.StripeError as e:
        raise _provider_error("create-payment", e)

    return {
        "success": intent["status"] == "succeeded",
        "status": intent["status"],
        "clientSecret": intent["client_secret"],
        "pending": True,
    }


@router.post("/create-subscription")
def stripe_create_subscription(
    payload: schemas.CreateSubscriptionIn,
    db: Session = Depends(get_db),
    user: User = Depends(auth.get_current_user),
):
    billing.init_stripe()
    _ensure_not_active(db, user)

    try:
        customer_id = billing.get_or_create_customer(db, user)
        stripe.PaymentMethod.attach(payload.payment_method_id, customer=customer_id)
        stripe.Customer.modify(
            customer_id,
            invoice_settings={"default_payment_method": payload.payment_method_id},
        )
        sub = stripe.Subscription.create(
            customer=customer_id,
            items=[{"price": billing.price_id()}],
            metadata={"userId": user.id},
            expand=["latest_invoice.payment_intent"],
        )
    except stripe.StripeError as e:
        raise _provider_error("create-subscription", e)

    client_secret = None
    invoice = sub.get("latest_invoice") or {}
    if isinstance(invoice, dict):
        pi = invoice.get("payment_intent") or {}
        if isinstance(pi, dict):
            client_secret = pi.get("client_secret")

    logger.info("SUBSCRIPTION created %s for user %s (status=%s)", sub["id"], user.id, sub.get("status"))
    return {"subscriptionId": sub["id"], "status": sub.get("status"), "clientSecret": client_secret}


# -----------------------------
# Webhook (public)
# -----------------------------
def _process_event(db: Session, event) -> dict:
    event_id = event.get("id")
    etype = event.get("type")

    if billing.event_already_processed(db, event_id):
        return {"received": True, "duplicate": True}

    try:
        result = billing.handle_event(db, event)
    except stripe.StripeError as e:
        raise _provider_error(f"webhook {etype}", e)

    billing.mark_event_processed(db, event_id, etype)
    logger.info("WEBHOOK %s %s", etype, "ignored" if result.get("ignored") else "handled")
    return {"received": True, **result}


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    billing.init_stripe()
    wh_secret = billing.webhook_secret()

    payload = await request.body()
    sig = request.headers.get("stripe-signature")
    if not sig:
        raise HTTPException(status_code=400, detail="Missing Stripe signature header")

    try:
        event = stripe.Webhook.construct_event(payload=payload, sig_header=sig, secret=wh_secret)
    except (ValueError, stripe.SignatureVerificationError):
        logger.warning("WEBHOOK rejected: invalid signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    return await run_in_threadpool(_process_event, db, event)


# -----------------------------
# Subscription management
# -----------------------------
@router.post("/cancel-subscription")
def stripe_cancel_subscription(
    payload: Optional[schemas.CancelSubscriptionIn] = None,
    db: Session = Depends(get_db),
    user: User = Depends(auth.get_current_user),
):
    billing.init_stripe()

    sub_id = payload.subscription_id if payload else None
    if sub_id:
        sub = db.scalar(
            select(StripeSubscription).where(
                StripeSubscription.id == sub_id,
                StripeSubscription.user_id == user.id,
            )
        )
    else:
        sub = latest_subscription(db, user.id)

    if not sub:
        raise HTTPException(status_code=404, detail="Subscription not found")

    if sub.id.startswith("sub_"):
        try:
            stripe.Subscription.modify(sub.id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            raise _provider_error("cancel-subscription", e)

    sub.cancel_at_period_end = True
    db.commit()

    return {
        "success": True,
        "message": "Subscription will be cancelled at the end of the billing period",
    }


@router.get("/check-price")
def stripe_check_price(admin: User = Depends(require_admin)):
    billing.init_stripe()
    pid = billing.price_id()
    try:
        price = stripe.Price.retrieve(pid)
    except stripe.StripeError as e:
        raise _provider_error("check-price", e)

    return {
        "success": True,
        "priceId": price["id"],
        "amount": price.get("unit_amount"),
        "currency": price.get("currency"),
        "recurring": price.get("recurring"),
        "productId": price.get("product"),
        "active": price.get("active"),
    }


# -----------------------------
# Status (works even when billing is disabled)
# -----------------------------
def _has_full_access_now(user_id: str) -> bool:
    db = SessionLocal()
    try:
        return evaluate_access(db, db.get(User, user_id)).has_full_access
    finally:
        db.close()


@router.get("/subscription-status")
async def stripe_subscription_status(
    wait: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(auth.get_current_user),
):
    # sync ORM work stays off the event loop
    decision = await run_in_threadpool(evaluate_access, db, user)
    body = {
        "hasActiveSubscription": decision.has_full_access,
        "access": decision.to_dict(),
        "billing_enabled": billing.billing_enabled(),
    }
    if not wait:
        return body

    if decision.has_full_access:
        return {**body, "status": "success", "attempts": 0}

    result = await poll_for_activation(lambda: run_in_threadpool(_has_full_access_now, user.id))
    body["hasActiveSubscription"] = result.succeeded
    return {**body, **result.to_dict()}
