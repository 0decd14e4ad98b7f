# clubhouse/email_templates.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class EmailParts:
    subject: str
    body: str


def _clean(s: Optional[str]) -> str:
    return (s or "").strip()


def _line(label: str, value: Optional[str]) -> str:
    v = _clean(value) or "-"
    return f"{label}: {v}"


def _footer(org_name: str) -> str:
    return (
        "\n\n"
        "Happy building,\n"
        f"{org_name}\n"
    )


def _links_block(base_url: str) -> str:
    base = _clean(base_url).rstrip("/")
    if not base:
        return ""
    return (
        "\n\n"
        "Links:\n"
        f"- Community: {base}/threads\n"
        f"- Classroom: {base}/classroom\n"
        f"- Settings:  {base}/settings\n"
    )


def format_amount(amount_cents: int, currency: str) -> str:
    cur = _clean(currency).upper() or "USD"
    amount = f"{amount_cents / 100:,.2f}"
    if cur == "USD":
        return f"${amount}"
    return f"{amount} {cur}"


def welcome(org_name: str, full_name: Optional[str], email: str, founding_number: Optional[int], base_url: str = "") -> EmailParts:
    subject = f"Welcome to {org_name}"
    founding = f"You are founding member #{founding_number}.\n\n" if founding_number else ""
    body = (
        f"Hi {_clean(full_name) or email},\n\n"
        f"Thanks for signing up for {org_name}. Your account is ready.\n\n"
        f"{founding}"
        "To unlock the community, courses and live calls, complete your membership at:\n"
        f"{_clean(base_url).rstrip('/')}/payment"
        f"{_footer(org_name)}"
    )
    return EmailParts(subject=subject, body=body)


def upgrade_confirmation(
    org_name: str,
    full_name: Optional[str],
    email: str,
    subscription_id: str,
    amount_cents: int,
    currency: str,
    next_billing_date: Optional[datetime] = None,
    base_url: str = "",
) -> EmailParts:
    subject = f"Welcome to {org_name} Premium!"
    amount = format_amount(amount_cents, currency)
    next_billing = next_billing_date.strftime("%m/%d/%Y") if next_billing_date else None
    body = (
        f"Hi {_clean(full_name) or email},\n\n"
        f"Congratulations! You've just unlocked premium access to {org_name}. "
        f"Your payment of {amount} has been successfully processed.\n\n"
        "What you've unlocked:\n"
        "- Full access to all premium courses and tutorials\n"
        "- Community discussions and Q&A sessions\n"
        "- Weekly live calls\n\n"
        "Subscription Details:\n"
        f"{_line('Subscription ID', subscription_id)}\n"
        f"{_line('Amount paid', amount)}"
        + (f"\n{_line('Next billing date', next_billing)}" if next_billing else "")
        + "\n\nYou can manage your subscription anytime from your account settings."
        + f"{_links_block(base_url)}"
        + f"{_footer(org_name)}"
    )
    return EmailParts(subject=subject, body=body)


def password_recovery(org_name: str, email: str, reset_link: str) -> EmailParts:
    subject = f"{org_name} - Reset your password"
    body = (
        "Hello,\n\n"
        f"We received a request to reset the password for {email}.\n\n"
        "Use the link below to choose a new password. It expires in 1 hour.\n"
        f"{reset_link}\n\n"
        "If you didn't request this, you can ignore this email."
        f"{_footer(org_name)}"
    )
    return EmailParts(subject=subject, body=body)


def event_reminder(
    org_name: str,
    title: str,
    when: str,
    location: Optional[str] = None,
    meeting_url: Optional[str] = None,
    description: Optional[str] = None,
    message: Optional[str] = None,
    base_url: str = "",
) -> EmailParts:
    subject = f"{org_name} - Event: {_clean(title) or 'Upcoming event'}"
    note = _clean(message)
    body = (
        "Hello,\n\n"
        "You're invited to an upcoming event.\n\n"
        f"{_line('Event', title)}\n"
        f"{_line('When', when)}\n"
        f"{_line('Where', location)}\n"
        f"{_line('Join link', meeting_url)}\n\n"
        "Details:\n"
        f"{_clean(description) or '-'}"
        + (f"\n\nMessage:\n{note}" if note else "")
        + f"\n\nRegister: {_clean(base_url).rstrip('/')}/calendar"
        + f"{_footer(org_name)}"
    )
    return EmailParts(subject=subject, body=body)
