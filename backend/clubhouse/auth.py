# clubhouse/auth.py
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db
from .models import AuthCode, User, utcnow

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

TOKEN_ACCESS = "access"
TOKEN_REFRESH = "refresh"

# -------------------------------------------------------------------
# Password hashing
# -------------------------------------------------------------------
pwd_context = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


# -------------------------------------------------------------------
# JWT create/verify
# -------------------------------------------------------------------
def _encode(user: User, typ: str, expires: timedelta) -> str:
    """
    Token claims:
      sub: user id
      email: user email (debug/compat)
      typ: "access" or "refresh"
      exp: expiry datetime
    """
    payload = {
        "sub": user.id,
        "email": user.email,
        "typ": typ,
        "exp": datetime.now(timezone.utc) + expires,
    }
    return jwt.encode(payload, get_settings().secret_key, algorithm=ALGORITHM)


def create_access_token(user: User) -> str:
    return _encode(user, TOKEN_ACCESS, timedelta(minutes=get_settings().access_token_expire_minutes))


def create_refresh_token(user: User) -> str:
    return _encode(user, TOKEN_REFRESH, timedelta(days=get_settings().refresh_token_expire_days))


def decode_token(token: str, expected_type: str = TOKEN_ACCESS) -> dict:
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM])
        if not payload.get("sub") or payload.get("typ") != expected_type:
            raise ValueError("Token missing required claims")
        return payload
    except (JWTError, ValueError) as e:
        raise ValueError("Invalid token") from e


def extract_token(request: Request) -> Optional[str]:
    """Bearer header first, then the access cookie."""
    auth_header = (request.headers.get("Authorization") or "").strip()
    if auth_header:
        parts = auth_header.split()
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
            return parts[1].strip()
    return request.cookies.get(ACCESS_COOKIE) or None


def user_from_token(db: Session, token: Optional[str], expected_type: str = TOKEN_ACCESS) -> Optional[User]:
    if not token:
        return None
    try:
        payload = decode_token(token, expected_type)
    except ValueError:
        return None
    return db.get(User, payload["sub"])


def _auth_401() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------
def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    return user_from_token(db, extract_token(request))


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if not user:
        raise _auth_401()
    return user


# -------------------------------------------------------------------
# Sessions (cookies + tokens)
# -------------------------------------------------------------------
def issue_session(response: Response, user: User) -> dict:
    s = get_settings()
    access = create_access_token(user)
    refresh = create_refresh_token(user)

    response.set_cookie(
        ACCESS_COOKIE,
        access,
        max_age=s.access_token_expire_minutes * 60,
        httponly=True,
        secure=s.cookie_secure,
        samesite="lax",
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        refresh,
        max_age=s.refresh_token_expire_days * 86400,
        httponly=True,
        secure=s.cookie_secure,
        samesite="lax",
        path="/",
    )

    return {
        "access_token": access,
        "refresh_token": refresh,
        "token_type": "bearer",
        "expires_in": s.access_token_expire_minutes * 60,
    }


def set_access_cookie(response: Response, user: User) -> None:
    s = get_settings()
    response.set_cookie(
        ACCESS_COOKIE,
        create_access_token(user),
        max_age=s.access_token_expire_minutes * 60,
        httponly=True,
        secure=s.cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path="/")


# -------------------------------------------------------------------
# Accounts
# -------------------------------------------------------------------
def find_user_by_email(db: Session, email: str) -> Optional[User]:
    email_n = (email or "").strip().lower()
    if not email_n:
        return None
    return db.scalar(select(User).where(User.email == email_n))


def next_founding_number(db: Session) -> int:
    current = db.scalar(select(func.max(User.founding_number)))
    return int(current or 0) + 1


def create_user(db: Session, email: str, password: str, full_name: Optional[str] = None, is_admin: bool = False) -> User:
    """
    Creates a free-tier account with the next founding number.
    Caller commits.
    """
    user = User(
        email=email.strip().lower(),
        hashed_password=hash_password(password),
        full_name=full_name,
        is_admin=is_admin,
        founding_number=next_founding_number(db),
    )
    db.add(user)
    db.flush()
    return user


# -------------------------------------------------------------------
# One-time auth codes (/auth/callback)
# -------------------------------------------------------------------
CODE_RECOVERY = "recovery"
CODE_MAGICLINK = "magiclink"


def create_auth_code(db: Session, user: User, code_type: str, ttl_minutes: int = 60) -> str:
    code = secrets.token_urlsafe(32)
    db.add(
        AuthCode(
            code=code,
            user_id=user.id,
            type=code_type,
            expires_at=utcnow() + timedelta(minutes=ttl_minutes),
        )
    )
    db.commit()
    return code


def consume_auth_code(db: Session, code: Optional[str]) -> Optional[tuple[User, str]]:
    """
    Exchanges an unused, unexpired code for its user.
    Returns (user, type) or None.
    """
    code = (code or "").strip()
    if not code:
        return None

    row = db.get(AuthCode, code)
    if not row or row.used_at is not None or row.expires_at <= utcnow():
        return None

    user = db.get(User, row.user_id)
    if not user:
        return None

    row.used_at = utcnow()
    db.commit()
    return user, row.type
