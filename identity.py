"""
Identity provider: accounts, bearer tokens and email verification.

The rest of the service only ever sees an Actor (uid, user type and the
verification flags); it never reads session state on its own.
"""
import hashlib
import logging
import secrets
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends, Header, HTTPException

from database import USERS, EntityStore, get_store
from errors import ValidationError
from profiles import actor_for, get_profile, new_profile_document, record_verification
from schemas import Actor, UserProfile, load

logger = logging.getLogger("identity")

MIN_PASSWORD_LENGTH = 6
USER_TYPES = ("customer", "contractor")


# Very light password hashing (salted sha256)
def hash_password(password: str, salt: Optional[str] = None) -> Dict[str, str]:
    salt = salt or secrets.token_hex(8)
    hashed = hashlib.sha256((salt + password).encode()).hexdigest()
    return {"salt": salt, "hash": hashed}


def verify_password(password: str, salt: str, hash_val: str) -> bool:
    return secrets.compare_digest(hashlib.sha256((salt + password).encode()).hexdigest(), hash_val)


def new_token() -> str:
    return secrets.token_hex(24)


def new_verification_code() -> str:
    return secrets.token_urlsafe(16)


def signup(store: EntityStore, full_name: str, email: str, password: str, user_type: str,
           mobile: Optional[str] = None, city: Optional[str] = None) -> Tuple[UserProfile, str, str]:
    """Returns (profile, bearer token, email verification code)."""
    if not full_name or not full_name.strip():
        raise ValidationError("Full name is required")
    if user_type not in USER_TYPES:
        raise ValidationError("userType must be 'customer' or 'contractor'")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    email = email.lower()
    if store.query(USERS, {"email": email}, limit=1):
        raise HTTPException(status_code=409, detail="Email already registered")

    token = new_token()
    code = new_verification_code()
    doc = new_profile_document(full_name, email, user_type, mobile=mobile, city=city)
    doc["password"] = hash_password(password)
    doc["tokens"] = [token]
    doc["emailVerificationCode"] = code
    uid = store.create(USERS, doc)
    logger.info("Signed up %s user %s", user_type, uid)
    return get_profile(store, uid), token, code


def login(store: EntityStore, email: str, password: str) -> Tuple[UserProfile, str]:
    found = store.query(USERS, {"email": email.lower()}, limit=1)
    user = found[0] if found else None
    if not user or "password" not in user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(password, user["password"]["salt"], user["password"]["hash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = new_token()
    store.update(USERS, user["id"], {"tokens": list(user.get("tokens") or []) + [token]})
    return load(UserProfile, user), token


def verify_email(store: EntityStore, code: str) -> UserProfile:
    found = store.query(USERS, {"emailVerificationCode": code}, limit=1) if code else []
    if not found:
        raise ValidationError("Verification code is invalid or already used")
    uid = found[0]["id"]
    store.update(USERS, uid, {"emailVerificationCode": None})
    return record_verification(store, uid, email_verified=True)


def user_for_token(store: EntityStore, token: str) -> Optional[Dict[str, Any]]:
    found = store.query(USERS, {"tokens": token}, limit=1)
    return found[0] if found else None


def get_current_profile(authorization: Optional[str] = Header(None),
                        store: EntityStore = Depends(get_store)) -> UserProfile:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Invalid auth scheme")
    token = authorization.split(" ", 1)[1].strip()
    user = user_for_token(store, token) if token else None
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return load(UserProfile, user)


def get_current_user(profile: UserProfile = Depends(get_current_profile)) -> Actor:
    return actor_for(profile)
