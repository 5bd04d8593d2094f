"""
Profile store: a view over the "users" collection.
"""
import logging
import os
from typing import Any, Dict, List, Optional

from database import NEWEST_FIRST, USERS, EntityStore, now
from errors import AuthorizationError, ValidationError
from schemas import Actor, UserProfile, load, load_many

logger = logging.getLogger("profiles")

EDITABLE_FIELDS = ("fullName", "mobile", "city", "companyName", "serviceCategory", "experience")
REQUIRED_FIELDS = ("fullName", "mobile", "city")
CONTRACTOR_REQUIRED_FIELDS = ("companyName", "serviceCategory")

# accounts with these emails get the admin console
ADMIN_EMAILS = frozenset(e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip())


def _filled(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_profile_complete(doc: Dict[str, Any]) -> bool:
    required = REQUIRED_FIELDS
    if doc.get("userType") == "contractor":
        required = required + CONTRACTOR_REQUIRED_FIELDS
    return all(_filled(doc.get(f)) for f in required)


def new_profile_document(full_name: str, email: str, user_type: str,
                         mobile: Optional[str] = None, city: Optional[str] = None) -> Dict[str, Any]:
    doc = {
        "fullName": full_name.strip(),
        "email": email.lower(),
        "mobile": (mobile or "").strip(),
        "city": (city or "").strip(),
        "userType": user_type,
        "isEmailVerified": False,
        "isPhoneVerified": False,
        "profileComplete": False,
        "createdAt": now(),
    }
    return doc


def get_profile(store: EntityStore, uid: str) -> UserProfile:
    return load(UserProfile, store.get(USERS, uid))


def actor_for(profile: UserProfile) -> Actor:
    return Actor(
        uid=profile.id,
        user_type=profile.user_type,
        email_verified=profile.is_email_verified,
        phone_verified=profile.is_phone_verified,
        is_admin=profile.email.lower() in ADMIN_EMAILS,
    )


def require_admin(actor: Actor):
    if not actor.is_admin:
        raise AuthorizationError("Admin access required")


def update_profile(store: EntityStore, actor: Actor, uid: str, fields: Dict[str, Any]) -> UserProfile:
    """
    Owner-only edit of the descriptive profile fields. profileComplete is
    recomputed from the merged document on every write.
    """
    if actor.uid != uid:
        raise AuthorizationError("You can only edit your own profile")
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"These profile fields cannot be changed here: {', '.join(unknown)}")

    current = store.get(USERS, uid)
    update: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{key} must be text")
        update[key] = value.strip() if isinstance(value, str) else value
    if "fullName" in update and not _filled(update["fullName"]):
        raise ValidationError("Full name cannot be empty")

    merged = {**current, **update}
    update["profileComplete"] = is_profile_complete(merged)
    update["updatedAt"] = now()
    store.update(USERS, uid, update)
    logger.info("Profile %s updated (complete=%s)", uid, update["profileComplete"])
    return get_profile(store, uid)


def record_verification(store: EntityStore, uid: str, email_verified: Optional[bool] = None,
                        phone_verified: Optional[bool] = None) -> UserProfile:
    """Only the identity provider calls this; profile edits never touch the flags."""
    update: Dict[str, Any] = {}
    if email_verified is not None:
        update["isEmailVerified"] = bool(email_verified)
    if phone_verified is not None:
        update["isPhoneVerified"] = bool(phone_verified)
    if update:
        store.update(USERS, uid, update)
        logger.info("Verification flags for %s set: %s", uid, update)
    return get_profile(store, uid)


def list_contractors(store: EntityStore, service_category: Optional[str] = None,
                     city: Optional[str] = None, limit: int = 50) -> List[UserProfile]:
    where: Dict[str, Any] = {"userType": "contractor"}
    if service_category:
        where["serviceCategory"] = service_category
    if city:
        where["city"] = city
    docs = store.query(USERS, where, order_by=NEWEST_FIRST, limit=min(limit, 100))
    return load_many(UserProfile, docs)


def list_users(store: EntityStore, admin: Actor, user_type: Optional[str] = None,
               limit: int = 100) -> List[UserProfile]:
    """Admin console: most recent sign-ups first."""
    require_admin(admin)
    where: Dict[str, Any] = {}
    if user_type:
        where["userType"] = user_type
    return load_many(UserProfile, store.query(USERS, where, order_by=NEWEST_FIRST, limit=min(limit, 100)))
