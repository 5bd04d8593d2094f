"""
Public contact form intake and the admin inbox over it.
Collection: "contactMessages"

    new -> read -> replied
    new -> replied
"""
import logging
from typing import Any, Dict, List, Optional

from database import CONTACT_MESSAGES, NEWEST_FIRST, EntityStore, now
from errors import ValidationError
from profiles import require_admin
from schemas import Actor, ContactMessage, load, load_many

logger = logging.getLogger("contact")


def submit_contact_message(store: EntityStore, name: str, email: str, message: str,
                           subject: Optional[str] = None) -> ContactMessage:
    name = (name or "").strip()
    email = (email or "").strip().lower()
    message = (message or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if "@" not in email:
        raise ValidationError("A valid email address is required")
    if not message:
        raise ValidationError("Message is required")
    message_id = store.create(CONTACT_MESSAGES, {
        "name": name,
        "email": email,
        "subject": (subject or "").strip() or None,
        "message": message,
        "status": "new",
        "createdAt": now(),
    })
    logger.info("Contact message %s received", message_id)
    return load(ContactMessage, store.get(CONTACT_MESSAGES, message_id))


def get_contact_message(store: EntityStore, message_id: str) -> ContactMessage:
    return load(ContactMessage, store.get(CONTACT_MESSAGES, message_id))


def list_contact_messages(store: EntityStore, admin: Actor, status: Optional[str] = None) -> List[ContactMessage]:
    require_admin(admin)
    where: Dict[str, Any] = {}
    if status:
        where["status"] = status
    return load_many(ContactMessage, store.query(CONTACT_MESSAGES, where, order_by=NEWEST_FIRST))


def mark_read(store: EntityStore, admin: Actor, message_id: str) -> ContactMessage:
    """Replied messages stay replied."""
    require_admin(admin)
    msg = get_contact_message(store, message_id)
    if msg.status != "new":
        return msg
    store.update(CONTACT_MESSAGES, message_id, {"status": "read"})
    logger.info("Contact message %s read by %s", message_id, admin.uid)
    return get_contact_message(store, message_id)


def reply(store: EntityStore, admin: Actor, message_id: str, text: str) -> ContactMessage:
    require_admin(admin)
    text = (text or "").strip()
    if not text:
        raise ValidationError("Reply cannot be empty")
    get_contact_message(store, message_id)
    store.update(CONTACT_MESSAGES, message_id, {"status": "replied", "reply": text, "repliedAt": now()})
    logger.info("Contact message %s replied by %s", message_id, admin.uid)
    return get_contact_message(store, message_id)


def delete_contact_message(store: EntityStore, admin: Actor, message_id: str):
    require_admin(admin)
    get_contact_message(store, message_id)
    store.delete(CONTACT_MESSAGES, message_id)
    logger.info("Contact message %s deleted by %s", message_id, admin.uid)
