"""
Project-scoped messages between a project owner and the contractors who bid
on it. Collection: "chats"

Messages are stored and listed here; pushing them to the other party is left
to the client, which polls the listing.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING

from database import BIDS, CHATS, EntityStore, Write, now
from errors import AuthorizationError, NotFound, ValidationError
from projects import get_project
from schemas import Actor, ChatMessage, Project, load, load_many

logger = logging.getLogger("chats")

MAX_MESSAGE_LENGTH = 2000
OLDEST_FIRST = ("timestamp", ASCENDING)


def _has_bid(store: EntityStore, project_id: str, uid: str) -> bool:
    return bool(store.query(BIDS, {"projectId": project_id, "contractorId": uid}, limit=1))


def _check_participant(store: EntityStore, project: Project, actor: Actor):
    if actor.uid == project.posted_by:
        return
    if actor.user_type == "contractor" and _has_bid(store, project.id, actor.uid):
        return
    raise AuthorizationError("Only the project owner and contractors who bid on it can use this project's chat")


def _check_recipient(store: EntityStore, project: Project, sender: Actor, recipient_id: str):
    if sender.uid == project.posted_by:
        if recipient_id == sender.uid or not _has_bid(store, project.id, recipient_id):
            raise ValidationError("You can only message contractors who bid on this project")
    elif recipient_id != project.posted_by:
        raise ValidationError("Contractors can only message the project owner")


def send_message(store: EntityStore, sender: Actor, project_id: str, recipient_id: str,
                 text: str) -> ChatMessage:
    project = get_project(store, project_id)
    _check_participant(store, project, sender)
    _check_recipient(store, project, sender, recipient_id)

    text = text.strip() if isinstance(text, str) else ""
    if not text:
        raise ValidationError("Message cannot be empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")

    at = now()
    message_id = store.create(CHATS, {
        "projectId": project_id,
        "senderId": sender.uid,
        "senderType": sender.user_type,
        "recipientId": recipient_id,
        "participants": [sender.uid, recipient_id],
        "message": text,
        "timestamp": at,
        "read": False,
        "createdAt": at,
    })
    logger.info("Chat message %s on project %s: %s -> %s", message_id, project_id, sender.uid, recipient_id)
    return load(ChatMessage, store.get(CHATS, message_id))


def list_messages(store: EntityStore, actor: Actor, project_id: str,
                  with_uid: Optional[str] = None) -> List[ChatMessage]:
    """The actor's messages on a project, oldest first, optionally with one counterpart."""
    project = get_project(store, project_id)
    _check_participant(store, project, actor)
    docs = store.query(CHATS, {"projectId": project_id, "participants": actor.uid}, order_by=OLDEST_FIRST)
    messages = load_many(ChatMessage, docs)
    if with_uid:
        messages = [m for m in messages if with_uid in m.participants]
    return messages


def mark_read(store: EntityStore, actor: Actor, project_id: str, sender_id: str) -> int:
    """Mark what `sender_id` sent the actor on this project as read. Returns how many changed."""
    project = get_project(store, project_id)
    _check_participant(store, project, actor)
    unread = store.query(CHATS, {"projectId": project_id, "senderId": sender_id,
                                 "recipientId": actor.uid, "read": False})
    if unread:
        store.batch_write([Write(CHATS, m["id"], {"read": True}) for m in unread])
    return len(unread)


def list_conversations(store: EntityStore, actor: Actor) -> List[Dict[str, Any]]:
    """
    One entry per (project, counterpart) with the latest message and the
    number of unread messages addressed to the actor, most recent first.
    """
    messages = load_many(ChatMessage, store.query(CHATS, {"participants": actor.uid}, order_by=OLDEST_FIRST))
    conversations: Dict[Tuple[str, str], Dict[str, Any]] = {}
    titles: Dict[str, Optional[str]] = {}
    for m in messages:
        counterpart = m.recipient_id if m.sender_id == actor.uid else m.sender_id
        key = (m.project_id, counterpart)
        if m.project_id not in titles:
            try:
                titles[m.project_id] = get_project(store, m.project_id).title
            except NotFound:
                logger.warning("Chat message %s points at missing project %s", m.id, m.project_id)
                titles[m.project_id] = None
        convo = conversations.setdefault(key, {
            "projectId": m.project_id,
            "projectTitle": titles[m.project_id],
            "counterpartId": counterpart,
            "unreadCount": 0,
        })
        convo["lastMessage"] = m.message
        convo["lastMessageAt"] = m.timestamp
        if not m.read and m.recipient_id == actor.uid:
            convo["unreadCount"] += 1
    return sorted(conversations.values(), key=lambda c: c["lastMessageAt"], reverse=True)
