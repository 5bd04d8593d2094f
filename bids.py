"""
Bid lifecycle.

    pending -> shortlisted -> accepted
    pending | shortlisted -> rejected
    accepted -> rejected            (withdrawal, reopens the project)

Accepting or withdrawing a bid also moves its project (see projects.py). Both
documents change together: in one batch when the store supports atomic
batches, otherwise project first and bid second, undoing the project write if
the bid write fails.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from database import BIDS, NEWEST_FIRST, EntityStore, Write, now
from errors import (AuthorizationError, InvalidStateTransition, NotFound, PartialFailure,
                    ValidationError, WorkflowError, WriteConflict)
from projects import (acceptance_revert_write, acceptance_write, ensure_accepting, get_project,
                      parse_amount, require_owner, withdrawal_revert_write, withdrawal_write)
from schemas import Actor, Bid, Project, load, load_many

logger = logging.getLogger("bids")

MIN_MESSAGE_LENGTH = 10
BIDDABLE_PROJECT_STATUSES = ("open", "in_progress")
LIVE_BID_STATUSES = ("pending", "shortlisted", "accepted")


def get_bid(store: EntityStore, bid_id: str) -> Bid:
    return load(Bid, store.get(BIDS, bid_id))


def submit_bid(store: EntityStore, contractor: Actor, project_id: str, fields: Dict[str, Any]) -> Bid:
    if contractor.user_type != "contractor":
        raise AuthorizationError("Only contractors can place bids")
    project = get_project(store, project_id)
    if contractor.uid == project.posted_by:
        raise AuthorizationError("You cannot bid on your own project")
    if project.status not in BIDDABLE_PROJECT_STATUSES:
        raise InvalidStateTransition(f"This project is {project.status} and no longer accepts bids")

    if fields.get("priceQuoted") is None:
        raise ValidationError("Price is required")
    price = parse_amount(fields["priceQuoted"], "Price")
    timeline = fields.get("timeline")
    if not isinstance(timeline, str) or not timeline.strip():
        raise ValidationError("Timeline is required")
    message = fields.get("message")
    message = message.strip() if isinstance(message, str) else ""
    if len(message) < MIN_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at least {MIN_MESSAGE_LENGTH} characters")

    existing = store.query(BIDS, {"projectId": project_id, "contractorId": contractor.uid,
                                  "status": list(LIVE_BID_STATUSES)}, limit=1)
    if existing:
        raise ValidationError("You already have an active bid on this project")

    at = now()
    bid_id = store.create(BIDS, {
        "projectId": project_id,
        "contractorId": contractor.uid,
        "customerId": project.posted_by,
        "priceQuoted": price,
        "timeline": timeline.strip(),
        "message": message,
        "status": "pending",
        "createdAt": at,
        "updatedAt": at,
    })
    logger.info("Bid %s submitted on project %s by %s", bid_id, project_id, contractor.uid)
    return get_bid(store, bid_id)


def _owned_bid(store: EntityStore, actor: Actor, bid_id: str, action: str) -> Tuple[Bid, Project]:
    bid = get_bid(store, bid_id)
    project = get_project(store, bid.project_id)
    require_owner(project, actor, action)
    return bid, project


def _set_bid_status(store: EntityStore, bid: Bid, status: str) -> Bid:
    try:
        store.update(BIDS, bid.id, {"status": status, "updatedAt": now()}, expected={"status": bid.status})
    except WriteConflict:
        raise InvalidStateTransition("The bid changed in the meantime; refresh and try again")
    logger.info("Bid %s: %s -> %s", bid.id, bid.status, status)
    return get_bid(store, bid.id)


def _write_with_project(store: EntityStore, project_write: Write, bid_write: Write, revert_write: Write):
    """
    Apply the project and bid writes as one unit. WriteConflict means nothing
    was applied. PartialFailure means the store could not do it atomically and
    the bid write failed after the project was written.
    """
    if store.atomic_batches:
        store.batch_write([project_write, bid_write])
        return

    store.update(project_write.collection, project_write.id, project_write.fields, project_write.expected)
    try:
        store.update(bid_write.collection, bid_write.id, bid_write.fields, bid_write.expected)
    except WorkflowError as exc:
        logger.error("Bid write %s failed after project %s was updated: %s", bid_write.id, project_write.id, exc)
        try:
            store.update(revert_write.collection, revert_write.id, revert_write.fields, revert_write.expected)
        except WorkflowError as revert_exc:
            logger.error("Could not restore project %s: %s", project_write.id, revert_exc)
            raise PartialFailure(
                "The bid could not be updated and the project could not be restored. "
                "Refresh the project before trying again."
            ) from revert_exc
        raise PartialFailure("The bid could not be updated, so the project was left unchanged. Please retry.") from exc


def accept_bid(store: EntityStore, owner: Actor, bid_id: str) -> Tuple[Bid, Project]:
    bid, project = _owned_bid(store, owner, bid_id, "accept bids on this project")
    if bid.status == "accepted" and project.accepted_bid_id == bid.id:
        return bid, project
    if bid.status not in ("pending", "shortlisted"):
        raise InvalidStateTransition(f"This bid is {bid.status} and cannot be accepted")
    ensure_accepting(project)

    at = now()
    bid_write = Write(BIDS, bid.id, {"status": "accepted", "updatedAt": at}, expected={"status": bid.status})
    try:
        _write_with_project(store, acceptance_write(project, bid, at), bid_write,
                            acceptance_revert_write(project, bid, at))
    except WriteConflict:
        raise InvalidStateTransition("Another bid was accepted or the project changed; refresh and try again")
    logger.info("Bid %s accepted; project %s is in progress with contractor %s",
                bid.id, project.id, bid.contractor_id)
    return get_bid(store, bid.id), get_project(store, project.id)


def reject_bid(store: EntityStore, owner: Actor, bid_id: str) -> Tuple[Bid, Project]:
    """
    Reject a pending or shortlisted bid, or withdraw an accepted one. A
    withdrawal puts the project back to open with no accepted bid.
    """
    bid, project = _owned_bid(store, owner, bid_id, "reject bids on this project")
    if bid.status == "rejected":
        raise InvalidStateTransition("This bid is already rejected")
    if bid.status != "accepted" or project.accepted_bid_id != bid.id:
        return _set_bid_status(store, bid, "rejected"), project
    if project.status != "in_progress":
        raise InvalidStateTransition(f"An accepted bid cannot be withdrawn once the project is {project.status}")

    at = now()
    bid_write = Write(BIDS, bid.id, {"status": "rejected", "updatedAt": at}, expected={"status": "accepted"})
    try:
        _write_with_project(store, withdrawal_write(project, bid, at), bid_write,
                            withdrawal_revert_write(project, bid, at))
    except WriteConflict:
        raise InvalidStateTransition("The project changed in the meantime; refresh and try again")
    logger.info("Accepted bid %s withdrawn; project %s reopened", bid.id, project.id)
    return get_bid(store, bid.id), get_project(store, project.id)


def shortlist_bid(store: EntityStore, owner: Actor, bid_id: str) -> Bid:
    bid, _ = _owned_bid(store, owner, bid_id, "shortlist bids on this project")
    if bid.status != "pending":
        raise InvalidStateTransition(f"Only pending bids can be shortlisted; this bid is {bid.status}")
    return _set_bid_status(store, bid, "shortlisted")


# -- queries --

def list_project_bids(store: EntityStore, owner: Actor, project_id: str) -> List[Bid]:
    """Bids for the owner to review, most recent first. No ranking by price."""
    project = get_project(store, project_id)
    require_owner(project, owner, "see the bids on this project")
    return load_many(Bid, store.query(BIDS, {"projectId": project_id}, order_by=NEWEST_FIRST))


def list_contractor_bids(store: EntityStore, contractor: Actor, status: Optional[str] = None) -> List[Bid]:
    where: Dict[str, Any] = {"contractorId": contractor.uid}
    if status:
        where["status"] = status
    return load_many(Bid, store.query(BIDS, where, order_by=NEWEST_FIRST))


def list_engagements(store: EntityStore, contractor: Actor) -> List[Tuple[Bid, Project]]:
    """The contractor's accepted bids with their projects."""
    engagements = []
    for bid in list_contractor_bids(store, contractor, status="accepted"):
        try:
            project = get_project(store, bid.project_id)
        except NotFound:
            logger.warning("Accepted bid %s points at missing project %s", bid.id, bid.project_id)
            continue
        engagements.append((bid, project))
    return engagements
