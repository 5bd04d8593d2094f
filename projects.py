"""
Project lifecycle.

    open --accept bid--> in_progress --mark completed--> completed
    open <--close/reopen--> closed

Bid acceptance and withdrawal move a project between open and in_progress;
those writes are built here and applied by bids.py together with the bid.
"""
import logging
import math
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from database import BIDS, NEWEST_FIRST, PROJECTS, EntityStore, Write, now
from errors import AuthorizationError, InvalidStateTransition, ValidationError, WriteConflict
from profiles import require_admin
from schemas import Actor, Bid, Project, load, load_many

logger = logging.getLogger("projects")

REQUIRED_ON_CREATE = ("title", "description", "location", "startDate", "budget")
EDITABLE_FIELDS = ("title", "description", "category", "budget", "budgetMax",
                   "location", "startDate", "expectedDuration")
PROTECTED_FIELDS = ("id", "status", "postedBy", "acceptedBidId", "acceptedContractorId",
                    "createdAt", "updatedAt", "completedAt")

LABELS = {
    "title": "Title",
    "description": "Description",
    "location": "Location",
    "startDate": "Start date",
    "budget": "Budget",
    "budgetMax": "Maximum budget",
    "expectedDuration": "Expected duration",
    "category": "Category",
}


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_amount(value: Any, name: str) -> float:
    label = LABELS.get(name, name)
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number")
    if isinstance(value, str):
        try:
            value = float(value.replace(",", "").strip())
        except ValueError:
            raise ValidationError(f"{label} must be a number")
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{label} must be a number")
    if value <= 0:
        raise ValidationError(f"{label} must be greater than 0")
    return float(value)


def parse_start_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        raise ValidationError("Start date must be a calendar date (YYYY-MM-DD)")
    text = value.strip()
    try:
        if "T" in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
        return date.fromisoformat(text).isoformat()
    except ValueError:
        raise ValidationError("Start date must be a calendar date (YYYY-MM-DD)")


def parse_category(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    tags: List[str] = []
    for tag in value:
        if not isinstance(tag, str):
            raise ValidationError("Category tags must be text")
        tag = tag.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _clean(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize the editable fields present in `fields`."""
    out: Dict[str, Any] = {}
    for key, value in fields.items():
        if key in ("title", "description", "location"):
            if _missing(value):
                raise ValidationError(f"{LABELS[key]} is required")
            if not isinstance(value, str):
                raise ValidationError(f"{LABELS[key]} must be text")
            out[key] = value.strip()
        elif key == "expectedDuration":
            out[key] = value.strip() if isinstance(value, str) and value.strip() else None
        elif key == "budget":
            out[key] = parse_amount(value, key)
        elif key == "budgetMax":
            out[key] = None if _missing(value) else parse_amount(value, key)
        elif key == "startDate":
            out[key] = parse_start_date(value)
        elif key == "category":
            out[key] = parse_category(value)
    return out


def _check_budget_range(budget: float, budget_max: Optional[float]):
    if budget_max is not None and budget_max < budget:
        raise ValidationError("Maximum budget must be greater than or equal to the budget")


def get_project(store: EntityStore, project_id: str) -> Project:
    return load(Project, store.get(PROJECTS, project_id))


def require_owner(project: Project, actor: Actor, action: str):
    if actor.uid != project.posted_by:
        raise AuthorizationError(f"Only the project owner can {action}")


def create_project(store: EntityStore, owner: Actor, fields: Dict[str, Any]) -> Project:
    if owner.user_type != "customer":
        raise AuthorizationError("Only customers can post projects")
    missing = [LABELS[f] for f in REQUIRED_ON_CREATE if _missing(fields.get(f))]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    doc = _clean({k: fields.get(k) for k in EDITABLE_FIELDS if k in fields})
    doc.setdefault("category", [])
    doc.setdefault("budgetMax", None)
    doc.setdefault("expectedDuration", None)
    _check_budget_range(doc["budget"], doc["budgetMax"])

    doc.update({
        "postedBy": owner.uid,
        "status": "open",
        "acceptedContractorId": None,
        "acceptedBidId": None,
        "createdAt": now(),
    })
    project_id = store.create(PROJECTS, doc)
    logger.info("Project %s created by %s", project_id, owner.uid)
    return get_project(store, project_id)


def edit_project(store: EntityStore, actor: Actor, project_id: str, fields: Dict[str, Any]) -> Project:
    project = get_project(store, project_id)
    require_owner(project, actor, "edit this project")

    protected = sorted(set(fields) & set(PROTECTED_FIELDS))
    if protected:
        raise ValidationError(f"These fields cannot be edited directly: {', '.join(protected)}")
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown project fields: {', '.join(unknown)}")

    update = _clean(fields)
    budget = update.get("budget", project.budget)
    budget_max = update["budgetMax"] if "budgetMax" in update else project.budget_max
    _check_budget_range(budget, budget_max)
    if not update:
        return project

    update["updatedAt"] = now()
    store.update(PROJECTS, project_id, update)
    logger.info("Project %s edited by %s: %s", project_id, actor.uid, sorted(update))
    return get_project(store, project_id)


def _transition(store: EntityStore, project: Project, to_status: str, allowed_from: Iterable[str],
                verb: str, extra: Optional[Dict[str, Any]] = None) -> Project:
    if project.status not in allowed_from:
        raise InvalidStateTransition(f"Cannot {verb} a project that is {project.status}")
    fields = {"status": to_status, "updatedAt": now(), **(extra or {})}
    try:
        store.update(PROJECTS, project.id, fields, expected={"status": project.status})
    except WriteConflict:
        raise InvalidStateTransition("The project changed while you were editing it; refresh and try again")
    logger.info("Project %s: %s -> %s", project.id, project.status, to_status)
    return get_project(store, project.id)


def close_project(store: EntityStore, actor: Actor, project_id: str) -> Project:
    project = get_project(store, project_id)
    require_owner(project, actor, "close this project")
    return _transition(store, project, "closed", ("open",), "close")


def reopen_project(store: EntityStore, actor: Actor, project_id: str) -> Project:
    project = get_project(store, project_id)
    require_owner(project, actor, "reopen this project")
    return _transition(store, project, "open", ("closed",), "reopen")


def mark_completed(store: EntityStore, actor: Actor, project_id: str) -> Project:
    """The owner or the accepted contractor may close out an engagement."""
    project = get_project(store, project_id)
    if actor.uid not in (project.posted_by, project.accepted_contractor_id):
        raise AuthorizationError("Only the project owner or the accepted contractor can mark it completed")
    return _transition(store, project, "completed", ("in_progress",), "complete", {"completedAt": now()})


def delete_project(store: EntityStore, actor: Actor, project_id: str) -> int:
    """
    Hard delete. The project's bids go with it in the same batch, bids first,
    so a non-atomic store never leaves bids pointing at a missing project.
    Returns the number of bids removed.
    """
    project = get_project(store, project_id)
    require_owner(project, actor, "delete this project")
    bids = store.query(BIDS, {"projectId": project_id})
    writes = [Write(BIDS, b["id"], delete=True) for b in bids]
    writes.append(Write(PROJECTS, project_id, delete=True))
    store.batch_write(writes)

    # bids submitted between the query and the batch
    stragglers = store.query(BIDS, {"projectId": project_id})
    if stragglers:
        logger.warning("Removing %d bid(s) placed on project %s while it was deleted",
                       len(stragglers), project_id)
        store.batch_write([Write(BIDS, b["id"], delete=True) for b in stragglers])
    removed = len(bids) + len(stragglers)
    logger.info("Project %s deleted by %s with %d bid(s)", project_id, actor.uid, removed)
    return removed


# -- writes applied together with a bid transition (see bids.py) --

def ensure_accepting(project: Project):
    if project.accepted_bid_id:
        raise InvalidStateTransition("This project already has an accepted bid")
    if project.status != "open":
        raise InvalidStateTransition(f"Bids cannot be accepted while the project is {project.status}")


def acceptance_write(project: Project, bid: Bid, at: datetime) -> Write:
    return Write(
        PROJECTS, project.id,
        fields={"status": "in_progress", "acceptedBidId": bid.id,
                "acceptedContractorId": bid.contractor_id, "updatedAt": at},
        expected={"status": "open", "acceptedBidId": None},
    )


def acceptance_revert_write(project: Project, bid: Bid, at: datetime) -> Write:
    return Write(
        PROJECTS, project.id,
        fields={"status": "open", "acceptedBidId": None, "acceptedContractorId": None, "updatedAt": at},
        expected={"acceptedBidId": bid.id},
    )


def withdrawal_write(project: Project, bid: Bid, at: datetime) -> Write:
    return Write(
        PROJECTS, project.id,
        fields={"status": "open", "acceptedBidId": None, "acceptedContractorId": None, "updatedAt": at},
        expected={"status": "in_progress", "acceptedBidId": bid.id},
    )


def withdrawal_revert_write(project: Project, bid: Bid, at: datetime) -> Write:
    return Write(
        PROJECTS, project.id,
        fields={"status": "in_progress", "acceptedBidId": bid.id,
                "acceptedContractorId": bid.contractor_id, "updatedAt": at},
        expected={"status": "open", "acceptedBidId": None},
    )


# -- queries --

def list_open_projects(store: EntityStore, category: Optional[str] = None, limit: int = 50) -> List[Project]:
    where: Dict[str, Any] = {"status": "open"}
    if category:
        where["category"] = category
    return load_many(Project, store.query(PROJECTS, where, order_by=NEWEST_FIRST, limit=min(limit, 100)))


def list_owner_projects(store: EntityStore, owner: Actor, status: Optional[str] = None) -> List[Project]:
    where: Dict[str, Any] = {"postedBy": owner.uid}
    if status:
        where["status"] = status
    return load_many(Project, store.query(PROJECTS, where, order_by=NEWEST_FIRST))


def list_all_projects(store: EntityStore, admin: Actor, status: Optional[str] = None,
                      limit: int = 100) -> List[Project]:
    """Admin console view across all owners."""
    require_admin(admin)
    where: Dict[str, Any] = {}
    if status:
        where["status"] = status
    return load_many(Project, store.query(PROJECTS, where, order_by=NEWEST_FIRST, limit=min(limit, 100)))
