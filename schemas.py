"""
Database Schemas for the Construction Marketplace

Each Pydantic model represents a document in a collection of the entity store.
Field names are snake_case in Python and camelCase in the stored documents
(e.g. posted_by <-> "postedBy"); the camelCase names are the canonical schema
shared with the web client.

Documents read from the store are validated here before any workflow looks at
them; a malformed document raises CorruptDocument instead of leaking a
half-valid dict into the workflows.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError as SchemaError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from errors import CorruptDocument

ProjectStatus = Literal["open", "in_progress", "completed", "closed"]
BidStatus = Literal["pending", "shortlisted", "accepted", "rejected"]
UserType = Literal["customer", "contractor"]

PROJECT_STATUSES = ("open", "in_progress", "completed", "closed")
BID_STATUSES = ("pending", "shortlisted", "accepted", "rejected")


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(..., description="Store-assigned document id")

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Project(Document):
    """
    Customer-posted construction job open for bidding.
    Collection: "projects"
    """
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: List[str] = Field(default_factory=list, description="Service tags")
    budget: float = Field(..., gt=0, allow_inf_nan=False)
    budget_max: Optional[float] = Field(None, allow_inf_nan=False, description="Upper end of the budget range")
    location: str
    start_date: date
    expected_duration: Optional[str] = None
    posted_by: str = Field(..., description="Owner uid")
    status: ProjectStatus = "open"
    accepted_contractor_id: Optional[str] = None
    accepted_bid_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _budget_range(self):
        if self.budget_max is not None and self.budget_max < self.budget:
            raise ValueError("budgetMax must be greater than or equal to budget")
        return self


class Bid(Document):
    """
    A contractor's priced proposal against a project.
    Collection: "bids"
    """
    project_id: str
    contractor_id: str
    customer_id: Optional[str] = Field(None, description="Owner of the project at submission time")
    price_quoted: float = Field(..., gt=0, allow_inf_nan=False)
    timeline: str
    message: str
    status: BidStatus = "pending"
    created_at: datetime
    updated_at: Optional[datetime] = None


class UserProfile(Document):
    """
    Collection: "users". The document id is the user's uid.
    """
    full_name: str = ""
    email: str
    mobile: str = ""
    city: str = ""
    user_type: UserType
    is_email_verified: bool = False
    is_phone_verified: bool = False
    company_name: Optional[str] = None
    service_category: Optional[str] = None
    experience: Optional[str] = None
    profile_complete: bool = False
    created_at: Optional[datetime] = None

    @property
    def uid(self) -> str:
        return self.id

    def to_api(self) -> Dict[str, Any]:
        data = super().to_api()
        data["uid"] = self.id
        return data


class ContactMessage(Document):
    """
    Messages sent through the public contact form.
    Collection: "contactMessages"
    """
    name: str
    email: str
    subject: Optional[str] = None
    message: str
    status: Literal["new", "read", "replied"] = "new"
    reply: Optional[str] = None
    replied_at: Optional[datetime] = None
    created_at: datetime


class ChatMessage(Document):
    """
    One message between a project owner and a contractor who bid on it.
    Collection: "chats"
    """
    project_id: str
    sender_id: str
    sender_type: UserType
    recipient_id: str
    participants: List[str] = Field(..., description="[senderId, recipientId], for per-user queries")
    message: str = Field(..., min_length=1)
    timestamp: datetime
    read: bool = False


class Actor(BaseModel):
    """The acting user, passed explicitly into every workflow operation."""
    uid: str
    user_type: UserType
    email_verified: bool = False
    phone_verified: bool = False
    is_admin: bool = False

    @field_validator("uid")
    @classmethod
    def _uid_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("uid is required")
        return v


M = TypeVar("M", bound=Document)


def load(model: Type[M], doc: Dict[str, Any]) -> M:
    """Validate a raw store document against its schema."""
    try:
        return model.model_validate(doc)
    except SchemaError as exc:
        raise CorruptDocument(
            f"Stored {model.__name__} {doc.get('id', '?')} is malformed: {exc.error_count()} invalid field(s)"
        ) from exc


def load_many(model: Type[M], docs) -> List[M]:
    return [load(model, d) for d in docs]
