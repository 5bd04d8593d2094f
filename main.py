import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

import bids
import chats
import contact
import identity
import profiles
import projects
from database import EntityStore, get_store
from errors import WorkflowError
from formatting import bid_display, project_display
from schemas import PROJECT_STATUSES, BID_STATUSES, Actor, Bid, Project, UserProfile

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("main")

app = FastAPI(title="Construction Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})


# ---------------------------
# Utility helpers
# ---------------------------

def project_out(project: Project) -> Dict[str, Any]:
    data = project.to_api()
    data["display"] = project_display(project)
    return data


def bid_out(bid: Bid) -> Dict[str, Any]:
    data = bid.to_api()
    data["display"] = bid_display(bid)
    return data


# ---------------------------
# Models (requests/responses)
# ---------------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_unset=True)
        data.update(self.model_extra or {})
        return data


class SignupRequest(CamelModel):
    full_name: str
    email: EmailStr
    password: str
    user_type: str = Field(..., description="customer | contractor")
    mobile: Optional[str] = None
    city: Optional[str] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class VerifyEmailRequest(CamelModel):
    code: str


class ProfileUpdateRequest(CamelModel):
    full_name: Optional[str] = None
    mobile: Optional[str] = None
    city: Optional[str] = None
    company_name: Optional[str] = None
    service_category: Optional[str] = None
    experience: Optional[str] = None


class ProjectCreateRequest(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: List[str] = []
    budget: Optional[float] = None
    budget_max: Optional[float] = None
    location: Optional[str] = None
    start_date: Optional[str] = Field(None, description="YYYY-MM-DD")
    expected_duration: Optional[str] = None


class ProjectUpdateRequest(ProjectCreateRequest):
    # unknown and protected keys are kept so the workflow can reject them by name
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class BidCreateRequest(CamelModel):
    price_quoted: Optional[float] = None
    timeline: Optional[str] = None
    message: Optional[str] = None


class ContactRequest(CamelModel):
    name: str
    email: str
    subject: Optional[str] = None
    message: str


class ContactReplyRequest(CamelModel):
    reply: str


class ChatMessageRequest(CamelModel):
    recipient_id: str
    message: str


class ChatReadRequest(CamelModel):
    sender_id: str


# ---------------------------
# Health & Utility
# ---------------------------
@app.get("/")
def read_root():
    return {"message": "Construction Marketplace API running"}


@app.get("/health")
def health(store: EntityStore = Depends(get_store)):
    response = {
        "backend": "running",
        "database": "not available",
        "database_url": "set" if os.getenv("DATABASE_URL") else "not set",
        "store": None,
    }
    try:
        response["store"] = store.describe()
        response["database"] = "connected"
    except WorkflowError as e:
        response["database"] = f"error: {e.message[:50]}"
    return response


# ---------------------------
# Authentication & profiles
# ---------------------------
@app.post("/auth/signup")
def signup(payload: SignupRequest, store: EntityStore = Depends(get_store)):
    profile, token, code = identity.signup(
        store, payload.full_name, payload.email, payload.password, payload.user_type,
        mobile=payload.mobile, city=payload.city,
    )
    # the verification code is what the welcome email links to
    return {"user": profile.to_api(), "token": token, "verificationCode": code}


@app.post("/auth/login")
def login(payload: LoginRequest, store: EntityStore = Depends(get_store)):
    profile, token = identity.login(store, payload.email, payload.password)
    return {"user": profile.to_api(), "token": token}


@app.post("/auth/verify-email")
def verify_email(payload: VerifyEmailRequest, store: EntityStore = Depends(get_store)):
    return identity.verify_email(store, payload.code).to_api()


@app.get("/me")
def me(profile: UserProfile = Depends(identity.get_current_profile)):
    return profile.to_api()


@app.put("/me/profile")
def update_my_profile(payload: ProfileUpdateRequest, current: Actor = Depends(identity.get_current_user),
                      store: EntityStore = Depends(get_store)):
    return profiles.update_profile(store, current, current.uid, payload.changes()).to_api()


@app.get("/contractors")
def list_contractors(service_category: Optional[str] = Query(None, alias="serviceCategory"),
                     city: Optional[str] = None, limit: int = 50, store: EntityStore = Depends(get_store)):
    return [p.to_api() for p in profiles.list_contractors(store, service_category=service_category,
                                                          city=city, limit=limit)]


# ---------------------------
# Projects
# ---------------------------
@app.post("/projects")
def create_project(payload: ProjectCreateRequest, current: Actor = Depends(identity.get_current_user),
                   store: EntityStore = Depends(get_store)):
    return project_out(projects.create_project(store, current, payload.changes()))


@app.get("/projects")
def list_open_projects(category: Optional[str] = None, limit: int = 50, store: EntityStore = Depends(get_store)):
    return [project_out(p) for p in projects.list_open_projects(store, category=category, limit=limit)]


@app.get("/projects/mine")
def list_my_projects(status: Optional[str] = Query(None, pattern="^(" + "|".join(PROJECT_STATUSES) + ")$"),
                     current: Actor = Depends(identity.get_current_user), store: EntityStore = Depends(get_store)):
    return [project_out(p) for p in projects.list_owner_projects(store, current, status=status)]


@app.get("/projects/{project_id}")
def get_project(project_id: str, store: EntityStore = Depends(get_store)):
    return project_out(projects.get_project(store, project_id))


@app.put("/projects/{project_id}")
def edit_project(project_id: str, payload: ProjectUpdateRequest, current: Actor = Depends(identity.get_current_user),
                 store: EntityStore = Depends(get_store)):
    return project_out(projects.edit_project(store, current, project_id, payload.changes()))


@app.post("/projects/{project_id}/close")
def close_project(project_id: str, current: Actor = Depends(identity.get_current_user),
                  store: EntityStore = Depends(get_store)):
    return project_out(projects.close_project(store, current, project_id))


@app.post("/projects/{project_id}/reopen")
def reopen_project(project_id: str, current: Actor = Depends(identity.get_current_user),
                   store: EntityStore = Depends(get_store)):
    return project_out(projects.reopen_project(store, current, project_id))


@app.post("/projects/{project_id}/complete")
def complete_project(project_id: str, current: Actor = Depends(identity.get_current_user),
                     store: EntityStore = Depends(get_store)):
    return project_out(projects.mark_completed(store, current, project_id))


@app.delete("/projects/{project_id}")
def delete_project(project_id: str, current: Actor = Depends(identity.get_current_user),
                   store: EntityStore = Depends(get_store)):
    removed = projects.delete_project(store, current, project_id)
    return {"deleted": True, "bidsDeleted": removed}


# ---------------------------
# Bids
# ---------------------------
@app.post("/projects/{project_id}/bids")
def submit_bid(project_id: str, payload: BidCreateRequest, current: Actor = Depends(identity.get_current_user),
               store: EntityStore = Depends(get_store)):
    return bid_out(bids.submit_bid(store, current, project_id, payload.changes()))


@app.get("/projects/{project_id}/bids")
def list_project_bids(project_id: str, current: Actor = Depends(identity.get_current_user),
                      store: EntityStore = Depends(get_store)):
    return [bid_out(b) for b in bids.list_project_bids(store, current, project_id)]


@app.get("/bids/mine")
def list_my_bids(status: Optional[str] = Query(None, pattern="^(" + "|".join(BID_STATUSES) + ")$"),
                 current: Actor = Depends(identity.get_current_user), store: EntityStore = Depends(get_store)):
    return [bid_out(b) for b in bids.list_contractor_bids(store, current, status=status)]


@app.get("/engagements")
def list_engagements(current: Actor = Depends(identity.get_current_user), store: EntityStore = Depends(get_store)):
    return [{"bid": bid_out(b), "project": project_out(p)} for b, p in bids.list_engagements(store, current)]


@app.post("/bids/{bid_id}/accept")
def accept_bid(bid_id: str, current: Actor = Depends(identity.get_current_user),
               store: EntityStore = Depends(get_store)):
    bid, project = bids.accept_bid(store, current, bid_id)
    return {"bid": bid_out(bid), "project": project_out(project)}


@app.post("/bids/{bid_id}/reject")
def reject_bid(bid_id: str, current: Actor = Depends(identity.get_current_user),
               store: EntityStore = Depends(get_store)):
    bid, project = bids.reject_bid(store, current, bid_id)
    return {"bid": bid_out(bid), "project": project_out(project)}


@app.post("/bids/{bid_id}/shortlist")
def shortlist_bid(bid_id: str, current: Actor = Depends(identity.get_current_user),
                  store: EntityStore = Depends(get_store)):
    return bid_out(bids.shortlist_bid(store, current, bid_id))


# ---------------------------
# Project chat
# ---------------------------
@app.post("/projects/{project_id}/messages")
def send_chat_message(project_id: str, payload: ChatMessageRequest, current: Actor = Depends(identity.get_current_user),
                      store: EntityStore = Depends(get_store)):
    return chats.send_message(store, current, project_id, payload.recipient_id, payload.message).to_api()


@app.get("/projects/{project_id}/messages")
def list_chat_messages(project_id: str, with_uid: Optional[str] = Query(None, alias="with"),
                       current: Actor = Depends(identity.get_current_user), store: EntityStore = Depends(get_store)):
    return [m.to_api() for m in chats.list_messages(store, current, project_id, with_uid=with_uid)]


@app.post("/projects/{project_id}/messages/read")
def mark_chat_read(project_id: str, payload: ChatReadRequest, current: Actor = Depends(identity.get_current_user),
                   store: EntityStore = Depends(get_store)):
    return {"marked": chats.mark_read(store, current, project_id, payload.sender_id)}


@app.get("/chats")
def list_conversations(current: Actor = Depends(identity.get_current_user), store: EntityStore = Depends(get_store)):
    return chats.list_conversations(store, current)


# ---------------------------
# Contact
# ---------------------------
@app.post("/contact")
def submit_contact(payload: ContactRequest, store: EntityStore = Depends(get_store)):
    msg = contact.submit_contact_message(store, payload.name, payload.email, payload.message,
                                         subject=payload.subject)
    return {"id": msg.id, "status": msg.status}


# ---------------------------
# Admin console
# ---------------------------
@app.get("/admin/users")
def admin_list_users(user_type: Optional[str] = Query(None, alias="userType"),
                     current: Actor = Depends(identity.get_current_user), store: EntityStore = Depends(get_store)):
    return [p.to_api() for p in profiles.list_users(store, current, user_type=user_type)]


@app.get("/admin/projects")
def admin_list_projects(status: Optional[str] = Query(None, pattern="^(" + "|".join(PROJECT_STATUSES) + ")$"),
                        current: Actor = Depends(identity.get_current_user), store: EntityStore = Depends(get_store)):
    return [project_out(p) for p in projects.list_all_projects(store, current, status=status)]


@app.get("/admin/contact-messages")
def admin_list_contact_messages(status: Optional[str] = Query(None, pattern="^(new|read|replied)$"),
                                current: Actor = Depends(identity.get_current_user),
                                store: EntityStore = Depends(get_store)):
    return [m.to_api() for m in contact.list_contact_messages(store, current, status=status)]


@app.post("/admin/contact-messages/{message_id}/read")
def admin_mark_contact_read(message_id: str, current: Actor = Depends(identity.get_current_user),
                            store: EntityStore = Depends(get_store)):
    return contact.mark_read(store, current, message_id).to_api()


@app.post("/admin/contact-messages/{message_id}/reply")
def admin_reply_contact(message_id: str, payload: ContactReplyRequest,
                        current: Actor = Depends(identity.get_current_user), store: EntityStore = Depends(get_store)):
    return contact.reply(store, current, message_id, payload.reply).to_api()


@app.delete("/admin/contact-messages/{message_id}")
def admin_delete_contact(message_id: str, current: Actor = Depends(identity.get_current_user),
                         store: EntityStore = Depends(get_store)):
    contact.delete_contact_message(store, current, message_id)
    return {"deleted": True}


# Optional: expose schemas for tooling
@app.get("/schema")
def get_schema_models():
    from schemas import ChatMessage, ContactMessage
    models = [
        ("UserProfile", "users", UserProfile),
        ("Project", "projects", Project),
        ("Bid", "bids", Bid),
        ("ChatMessage", "chats", ChatMessage),
        ("ContactMessage", "contactMessages", ContactMessage),
    ]
    return {
        "models": [
            {"name": name, "collection": collection,
             "fields": [f.alias or key for key, f in model.model_fields.items()]}
            for name, collection, model in models
        ]
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
