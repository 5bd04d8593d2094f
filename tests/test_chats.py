import pytest

import bids
import chats
import projects
from database import CHATS
from errors import AuthorizationError, ValidationError


@pytest.fixture
def project(store, owner, project_fields):
    return projects.create_project(store, owner, project_fields)


@pytest.fixture
def bidder(store, project, contractor_a, bid_fields):
    bids.submit_bid(store, contractor_a, project.id, bid_fields)
    return contractor_a


def test_owner_and_bidder_exchange_messages(store, owner, project, bidder):
    first = chats.send_message(store, bidder, project.id, owner.uid, "  When can we visit the site?  ")
    assert first.message == "When can we visit the site?"
    assert first.participants == [bidder.uid, owner.uid]
    assert first.sender_type == "contractor"
    assert first.read is False
    chats.send_message(store, owner, project.id, bidder.uid, "Saturday morning works")

    for actor in (owner, bidder):
        thread = chats.list_messages(store, actor, project.id)
        assert [m.message for m in thread] == ["When can we visit the site?", "Saturday morning works"]


def test_only_bidders_and_owner_may_chat(store, owner, other_customer, project, contractor_b):
    with pytest.raises(AuthorizationError):
        chats.send_message(store, contractor_b, project.id, owner.uid, "Can I ask something?")
    with pytest.raises(AuthorizationError):
        chats.send_message(store, other_customer, project.id, owner.uid, "Hello")
    with pytest.raises(AuthorizationError):
        chats.list_messages(store, contractor_b, project.id)
    assert store.query(CHATS) == []


def test_recipient_rules(store, owner, project, bidder, contractor_b):
    with pytest.raises(ValidationError):
        chats.send_message(store, owner, project.id, contractor_b.uid, "You did not bid")
    with pytest.raises(ValidationError):
        chats.send_message(store, owner, project.id, owner.uid, "Note to self")
    with pytest.raises(ValidationError):
        chats.send_message(store, bidder, project.id, contractor_b.uid, "Hi competitor")
    with pytest.raises(ValidationError):
        chats.send_message(store, bidder, project.id, owner.uid, "   ")
    with pytest.raises(ValidationError):
        chats.send_message(store, bidder, project.id, owner.uid, "x" * (chats.MAX_MESSAGE_LENGTH + 1))


def test_threads_are_private_to_participants(store, owner, project, bidder, contractor_b, bid_fields):
    bids.submit_bid(store, contractor_b, project.id, bid_fields)
    chats.send_message(store, owner, project.id, bidder.uid, "Message for A")
    chats.send_message(store, owner, project.id, contractor_b.uid, "Message for B")

    assert [m.message for m in chats.list_messages(store, bidder, project.id)] == ["Message for A"]
    assert [m.message for m in chats.list_messages(store, owner, project.id, with_uid=contractor_b.uid)] == [
        "Message for B"]
    assert len(chats.list_messages(store, owner, project.id)) == 2


def test_rejected_bidder_keeps_chat_access(store, owner, project, bidder):
    [bid] = bids.list_contractor_bids(store, bidder)
    bids.reject_bid(store, owner, bid.id)
    assert chats.send_message(store, bidder, project.id, owner.uid, "Thanks for considering us").id


def test_mark_read_and_conversations(store, owner, project, bidder):
    chats.send_message(store, bidder, project.id, owner.uid, "First question")
    chats.send_message(store, bidder, project.id, owner.uid, "Second question")
    chats.send_message(store, owner, project.id, bidder.uid, "Answer")

    [convo] = chats.list_conversations(store, owner)
    assert convo["projectId"] == project.id
    assert convo["projectTitle"] == project.title
    assert convo["counterpartId"] == bidder.uid
    assert convo["lastMessage"] == "Answer"
    assert convo["unreadCount"] == 2
    assert chats.list_conversations(store, bidder)[0]["unreadCount"] == 1

    assert chats.mark_read(store, owner, project.id, bidder.uid) == 2
    assert chats.mark_read(store, owner, project.id, bidder.uid) == 0
    assert chats.list_conversations(store, owner)[0]["unreadCount"] == 0
    assert chats.list_conversations(store, bidder)[0]["unreadCount"] == 1


def test_conversations_survive_deleted_project(store, owner, project, bidder):
    chats.send_message(store, bidder, project.id, owner.uid, "Are you still hiring?")
    projects.delete_project(store, owner, project.id)
    [convo] = chats.list_conversations(store, bidder)
    assert convo["projectTitle"] is None
