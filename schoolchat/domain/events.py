# schoolchat/domain/events.py
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class Event(BaseModel):
    """Base for everything handed to the EventDispatcher.

    ``actor_id`` is the user who caused the event; the fan-out never delivers
    an event back to its actor. ``recipient_ids`` are the affected
    participants, resolved by the interactor at the time of the state change.
    """

    actor_id: int | None = None
    recipient_ids: list[int] = Field(default_factory=list)


class UserInfo(BaseModel):
    id: int
    full_name: str
    role: str


class MessageEvent(Event):
    message_id: int
    thread_id: int
    sender_id: int
    content: str
    message_type: str
    approval_state: str
    created_at: datetime
    sender: UserInfo | None = None


class MessageApproved(MessageEvent):
    approved_by: int | None = None
    approved_at: datetime | None = None


class MessageRejected(MessageEvent):
    rejected_by: int
    rejection_reason: str | None = None


class MessageUpdated(MessageEvent):
    updated_at: datetime


class MessageDeleted(Event):
    message_id: int
    thread_id: int
    sender_id: int


class MessageRead(Event):
    message_id: int
    thread_id: int
    user_id: int
    read_at: datetime


class ThreadCreated(Event):
    thread_id: int
    kind: str
    title: str | None
    created_by: int
    participant_ids: list[int]


class ParticipantAdded(Event):
    thread_id: int
    title: str | None
    added_user_ids: list[int]


class NotificationPublished(Event):
    kind: str
    title: str
    body: str
    topic: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


def event_type_name(event: Event) -> str:
    """``MessageApproved`` -> ``message_approved``, the wire name for clients."""
    name = event.__class__.__name__
    return "".join(
        f"_{char.lower()}" if char.isupper() and i else char.lower()
        for i, char in enumerate(name)
    )
