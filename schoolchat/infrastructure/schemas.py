# schoolchat/infrastructure/schemas.py
from datetime import datetime
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schoolchat.domain.entities import ApprovalState, MessageType, ThreadKind

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    status: Literal["success"] = "success"
    data: T | None = None
    message: str | None = None


class ErrorEnvelope(BaseModel):
    status: Literal["error"] = "error"
    error: str
    message: str


class UserBasic(BaseModel):
    id: int
    full_name: str
    role: str

    model_config = ConfigDict(from_attributes=True)


class User(UserBasic):
    is_active: bool
    created_at: datetime


class Participant(BaseModel):
    user_id: int
    role: str
    joined_at: datetime
    last_read_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class Thread(BaseModel):
    id: int
    kind: ThreadKind
    title: str | None = None
    status: str
    created_by: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ThreadDetail(Thread):
    participants: list[Participant] = Field(default_factory=list)


class ThreadSummary(Thread):
    participant_ids: list[int] = Field(default_factory=list)
    unread_count: int = 0
    last_message: "Message | None" = None


class ThreadCreate(BaseModel):
    thread_type: ThreadKind = ThreadKind.DIRECT
    title: str | None = None
    participants: list[int]

    @field_validator("participants")
    @classmethod
    def participants_not_empty(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("At least one participant is required")
        return value


class ConversationStart(ThreadCreate):
    message_content: str
    message_type: MessageType = MessageType.TEXT

    @field_validator("message_content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content is required")
        return value.strip()


class ParticipantsAdd(BaseModel):
    user_ids: list[int]


class DuplicateResolutionRequest(BaseModel):
    thread_type: ThreadKind = ThreadKind.DIRECT


class MergeOutcome(BaseModel):
    duplicate_id: int
    status: str
    moved_messages: int = 0
    moved_participants: int = 0
    error: str | None = None

    model_config = ConfigDict(from_attributes=True)


class MergeReport(BaseModel):
    primary_id: int
    participant_ids: list[int]
    outcomes: list[MergeOutcome]

    model_config = ConfigDict(from_attributes=True)


class DuplicateResolution(BaseModel):
    thread_type: ThreadKind
    total_threads_before: int
    total_threads_after: int
    duplicate_groups_found: int
    resolved_groups: int
    reports: list[MergeReport]


class Attachment(BaseModel):
    id: int
    url: str
    file_name: str | None = None
    mime_type: str | None = None

    model_config = ConfigDict(from_attributes=True)


class MessageCreate(BaseModel):
    thread_id: int
    content: str
    message_type: MessageType = MessageType.TEXT

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content is required")
        return value


class MessageUpdate(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content is required")
        return value


class MessageReject(BaseModel):
    reason: str | None = None


class Message(BaseModel):
    id: int
    thread_id: int
    sender_id: int
    content: str
    message_type: MessageType
    approval_state: ApprovalState
    approved_by: int | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class Conversation(BaseModel):
    thread: Thread
    message: Message
    participants: int


class ModerationResult(BaseModel):
    message: Message
    changed: bool


class ReadReceipt(BaseModel):
    user_id: int
    full_name: str | None = None
    role: str | None = None
    read_at: datetime


class ReadBy(BaseModel):
    message_id: int
    read_count: int
    read_by: list[ReadReceipt]


class ReadMark(BaseModel):
    message_id: int
    user_id: int
    read_at: datetime


class ThreadReadMark(BaseModel):
    thread_id: int
    user_id: int
    messages_marked: int


class UnreadCount(BaseModel):
    thread_id: int | None = None
    unread_count: int


class PendingBySender(BaseModel):
    sender_id: int
    pending_count: int


class ApprovalStats(BaseModel):
    total_pending: int
    total_approved: int
    total_rejected: int
    pending_by_sender: list[PendingBySender]


class DeviceRegister(BaseModel):
    token: str = Field(..., min_length=1)
    platform: Literal["android", "ios", "web"] = "android"
    topics: list[str] = Field(default_factory=list)


class DeviceToken(BaseModel):
    id: int
    token: str
    platform: str
    is_active: bool
    last_used_at: datetime | None = None
    created_at: datetime | None = None
    topics: list[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class TopicSubscription(BaseModel):
    topic: str
    success: bool
    error: str | None = None


class DeviceRegistration(BaseModel):
    device: DeviceToken
    subscriptions: list[TopicSubscription] = Field(default_factory=list)


class TopicChange(BaseModel):
    token: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)


class AvailableTopics(BaseModel):
    all_topics: list[str]
    categorized_topics: dict[str, list[str]]
    total_topics: int
    topic_categories: dict[str, str]


class OfflineMessages(BaseModel):
    messages: list[Message]
    count: int
    last_check_time: datetime


class NotificationCreate(BaseModel):
    kind: Literal["attendance", "announcement", "general"]
    title: str
    body: str
    student_id: int | None = None
    class_id: int | None = None
    user_ids: list[int] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationResult(BaseModel):
    topic: str | None
    topic_delivered: bool
    recipients: int


ThreadSummary.model_rebuild()
