# schoolchat/domain/entities.py
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


def utcnow() -> datetime:
    # Stored naive in UTC so values compare the same before and after a reload
    return datetime.now(UTC).replace(tzinfo=None)


class ThreadKind(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


class ThreadStatus(str, Enum):
    ACTIVE = "active"
    MERGED = "merged"


class ParticipantRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class ApprovalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DeliveryChannel(str, Enum):
    REALTIME = "realtime"
    PUSH = "push"
    TOPIC = "topic"


@dataclass
class MergeOutcome:
    duplicate_id: int
    status: str  # "merged", "already_merged" or "failed"
    moved_messages: int = 0
    moved_participants: int = 0
    error: str | None = None


@dataclass
class MergeReport:
    primary_id: int
    participant_ids: list[int]
    outcomes: list[MergeOutcome] = field(default_factory=list)

    @property
    def merged(self) -> list[int]:
        return [o.duplicate_id for o in self.outcomes if o.status == "merged"]

    @property
    def failed(self) -> list[int]:
        return [o.duplicate_id for o in self.outcomes if o.status == "failed"]


@dataclass
class DeliveryAttempt:
    user_id: int | None
    channel: DeliveryChannel
    target: str
    success: bool
    error: str | None = None


@dataclass
class DeliveryReport:
    event_type: str
    attempts: list[DeliveryAttempt] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def for_user(self, user_id: int) -> list[DeliveryAttempt]:
        return [a for a in self.attempts if a.user_id == user_id]

    @property
    def failures(self) -> list[DeliveryAttempt]:
        return [a for a in self.attempts if not a.success]
