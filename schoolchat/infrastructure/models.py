# schoolchat/infrastructure/models.py
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from schoolchat.domain.entities import (
    ApprovalState,
    MessageType,
    ParticipantRole,
    ThreadStatus,
    utcnow,
)
from schoolchat.infrastructure.database import Base

# Ownership is one-directional: threads own participants and messages through
# foreign keys only. Reverse lookups are queries in the gateways.


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, index=True, autoincrement=True
    )
    full_name: Mapped[str] = mapped_column(String)
    role: Mapped[str] = mapped_column(String, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Thread(Base):
    __tablename__ = "chat_threads"

    __table_args__ = (
        # Only one active direct thread per participant set. Merged threads and
        # legacy rows without a key are not covered.
        Index(
            "uq_chat_threads_active_participant_key",
            "kind",
            "participant_key",
            unique=True,
            sqlite_where=text("status = 'active' AND participant_key IS NOT NULL"),
            postgresql_where=text(
                "status = 'active' AND participant_key IS NOT NULL"
            ),
        ),
        Index("ix_chat_threads_kind_status", "kind", "status"),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, index=True, autoincrement=True
    )
    kind: Mapped[str] = mapped_column(String)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default=ThreadStatus.ACTIVE.value)
    participant_key: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class Participant(Base):
    __tablename__ = "chat_participants"

    __table_args__ = (
        UniqueConstraint("thread_id", "user_id", name="uq_chat_participants_thread_user"),
        Index("ix_chat_participants_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, index=True, autoincrement=True
    )
    thread_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chat_threads.id"), index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"))
    role: Mapped[str] = mapped_column(String, default=ParticipantRole.MEMBER.value)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class Message(Base):
    __tablename__ = "chat_messages"

    __table_args__ = (
        Index("ix_chat_messages_thread_created", "thread_id", "created_at"),
        Index("ix_chat_messages_approval_state", "approval_state"),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, index=True, autoincrement=True
    )
    thread_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chat_threads.id"), index=True
    )
    sender_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), index=True
    )
    content: Mapped[str] = mapped_column(Text)
    message_type: Mapped[str] = mapped_column(String, default=MessageType.TEXT.value)
    approval_state: Mapped[str] = mapped_column(
        String, default=ApprovalState.APPROVED.value
    )
    approved_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class Attachment(Base):
    __tablename__ = "chat_attachments"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, index=True, autoincrement=True
    )
    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chat_messages.id"), index=True
    )
    url: Mapped[str] = mapped_column(String)
    file_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ReadReceipt(Base):
    __tablename__ = "message_reads"

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_reads_message_user"),
        Index("ix_message_reads_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, index=True, autoincrement=True
    )
    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chat_messages.id"), index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"))
    read_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class DeviceToken(Base):
    __tablename__ = "user_device_tokens"

    __table_args__ = (Index("ix_device_tokens_user_active", "user_id", "is_active"),)

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, index=True, autoincrement=True
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"))
    token: Mapped[str] = mapped_column(String, unique=True)
    platform: Mapped[str] = mapped_column(String, default="android")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class DeviceTopic(Base):
    """A topic the push provider confirmed for a device token."""

    __tablename__ = "user_device_topics"

    __table_args__ = (
        UniqueConstraint("device_token_id", "topic", name="uq_device_topics_device_topic"),
    )

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, index=True, autoincrement=True
    )
    device_token_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_device_tokens.id"), index=True
    )
    topic: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
