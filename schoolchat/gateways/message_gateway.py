# schoolchat/gateways/message_gateway.py
from datetime import datetime

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from schoolchat.domain.entities import ApprovalState, ThreadStatus, utcnow
from schoolchat.gateways.interfaces import IMessageGateway
from schoolchat.infrastructure import models
from schoolchat.infrastructure.data_mappers import MessageMapper, ReadReceiptMapper
from schoolchat.infrastructure.uow import UnitOfWork, UoWModel


class MessageGateway(IMessageGateway):
    def __init__(self, session: AsyncSession, uow: UnitOfWork):
        self.session = session
        self.uow = uow
        uow.mappers[models.Message] = MessageMapper(session)
        uow.mappers[models.ReadReceipt] = ReadReceiptMapper(session)

    async def get_message(self, message_id: int) -> UoWModel | None:
        # always re-read: another request may have moderated the row since
        stmt = (
            select(models.Message)
            .filter(models.Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        message = result.scalar_one_or_none()
        return UoWModel(message, self.uow) if message else None

    async def get_visible(
        self,
        thread_id: int,
        viewer_id: int,
        include_unapproved: bool,
        skip: int = 0,
        limit: int = 50,
    ) -> list[UoWModel]:
        stmt = select(models.Message).filter(models.Message.thread_id == thread_id)
        if not include_unapproved:
            stmt = stmt.filter(
                or_(
                    models.Message.approval_state == ApprovalState.APPROVED.value,
                    models.Message.sender_id == viewer_id,
                )
            )
        stmt = (
            stmt.order_by(models.Message.created_at.desc(), models.Message.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [UoWModel(message, self.uow) for message in result.scalars().all()]

    async def create_message(
        self,
        thread_id: int,
        sender_id: int,
        content: str,
        message_type: str,
        approval_state: ApprovalState,
    ) -> UoWModel:
        now = utcnow()
        message = models.Message(
            thread_id=thread_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            approval_state=approval_state.value,
            created_at=now,
        )
        if approval_state == ApprovalState.APPROVED:
            message.approved_at = now
        uow_message = self.uow.register_new(message)
        await self.uow.flush()
        return uow_message

    async def update_content(self, message: UoWModel, content: str) -> UoWModel:
        message.content = content
        message.updated_at = utcnow()
        await self.uow.flush()
        return message

    async def delete_message(self, message: UoWModel) -> None:
        await self.session.execute(
            delete(models.ReadReceipt).where(
                models.ReadReceipt.message_id == message.id
            )
        )
        await self.session.execute(
            delete(models.Attachment).where(models.Attachment.message_id == message.id)
        )
        self.uow.register_deleted(message)
        await self.uow.flush()

    async def transition(
        self,
        message_id: int,
        to_state: ApprovalState,
        moderator_id: int,
        reason: str | None = None,
    ) -> bool:
        """Move a pending message to ``to_state``.

        Returns False when the message was no longer pending, which is how a
        repeated or concurrent moderation shows up.
        """
        values = {"approval_state": to_state.value, "approved_by": moderator_id}
        if to_state == ApprovalState.APPROVED:
            values["approved_at"] = utcnow()
        else:
            values["rejection_reason"] = reason
        stmt = (
            update(models.Message)
            .where(
                models.Message.id == message_id,
                models.Message.approval_state == ApprovalState.PENDING.value,
            )
            .values(**values)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_pending(self, skip: int = 0, limit: int = 50) -> list[UoWModel]:
        stmt = (
            select(models.Message)
            .filter(models.Message.approval_state == ApprovalState.PENDING.value)
            .order_by(models.Message.created_at, models.Message.id)
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [UoWModel(message, self.uow) for message in result.scalars().all()]

    async def count_by_state(self) -> dict[str, int]:
        stmt = select(
            models.Message.approval_state, func.count(models.Message.id)
        ).group_by(models.Message.approval_state)
        result = await self.session.execute(stmt)
        return {state: count for state, count in result}

    async def count_pending_by_sender(self) -> dict[int, int]:
        stmt = (
            select(models.Message.sender_id, func.count(models.Message.id))
            .filter(models.Message.approval_state == ApprovalState.PENDING.value)
            .group_by(models.Message.sender_id)
            .order_by(func.count(models.Message.id).desc())
        )
        result = await self.session.execute(stmt)
        return {sender_id: count for sender_id, count in result}

    def _insert_ignore(self):
        dialect = self.session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        return insert(models.ReadReceipt)

    async def record_read(self, message_id: int, user_id: int, at: datetime) -> bool:
        """Insert a receipt unless one exists. True when this call created it."""
        stmt = (
            self._insert_ignore()
            .values(message_id=message_id, user_id=user_id, read_at=at)
            .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    def _unread_filter(self, user_id: int):
        receipt = exists().where(
            models.ReadReceipt.message_id == models.Message.id,
            models.ReadReceipt.user_id == user_id,
        )
        return (
            models.Message.approval_state == ApprovalState.APPROVED.value,
            models.Message.sender_id != user_id,
            ~receipt,
        )

    async def get_unread(self, thread_id: int, user_id: int) -> list[UoWModel]:
        stmt = (
            select(models.Message)
            .filter(models.Message.thread_id == thread_id, *self._unread_filter(user_id))
            .order_by(models.Message.created_at, models.Message.id)
        )
        result = await self.session.execute(stmt)
        return [UoWModel(message, self.uow) for message in result.scalars().all()]

    async def count_unread(self, user_id: int, thread_id: int | None = None) -> int:
        stmt = select(func.count(models.Message.id)).filter(
            *self._unread_filter(user_id)
        )
        if thread_id is not None:
            stmt = stmt.filter(models.Message.thread_id == thread_id)
        else:
            stmt = (
                stmt.join(models.Thread, models.Thread.id == models.Message.thread_id)
                .join(
                    models.Participant,
                    models.Participant.thread_id == models.Message.thread_id,
                )
                .filter(
                    models.Participant.user_id == user_id,
                    models.Thread.status == ThreadStatus.ACTIVE.value,
                )
            )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def get_approved_since(
        self, user_id: int, since: datetime, limit: int = 200
    ) -> list[UoWModel]:
        """Messages from others that became visible to the user after ``since``.

        Approval time counts, not creation time, so a message moderated while
        the user was away is still caught up on.
        """
        stmt = (
            select(models.Message)
            .join(
                models.Participant,
                models.Participant.thread_id == models.Message.thread_id,
            )
            .join(models.Thread, models.Thread.id == models.Message.thread_id)
            .filter(
                models.Participant.user_id == user_id,
                models.Thread.status == ThreadStatus.ACTIVE.value,
                models.Message.sender_id != user_id,
                models.Message.approval_state == ApprovalState.APPROVED.value,
                models.Message.approved_at > since,
            )
            .order_by(models.Message.approved_at, models.Message.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [UoWModel(message, self.uow) for message in result.scalars().all()]

    async def get_read_receipts(self, message_id: int) -> list:
        stmt = (
            select(models.ReadReceipt, models.User)
            .join(models.User, models.User.id == models.ReadReceipt.user_id)
            .filter(models.ReadReceipt.message_id == message_id)
            .order_by(models.ReadReceipt.read_at, models.ReadReceipt.id)
        )
        result = await self.session.execute(stmt)
        return [(receipt, user) for receipt, user in result.all()]
