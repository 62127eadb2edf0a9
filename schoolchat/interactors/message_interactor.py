# schoolchat/interactors/message_interactor.py
import logging
from datetime import UTC, datetime

from schoolchat.domain.entities import ApprovalState, ThreadStatus, utcnow
from schoolchat.domain.events import (
    MessageApproved,
    MessageDeleted,
    MessageRead,
    MessageRejected,
    MessageUpdated,
    UserInfo,
)
from schoolchat.domain.exceptions import (
    ChatValidationError,
    Forbidden,
    InvalidTransition,
    MessageNotFound,
    NotAModerator,
    NotAParticipant,
    ThreadNotActive,
    ThreadNotFound,
)
from schoolchat.domain.policy import ModerationPolicy
from schoolchat.gateways.interfaces import IMessageGateway, IThreadGateway, IUserGateway
from schoolchat.infrastructure import schemas
from schoolchat.infrastructure.event_dispatcher import EventDispatcher
from schoolchat.infrastructure.uow import UnitOfWork, UoWModel


class MessageInteractor:
    """Message lifecycle: creation, moderation, edits, deletes and read state.

    Every read goes through the visibility rule: a message is shown to its
    sender, to moderators, and to everyone else only once approved.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        message_gateway: IMessageGateway,
        thread_gateway: IThreadGateway,
        user_gateway: IUserGateway,
        policy: ModerationPolicy,
        event_dispatcher: EventDispatcher,
        logger: logging.Logger,
    ):
        self.uow = uow
        self.message_gateway = message_gateway
        self.thread_gateway = thread_gateway
        self.user_gateway = user_gateway
        self.policy = policy
        self.event_dispatcher = event_dispatcher
        self.logger = logger

    async def _get_thread(self, thread_id: int) -> UoWModel:
        thread = await self.thread_gateway.get_thread(thread_id)
        if thread is None:
            raise ThreadNotFound(f"Thread {thread_id} not found")
        return thread

    async def _get_message(self, message_id: int) -> UoWModel:
        message = await self.message_gateway.get_message(message_id)
        if message is None:
            raise MessageNotFound(f"Message {message_id} not found")
        return message

    async def _get_visible_message(self, message_id: int, viewer: schemas.User) -> UoWModel:
        message = await self._get_message(message_id)
        if not self.policy.can_view(
            viewer.id, viewer.role, message.sender_id, ApprovalState(message.approval_state)
        ):
            # pending messages do not exist for anyone but sender and moderators
            raise MessageNotFound(f"Message {message_id} not found")
        return message

    async def _require_participant(self, thread_id: int, user_id: int) -> UoWModel:
        participant = await self.thread_gateway.get_participant(thread_id, user_id)
        if participant is None:
            raise NotAParticipant(f"User {user_id} is not in thread {thread_id}")
        return participant

    def _require_moderator(self, user: schemas.User) -> None:
        if not self.policy.is_moderator(user.role):
            raise NotAModerator(f"Role {user.role} cannot moderate messages")

    async def _others(self, thread_id: int, user_id: int) -> list[int]:
        return [
            participant_id
            for participant_id in await self.thread_gateway.get_participant_ids(thread_id)
            if participant_id != user_id
        ]

    async def _sender_info(self, sender_id: int) -> UserInfo | None:
        sender = await self.user_gateway.get_user(sender_id)
        if sender is None:
            return None
        return UserInfo(id=sender.id, full_name=sender.full_name, role=sender.role)

    @staticmethod
    def _event_fields(message: schemas.Message) -> dict:
        return {
            "message_id": message.id,
            "thread_id": message.thread_id,
            "sender_id": message.sender_id,
            "content": message.content,
            "message_type": message.message_type.value,
            "approval_state": message.approval_state.value,
            "created_at": message.created_at,
        }

    async def create_message(
        self, data: schemas.MessageCreate, sender: schemas.User
    ) -> schemas.Message:
        content = data.content.strip()
        if not content:
            raise ChatValidationError("Message content is required")

        thread = await self._get_thread(data.thread_id)
        if thread.status != ThreadStatus.ACTIVE.value:
            raise ThreadNotActive(f"Thread {data.thread_id} is {thread.status}")
        await self._require_participant(thread.id, sender.id)

        recipient_ids = await self._others(thread.id, sender.id)
        roles = await self.user_gateway.get_roles(recipient_ids)
        state = self.policy.initial_state(sender.role, roles.values())

        message = await self.message_gateway.create_message(
            thread.id, sender.id, content, data.message_type.value, state
        )
        if state == ApprovalState.APPROVED:
            await self.thread_gateway.touch(thread.id, message.created_at)
        await self.uow.commit()

        result = schemas.Message.model_validate(message)
        self.logger.info(
            f"Message {result.id} created in thread {thread.id} as {state.value}"
        )
        if state == ApprovalState.APPROVED:
            await self.event_dispatcher.dispatch(
                MessageApproved(
                    actor_id=sender.id,
                    recipient_ids=recipient_ids,
                    sender=UserInfo(id=sender.id, full_name=sender.full_name, role=sender.role),
                    approved_at=result.approved_at,
                    **self._event_fields(result),
                )
            )
        return result

    async def update_message_content(
        self, message_id: int, editor: schemas.User, content: str
    ) -> schemas.Message:
        message = await self._get_message(message_id)
        if message.sender_id != editor.id:
            raise Forbidden("Only the sender can edit a message")
        content = content.strip()
        if not content:
            raise ChatValidationError("Message content is required")

        message = await self.message_gateway.update_content(message, content)
        await self.uow.commit()
        result = schemas.Message.model_validate(message)

        if result.approval_state == ApprovalState.APPROVED:
            await self.event_dispatcher.dispatch(
                MessageUpdated(
                    actor_id=editor.id,
                    recipient_ids=await self._others(result.thread_id, editor.id),
                    updated_at=result.updated_at,
                    **self._event_fields(result),
                )
            )
        return result

    async def delete_message(self, message_id: int, requester: schemas.User) -> schemas.Message:
        message = await self._get_message(message_id)
        if message.sender_id != requester.id:
            raise Forbidden("Only the sender can delete a message")

        result = schemas.Message.model_validate(message)
        recipient_ids = await self._others(result.thread_id, requester.id)
        await self.message_gateway.delete_message(message)
        await self.uow.commit()
        self.logger.info(f"Message {message_id} deleted by {requester.id}")

        if result.approval_state == ApprovalState.APPROVED:
            await self.event_dispatcher.dispatch(
                MessageDeleted(
                    actor_id=requester.id,
                    recipient_ids=recipient_ids,
                    message_id=result.id,
                    thread_id=result.thread_id,
                    sender_id=result.sender_id,
                )
            )
        return result

    async def approve_message(
        self, message_id: int, moderator: schemas.User
    ) -> schemas.ModerationResult:
        self._require_moderator(moderator)
        await self._get_message(message_id)

        changed = await self.message_gateway.transition(
            message_id, ApprovalState.APPROVED, moderator.id
        )
        message = await self._get_message(message_id)
        if not changed:
            if message.approval_state == ApprovalState.REJECTED.value:
                raise InvalidTransition("A rejected message cannot be approved")
            return schemas.ModerationResult(
                message=schemas.Message.model_validate(message), changed=False
            )

        await self.thread_gateway.touch(message.thread_id, message.approved_at)
        await self.uow.commit()
        result = schemas.Message.model_validate(message)
        self.logger.info(f"Message {message_id} approved by {moderator.id}")

        await self.event_dispatcher.dispatch(
            MessageApproved(
                actor_id=moderator.id,
                recipient_ids=await self._others(result.thread_id, result.sender_id),
                sender=await self._sender_info(result.sender_id),
                approved_by=moderator.id,
                approved_at=result.approved_at,
                **self._event_fields(result),
            )
        )
        return schemas.ModerationResult(message=result, changed=True)

    async def reject_message(
        self, message_id: int, moderator: schemas.User, reason: str | None = None
    ) -> schemas.ModerationResult:
        self._require_moderator(moderator)
        await self._get_message(message_id)

        changed = await self.message_gateway.transition(
            message_id, ApprovalState.REJECTED, moderator.id, reason
        )
        message = await self._get_message(message_id)
        if not changed:
            if message.approval_state == ApprovalState.APPROVED.value:
                raise InvalidTransition("An approved message cannot be rejected")
            return schemas.ModerationResult(
                message=schemas.Message.model_validate(message), changed=False
            )

        await self.uow.commit()
        result = schemas.Message.model_validate(message)
        self.logger.info(f"Message {message_id} rejected by {moderator.id}")

        await self.event_dispatcher.dispatch(
            MessageRejected(
                actor_id=moderator.id,
                recipient_ids=[result.sender_id],
                rejected_by=moderator.id,
                rejection_reason=reason,
                **self._event_fields(result),
            )
        )
        return schemas.ModerationResult(message=result, changed=True)

    async def _dispatch_reads(self, messages, reader_id: int, read_at) -> None:
        for message in messages:
            await self.event_dispatcher.dispatch(
                MessageRead(
                    actor_id=reader_id,
                    recipient_ids=[message.sender_id],
                    message_id=message.id,
                    thread_id=message.thread_id,
                    user_id=reader_id,
                    read_at=read_at,
                )
            )

    async def list_messages(
        self, thread_id: int, viewer: schemas.User, skip: int = 0, limit: int = 50
    ) -> list[schemas.Message]:
        """Visible messages of a thread, newest first.

        Fetching is reading: for a participant, every returned approved message
        from someone else gets a read receipt and ``last_read_at`` moves up to
        the newest returned message.
        """
        await self._get_thread(thread_id)
        participant = await self.thread_gateway.get_participant(thread_id, viewer.id)
        is_moderator = self.policy.is_moderator(viewer.role)
        if participant is None and not is_moderator:
            raise NotAParticipant(f"User {viewer.id} is not in thread {thread_id}")

        messages = await self.message_gateway.get_visible(
            thread_id, viewer.id, is_moderator, skip, limit
        )
        results = [schemas.Message.model_validate(message) for message in messages]
        if participant is None or not results:
            return results

        read_at = utcnow()
        newly_read = []
        for message in results:
            if (
                message.approval_state != ApprovalState.APPROVED
                or message.sender_id == viewer.id
            ):
                continue
            if await self.message_gateway.record_read(message.id, viewer.id, read_at):
                newly_read.append(message)
        await self.thread_gateway.advance_last_read(
            thread_id, viewer.id, max(message.created_at for message in results)
        )
        await self.uow.commit()

        await self._dispatch_reads(newly_read, viewer.id, read_at)
        return results

    async def record_read(self, message_id: int, viewer: schemas.User) -> schemas.ReadMark:
        message = await self._get_visible_message(message_id, viewer)
        await self._require_participant(message.thread_id, viewer.id)
        if message.sender_id == viewer.id:
            raise ChatValidationError("Cannot mark your own message as read")
        if message.approval_state != ApprovalState.APPROVED.value:
            raise ChatValidationError("Only approved messages can be marked as read")

        read_at = utcnow()
        created = await self.message_gateway.record_read(message.id, viewer.id, read_at)
        await self.thread_gateway.advance_last_read(
            message.thread_id, viewer.id, message.created_at
        )
        await self.uow.commit()

        if created:
            await self._dispatch_reads([message], viewer.id, read_at)
        else:
            for receipt, _ in await self.message_gateway.get_read_receipts(message.id):
                if receipt.user_id == viewer.id:
                    read_at = receipt.read_at
        return schemas.ReadMark(message_id=message.id, user_id=viewer.id, read_at=read_at)

    async def mark_all_read(
        self, thread_id: int, viewer: schemas.User
    ) -> schemas.ThreadReadMark:
        await self._get_thread(thread_id)
        await self._require_participant(thread_id, viewer.id)

        read_at = utcnow()
        newly_read = []
        for message in await self.message_gateway.get_unread(thread_id, viewer.id):
            if await self.message_gateway.record_read(message.id, viewer.id, read_at):
                newly_read.append(schemas.Message.model_validate(message))
        await self.thread_gateway.advance_last_read(thread_id, viewer.id, read_at)
        await self.uow.commit()

        self.logger.info(
            f"User {viewer.id} marked {len(newly_read)} messages read in thread {thread_id}"
        )
        await self._dispatch_reads(newly_read, viewer.id, read_at)
        return schemas.ThreadReadMark(
            thread_id=thread_id, user_id=viewer.id, messages_marked=len(newly_read)
        )

    async def list_read_by(self, message_id: int, requester: schemas.User) -> schemas.ReadBy:
        message = await self._get_message(message_id)
        if message.sender_id != requester.id and not self.policy.is_moderator(
            requester.role
        ):
            raise Forbidden("Only the sender or a moderator can see who read a message")

        receipts = [
            schemas.ReadReceipt(
                user_id=receipt.user_id,
                full_name=user.full_name,
                role=user.role,
                read_at=receipt.read_at,
            )
            for receipt, user in await self.message_gateway.get_read_receipts(message_id)
        ]
        return schemas.ReadBy(
            message_id=message_id, read_count=len(receipts), read_by=receipts
        )

    async def list_pending(
        self, moderator: schemas.User, skip: int = 0, limit: int = 50
    ) -> list[schemas.Message]:
        self._require_moderator(moderator)
        messages = await self.message_gateway.get_pending(skip, limit)
        return [schemas.Message.model_validate(message) for message in messages]

    async def approval_stats(self, moderator: schemas.User) -> schemas.ApprovalStats:
        self._require_moderator(moderator)
        counts = await self.message_gateway.count_by_state()
        by_sender = await self.message_gateway.count_pending_by_sender()
        return schemas.ApprovalStats(
            total_pending=counts.get(ApprovalState.PENDING.value, 0),
            total_approved=counts.get(ApprovalState.APPROVED.value, 0),
            total_rejected=counts.get(ApprovalState.REJECTED.value, 0),
            pending_by_sender=[
                schemas.PendingBySender(sender_id=sender_id, pending_count=count)
                for sender_id, count in by_sender.items()
            ],
        )

    async def unread_count(self, thread_id: int, user: schemas.User) -> schemas.UnreadCount:
        await self._get_thread(thread_id)
        await self._require_participant(thread_id, user.id)
        count = await self.message_gateway.count_unread(user.id, thread_id)
        return schemas.UnreadCount(thread_id=thread_id, unread_count=count)

    async def total_unread_count(self, user: schemas.User) -> schemas.UnreadCount:
        count = await self.message_gateway.count_unread(user.id)
        return schemas.UnreadCount(unread_count=count)

    async def offline_messages(
        self, user: schemas.User, last_check_time: datetime
    ) -> schemas.OfflineMessages:
        """Messages the user missed since ``last_check_time``.

        The catch-up for clients that were offline or missed a push: everything
        from others that became visible in the user's threads since then,
        oldest first. Nothing is marked read.
        """
        checked_at = utcnow()
        since = last_check_time
        if since.tzinfo is not None:
            since = since.astimezone(UTC).replace(tzinfo=None)
        messages = await self.message_gateway.get_approved_since(user.id, since)
        results = [schemas.Message.model_validate(message) for message in messages]
        return schemas.OfflineMessages(
            messages=results, count=len(results), last_check_time=checked_at
        )
