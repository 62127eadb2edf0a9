# schoolchat/infrastructure/fanout.py
import logging
from collections import deque
from collections.abc import Iterable

from sqlalchemy.exc import SQLAlchemyError

from schoolchat.domain.entities import DeliveryAttempt, DeliveryChannel, DeliveryReport
from schoolchat.domain.events import (
    Event,
    MessageApproved,
    MessageDeleted,
    MessageRead,
    MessageRejected,
    MessageUpdated,
    NotificationPublished,
    ParticipantAdded,
    ThreadCreated,
    event_type_name,
)
from schoolchat.gateways.device_token_gateway import DeviceTokenGateway
from schoolchat.infrastructure.connection_registry import ConnectionRegistry
from schoolchat.infrastructure.database import Database
from schoolchat.infrastructure.push_provider import PushNotification, PushProvider
from schoolchat.infrastructure.uow import UnitOfWork

PUSH_ELIGIBLE = (MessageApproved, ThreadCreated, ParticipantAdded, NotificationPublished)
PREVIEW_LENGTH = 100


def build_push_notification(event: Event) -> PushNotification:
    if isinstance(event, MessageApproved):
        title = event.sender.full_name if event.sender else "New message"
        body = event.content
        if len(body) > PREVIEW_LENGTH:
            body = body[: PREVIEW_LENGTH - 3] + "..."
        data = {
            "type": "chat_message",
            "thread_id": event.thread_id,
            "message_id": event.message_id,
        }
        return PushNotification(title=title, body=body, data=data)
    if isinstance(event, ThreadCreated):
        return PushNotification(
            title="New conversation",
            body=event.title or "Someone started a conversation with you",
            data={"type": "chat_thread", "thread_id": event.thread_id},
        )
    if isinstance(event, ParticipantAdded):
        return PushNotification(
            title="New conversation",
            body=f"You were added to {event.title or 'a conversation'}",
            data={"type": "chat_thread", "thread_id": event.thread_id},
        )
    if isinstance(event, NotificationPublished):
        data = {**event.data, "type": event.kind}
        return PushNotification(title=event.title, body=event.body, data=data)
    raise ValueError(f"{event.__class__.__name__} is not delivered by push")


class DeliveryFanout:
    """Delivers events to the users they concern.

    A user with a live connection gets the realtime frame and nothing else; an
    offline user gets one push per active device for push-eligible events.
    Nothing here raises into the caller: failures end up in the report and the
    log.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        push_provider: PushProvider,
        database: Database,
        logger: logging.Logger,
    ):
        self.registry = registry
        self.push_provider = push_provider
        self.database = database
        self.logger = logger
        self.reports: deque[DeliveryReport] = deque(maxlen=200)

    async def deliver(
        self,
        event: Event,
        thread_id: int | None,
        participant_ids: Iterable[int],
        actor_id: int | None,
        push_user_ids: Iterable[int] | None = None,
    ) -> DeliveryReport:
        report = DeliveryReport(event_type=event_type_name(event))
        payload = {
            "type": report.event_type,
            "data": event.model_dump(mode="json", exclude={"actor_id", "recipient_ids"}),
        }
        push_allowed = isinstance(event, PUSH_ELIGIBLE)
        push_targets = set(push_user_ids) if push_user_ids is not None else None
        notification = build_push_notification(event) if push_allowed else None

        for user_id in sorted(set(participant_ids) - {actor_id}):
            if self.registry.is_connected(user_id):
                sent = await self.registry.send_to_user(user_id, payload)
                report.attempts.append(
                    DeliveryAttempt(
                        user_id=user_id,
                        channel=DeliveryChannel.REALTIME,
                        target=f"user:{user_id}",
                        success=sent > 0,
                        error=None if sent else "all_connections_failed",
                    )
                )
                if sent:
                    continue
            if not push_allowed or (
                push_targets is not None and user_id not in push_targets
            ):
                continue
            try:
                await self._push_to_user(user_id, notification, report)
            except Exception as e:
                self.logger.exception(f"Push delivery to user {user_id} failed")
                report.attempts.append(
                    DeliveryAttempt(
                        user_id=user_id,
                        channel=DeliveryChannel.PUSH,
                        target=f"user:{user_id}",
                        success=False,
                        error=f"{e.__class__.__name__}: {e}",
                    )
                )

        self._log_report(report, thread_id)
        self.reports.append(report)
        return report

    async def _push_to_user(
        self, user_id: int, notification: PushNotification, report: DeliveryReport
    ) -> None:
        async with self.database.session() as session:
            gateway = DeviceTokenGateway(session, UnitOfWork(session))
            devices = await gateway.get_active_tokens(user_id)
            if not devices:
                self.logger.info(f"No active devices for user {user_id}, push skipped")
                return
            for device in devices:
                attempt = DeliveryAttempt(
                    user_id=user_id,
                    channel=DeliveryChannel.PUSH,
                    target=device.token,
                    success=False,
                )
                report.attempts.append(attempt)
                try:
                    result = await self.push_provider.send_to_device(
                        device.token, notification
                    )
                except Exception as e:
                    self.logger.exception(f"Push to a device of user {user_id} raised")
                    attempt.error = f"{e.__class__.__name__}: {e}"
                    continue
                attempt.success = result.success
                attempt.error = result.error
                try:
                    if result.unregistered:
                        await gateway.deactivate(device.token)
                        self.logger.info(f"Deactivated stale device token of user {user_id}")
                    elif result.success:
                        await gateway.mark_used(device.token)
                except SQLAlchemyError:
                    self.logger.exception(f"Updating device token of user {user_id} failed")
            await session.commit()

    def _log_report(self, report: DeliveryReport, thread_id: int | None) -> None:
        failures = report.failures
        scope = f" in thread {thread_id}" if thread_id is not None else ""
        self.logger.info(
            f"Delivered {report.event_type}{scope}: "
            f"{len(report.attempts) - len(failures)} ok, {len(failures)} failed"
        )
        for attempt in failures:
            self.logger.warning(
                f"{attempt.channel.value} delivery of {report.event_type} "
                f"to user {attempt.user_id} failed: {attempt.error}"
            )

    async def on_message_approved(self, event: MessageApproved) -> None:
        await self.deliver(event, event.thread_id, event.recipient_ids, event.actor_id)
        # the sender hears about a moderator's decision only while connected
        if event.actor_id is not None and event.actor_id != event.sender_id:
            await self.deliver(
                event, event.thread_id, [event.sender_id], event.actor_id, push_user_ids=[]
            )

    async def on_thread_created(self, event: ThreadCreated) -> None:
        await self.deliver(event, event.thread_id, event.recipient_ids, event.actor_id)

    async def on_participant_added(self, event: ParticipantAdded) -> None:
        await self.deliver(
            event,
            event.thread_id,
            event.recipient_ids,
            event.actor_id,
            push_user_ids=event.added_user_ids,
        )

    async def on_message_rejected(self, event: MessageRejected) -> None:
        await self.deliver(event, event.thread_id, [event.sender_id], event.actor_id)

    async def on_message_read(self, event: MessageRead) -> None:
        await self.deliver(event, event.thread_id, event.recipient_ids, event.actor_id)

    async def _deliver_to_viewers(self, event, thread_id: int) -> None:
        viewers = self.registry.subscribers(thread_id) & set(event.recipient_ids)
        await self.deliver(event, thread_id, viewers, event.actor_id)

    async def on_message_updated(self, event: MessageUpdated) -> None:
        await self._deliver_to_viewers(event, event.thread_id)

    async def on_message_deleted(self, event: MessageDeleted) -> None:
        await self._deliver_to_viewers(event, event.thread_id)

    async def on_notification_published(self, event: NotificationPublished) -> None:
        await self.deliver(event, None, event.recipient_ids, event.actor_id)

    def register(self, dispatcher) -> None:
        handlers = {
            "MessageApproved": self.on_message_approved,
            "ThreadCreated": self.on_thread_created,
            "ParticipantAdded": self.on_participant_added,
            "MessageRejected": self.on_message_rejected,
            "MessageRead": self.on_message_read,
            "MessageUpdated": self.on_message_updated,
            "MessageDeleted": self.on_message_deleted,
            "NotificationPublished": self.on_notification_published,
        }
        for event_type, handler in handlers.items():
            dispatcher.register(event_type, handler)
