# schoolchat/interactors/notification_interactor.py
import logging

from schoolchat.domain.events import NotificationPublished
from schoolchat.domain.exceptions import ChatValidationError, Forbidden
from schoolchat.domain.policy import ModerationPolicy
from schoolchat.gateways.interfaces import IUserGateway
from schoolchat.infrastructure import schemas
from schoolchat.infrastructure.event_dispatcher import EventDispatcher
from schoolchat.infrastructure.push_provider import PushNotification, PushProvider

SCHOOL_TOPIC = "school_announcements"


def topic_for(kind: str, student_id: int | None = None, class_id: int | None = None) -> str | None:
    """Topic a notification of ``kind`` is broadcast on, if any.

    Parent devices subscribe to ``student_<id>`` for each of their children.
    """
    if kind == "attendance":
        if student_id is None:
            raise ChatValidationError("Attendance notifications need a student_id")
        return f"student_{student_id}"
    if kind == "announcement":
        return f"class_{class_id}" if class_id is not None else SCHOOL_TOPIC
    return None


TOPIC_CATEGORIES = {
    "school_wide": "School-wide announcements and events",
    "class_specific": "Class notifications such as homework and class messages",
    "student_specific": "Notifications about one student such as attendance",
}


def topic_category(topic: str) -> str:
    if topic.startswith("student_"):
        return "student_specific"
    if topic.startswith("class_"):
        return "class_specific"
    if topic.startswith("school_"):
        return "school_wide"
    return "other"


class NotificationInteractor:
    """Mirrors non-chat school events onto the chat delivery channels."""

    def __init__(
        self,
        user_gateway: IUserGateway,
        push_provider: PushProvider,
        policy: ModerationPolicy,
        event_dispatcher: EventDispatcher,
        logger: logging.Logger,
    ):
        self.user_gateway = user_gateway
        self.push_provider = push_provider
        self.policy = policy
        self.event_dispatcher = event_dispatcher
        self.logger = logger

    async def publish(
        self, notification: schemas.NotificationCreate, actor: schemas.User
    ) -> schemas.NotificationResult:
        if not self.policy.is_staff(actor.role):
            raise Forbidden("Only staff can publish notifications")

        topic = topic_for(notification.kind, notification.student_id, notification.class_id)
        data = {**notification.data, "type": notification.kind}
        topic_delivered = False
        if topic is not None:
            result = await self.push_provider.send_to_topic(
                topic,
                PushNotification(
                    title=notification.title, body=notification.body, data=data
                ),
            )
            topic_delivered = result.success
            if not result.success:
                self.logger.warning(f"Topic push to {topic} failed: {result.error}")

        users = await self.user_gateway.get_users(notification.user_ids)
        recipient_ids = sorted(user.id for user in users)
        self.logger.info(
            f"Publishing {notification.kind} notification from {actor.id} "
            f"(topic={topic}, {len(recipient_ids)} direct recipients)"
        )
        await self.event_dispatcher.dispatch(
            NotificationPublished(
                actor_id=actor.id,
                recipient_ids=recipient_ids,
                kind=notification.kind,
                title=notification.title,
                body=notification.body,
                topic=topic,
                data=data,
            )
        )
        return schemas.NotificationResult(
            topic=topic, topic_delivered=topic_delivered, recipients=len(recipient_ids)
        )
