# schoolchat/infrastructure/event_handlers.py
import json
from typing import Any

from schoolchat.domain.events import (
    Event,
    MessageApproved,
    MessageDeleted,
    MessageRead,
    MessageUpdated,
    ParticipantAdded,
    event_type_name,
)


class EventHandlers:
    """Relays visible chat events onto Redis for other application instances.

    Only approved content ever reaches a ``thread:<id>`` channel; pending and
    rejected messages stay between the sender and the moderators.
    """

    def __init__(self, redis_client):
        self.redis_client = redis_client

    async def publish_event(
        self, channel_name: str, event: Event, additional_data: dict[str, Any] | None = None
    ):
        event_data = event.model_dump(exclude={"actor_id", "recipient_ids"})
        if additional_data:
            event_data.update(additional_data)
        message_json = json.dumps(
            {"type": event_type_name(event), "data": event_data}, default=str
        )
        await self.redis_client.publish(channel_name, message_json)

    async def publish_message_approved(self, event: MessageApproved):
        await self.publish_event(f"thread:{event.thread_id}", event)

    async def publish_message_updated(self, event: MessageUpdated):
        if event.approval_state != "approved":
            return
        await self.publish_event(f"thread:{event.thread_id}", event)

    async def publish_message_deleted(self, event: MessageDeleted):
        await self.publish_event(f"thread:{event.thread_id}", event)

    async def publish_participant_added(self, event: ParticipantAdded):
        await self.publish_event(f"thread:{event.thread_id}", event)

    async def publish_message_read(self, event: MessageRead):
        # receipts only concern the message's sender
        for user_id in event.recipient_ids:
            await self.publish_event(f"user:{user_id}", event)

    def register(self, dispatcher) -> None:
        dispatcher.register("MessageApproved", self.publish_message_approved)
        dispatcher.register("MessageUpdated", self.publish_message_updated)
        dispatcher.register("MessageDeleted", self.publish_message_deleted)
        dispatcher.register("ParticipantAdded", self.publish_participant_added)
        dispatcher.register("MessageRead", self.publish_message_read)
