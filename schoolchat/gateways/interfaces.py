# schoolchat/gateways/interfaces.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from schoolchat.domain.entities import ApprovalState, MergeOutcome
from schoolchat.infrastructure.uow import UoWModel


class IUserGateway(ABC):
    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[UoWModel]:
        pass

    @abstractmethod
    async def get_users(self, user_ids: List[int]) -> List[UoWModel]:
        pass

    @abstractmethod
    async def get_roles(self, user_ids: List[int]) -> dict[int, str]:
        pass


class IThreadGateway(ABC):
    @abstractmethod
    async def get_thread(self, thread_id: int) -> Optional[UoWModel]:
        pass

    @abstractmethod
    async def get_participant(
        self, thread_id: int, user_id: int
    ) -> Optional[UoWModel]:
        pass

    @abstractmethod
    async def get_participants(self, thread_id: int) -> List[UoWModel]:
        pass

    @abstractmethod
    async def get_participant_ids(self, thread_id: int) -> List[int]:
        pass

    @abstractmethod
    async def find_threads_by_participants(
        self, kind: str, participant_ids: List[int]
    ) -> List[UoWModel]:
        pass

    @abstractmethod
    async def get_participant_sets(self, kind: str) -> dict[int, List[int]]:
        pass

    @abstractmethod
    async def create_thread(
        self,
        kind: str,
        title: Optional[str],
        created_by: int,
        participant_ids: List[int],
        creator_is_admin: bool,
    ) -> UoWModel:
        pass

    @abstractmethod
    async def add_participants(self, thread_id: int, user_ids: List[int]) -> List[int]:
        pass

    @abstractmethod
    async def get_user_threads(
        self, user_id: int, skip: int = 0, limit: int = 50
    ) -> List[UoWModel]:
        pass

    @abstractmethod
    async def touch(self, thread_id: int, at: datetime) -> None:
        pass

    @abstractmethod
    async def advance_last_read(
        self, thread_id: int, user_id: int, at: datetime
    ) -> None:
        pass

    @abstractmethod
    async def merge_thread(self, primary_id: int, duplicate_id: int) -> MergeOutcome:
        pass

    @abstractmethod
    async def count_active(self, kind: str) -> int:
        pass


class IMessageGateway(ABC):
    @abstractmethod
    async def get_message(self, message_id: int) -> Optional[UoWModel]:
        pass

    @abstractmethod
    async def get_visible(
        self,
        thread_id: int,
        viewer_id: int,
        include_unapproved: bool,
        skip: int = 0,
        limit: int = 50,
    ) -> List[UoWModel]:
        pass

    @abstractmethod
    async def create_message(
        self,
        thread_id: int,
        sender_id: int,
        content: str,
        message_type: str,
        approval_state: ApprovalState,
    ) -> UoWModel:
        pass

    @abstractmethod
    async def update_content(self, message: UoWModel, content: str) -> UoWModel:
        pass

    @abstractmethod
    async def delete_message(self, message: UoWModel) -> None:
        pass

    @abstractmethod
    async def transition(
        self,
        message_id: int,
        to_state: ApprovalState,
        moderator_id: int,
        reason: Optional[str] = None,
    ) -> bool:
        pass

    @abstractmethod
    async def get_pending(self, skip: int = 0, limit: int = 50) -> List[UoWModel]:
        pass

    @abstractmethod
    async def count_by_state(self) -> dict[str, int]:
        pass

    @abstractmethod
    async def count_pending_by_sender(self) -> dict[int, int]:
        pass

    @abstractmethod
    async def record_read(self, message_id: int, user_id: int, at: datetime) -> bool:
        pass

    @abstractmethod
    async def get_unread(self, thread_id: int, user_id: int) -> List[UoWModel]:
        pass

    @abstractmethod
    async def count_unread(self, user_id: int, thread_id: Optional[int] = None) -> int:
        pass

    @abstractmethod
    async def get_read_receipts(self, message_id: int) -> list:
        pass

    @abstractmethod
    async def get_approved_since(
        self, user_id: int, since: datetime, limit: int = 200
    ) -> List[UoWModel]:
        pass


class IDeviceTokenGateway(ABC):
    @abstractmethod
    async def get_active_tokens(self, user_id: int) -> List[UoWModel]:
        pass

    @abstractmethod
    async def register(self, user_id: int, token: str, platform: str) -> UoWModel:
        pass

    @abstractmethod
    async def unregister(self, user_id: int, token: str) -> bool:
        pass

    @abstractmethod
    async def deactivate(self, token: str) -> None:
        pass

    @abstractmethod
    async def mark_used(self, token: str) -> None:
        pass

    @abstractmethod
    async def get_by_token(self, token: str) -> Optional[UoWModel]:
        pass

    @abstractmethod
    async def get_user_tokens(self, user_id: int) -> List[UoWModel]:
        pass

    @abstractmethod
    async def add_topic(self, device_id: int, topic: str) -> None:
        pass

    @abstractmethod
    async def remove_topic(self, device_id: int, topic: str) -> bool:
        pass

    @abstractmethod
    async def get_topics(self, device_ids: List[int]) -> dict[int, List[str]]:
        pass

    @abstractmethod
    async def clear_topics(self, device_id: int) -> List[str]:
        pass
