# schoolchat/gateways/thread_gateway.py
import hashlib
from collections import defaultdict
from datetime import datetime

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from schoolchat.domain.entities import (
    MergeOutcome,
    ParticipantRole,
    ThreadKind,
    ThreadStatus,
    utcnow,
)
from schoolchat.gateways.interfaces import IThreadGateway
from schoolchat.infrastructure import models
from schoolchat.infrastructure.data_mappers import ParticipantMapper, ThreadMapper
from schoolchat.infrastructure.uow import UnitOfWork, UoWModel


def participant_key(participant_ids) -> str:
    """Stable key for a participant set, independent of order and repeats."""
    normalized = ",".join(str(user_id) for user_id in sorted(set(participant_ids)))
    return hashlib.sha256(normalized.encode()).hexdigest()


class ThreadGateway(IThreadGateway):
    def __init__(self, session: AsyncSession, uow: UnitOfWork):
        self.session = session
        self.uow = uow
        uow.mappers[models.Thread] = ThreadMapper(session)
        uow.mappers[models.Participant] = ParticipantMapper(session)

    async def get_thread(self, thread_id: int) -> UoWModel | None:
        stmt = select(models.Thread).filter(models.Thread.id == thread_id)
        result = await self.session.execute(stmt)
        thread = result.scalar_one_or_none()
        return UoWModel(thread, self.uow) if thread else None

    async def get_participant(self, thread_id: int, user_id: int) -> UoWModel | None:
        stmt = select(models.Participant).filter(
            models.Participant.thread_id == thread_id,
            models.Participant.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        participant = result.scalar_one_or_none()
        return UoWModel(participant, self.uow) if participant else None

    async def get_participants(self, thread_id: int) -> list[UoWModel]:
        stmt = (
            select(models.Participant)
            .filter(models.Participant.thread_id == thread_id)
            .order_by(models.Participant.joined_at, models.Participant.id)
        )
        result = await self.session.execute(stmt)
        return [UoWModel(p, self.uow) for p in result.scalars().all()]

    async def get_participant_ids(self, thread_id: int) -> list[int]:
        stmt = (
            select(models.Participant.user_id)
            .filter(models.Participant.thread_id == thread_id)
            .order_by(models.Participant.user_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_threads_by_participants(
        self, kind: str, participant_ids: list[int]
    ) -> list[UoWModel]:
        """Active threads of ``kind`` whose participant set equals the given one.

        Ordered with the canonical candidate (most recently updated) first.
        """
        ids = sorted(set(participant_ids))
        if not ids:
            return []
        matched = func.sum(
            case((models.Participant.user_id.in_(ids), 1), else_=0)
        )
        stmt = (
            select(models.Thread)
            .join(models.Participant, models.Participant.thread_id == models.Thread.id)
            .filter(
                models.Thread.kind == kind,
                models.Thread.status == ThreadStatus.ACTIVE.value,
            )
            .group_by(models.Thread.id)
            .having(func.count(models.Participant.id) == len(ids), matched == len(ids))
            .order_by(models.Thread.updated_at.desc(), models.Thread.id.desc())
        )
        result = await self.session.execute(stmt)
        return [UoWModel(thread, self.uow) for thread in result.scalars().all()]

    async def get_participant_sets(self, kind: str) -> dict[int, list[int]]:
        stmt = (
            select(models.Participant.thread_id, models.Participant.user_id)
            .join(models.Thread, models.Thread.id == models.Participant.thread_id)
            .filter(
                models.Thread.kind == kind,
                models.Thread.status == ThreadStatus.ACTIVE.value,
            )
        )
        result = await self.session.execute(stmt)
        sets: dict[int, list[int]] = defaultdict(list)
        for row in result:
            sets[row.thread_id].append(row.user_id)
        return {thread_id: sorted(ids) for thread_id, ids in sets.items()}

    async def create_thread(
        self,
        kind: str,
        title: str | None,
        created_by: int,
        participant_ids: list[int],
        creator_is_admin: bool = False,
    ) -> UoWModel:
        ids = sorted(set(participant_ids))
        now = utcnow()
        thread = models.Thread(
            kind=kind,
            title=title,
            status=ThreadStatus.ACTIVE.value,
            participant_key=participant_key(ids)
            if kind == ThreadKind.DIRECT.value
            else None,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        uow_thread = self.uow.register_new(thread)
        # the thread id is needed for the participant rows
        await self.uow.flush()

        for user_id in ids:
            role = (
                ParticipantRole.ADMIN.value
                if creator_is_admin and user_id == created_by
                else ParticipantRole.MEMBER.value
            )
            self.uow.register_new(
                models.Participant(
                    thread_id=thread.id, user_id=user_id, role=role, joined_at=now
                )
            )
        await self.uow.flush()
        return uow_thread

    async def add_participants(self, thread_id: int, user_ids: list[int]) -> list[int]:
        existing = set(await self.get_participant_ids(thread_id))
        added = [user_id for user_id in sorted(set(user_ids)) if user_id not in existing]
        now = utcnow()
        for user_id in added:
            self.uow.register_new(
                models.Participant(
                    thread_id=thread_id,
                    user_id=user_id,
                    role=ParticipantRole.MEMBER.value,
                    joined_at=now,
                )
            )
        await self.uow.flush()
        return added

    async def get_user_threads(
        self, user_id: int, skip: int = 0, limit: int = 50
    ) -> list[UoWModel]:
        stmt = (
            select(models.Thread)
            .join(models.Participant, models.Participant.thread_id == models.Thread.id)
            .filter(
                models.Participant.user_id == user_id,
                models.Thread.status == ThreadStatus.ACTIVE.value,
            )
            .order_by(models.Thread.updated_at.desc(), models.Thread.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [UoWModel(thread, self.uow) for thread in result.scalars().all()]

    async def touch(self, thread_id: int, at: datetime) -> None:
        # never moves updated_at backwards
        stmt = (
            update(models.Thread)
            .where(models.Thread.id == thread_id, models.Thread.updated_at < at)
            .values(updated_at=at)
        )
        await self.session.execute(stmt)

    async def advance_last_read(self, thread_id: int, user_id: int, at: datetime) -> None:
        stmt = (
            update(models.Participant)
            .where(
                models.Participant.thread_id == thread_id,
                models.Participant.user_id == user_id,
                or_(
                    models.Participant.last_read_at.is_(None),
                    models.Participant.last_read_at < at,
                ),
            )
            .values(last_read_at=at)
        )
        await self.session.execute(stmt)

    async def merge_thread(self, primary_id: int, duplicate_id: int) -> MergeOutcome:
        """Fold one duplicate into the primary within the current transaction.

        The caller commits or rolls back. A duplicate that another request has
        already merged is reported as ``already_merged`` and left untouched.
        """
        duplicate = await self.session.get(
            models.Thread, duplicate_id, populate_existing=True
        )
        if duplicate is None or duplicate.status == ThreadStatus.MERGED.value:
            return MergeOutcome(duplicate_id=duplicate_id, status="already_merged")
        primary = await self.session.get(models.Thread, primary_id)

        moved_messages = await self.session.execute(
            update(models.Message)
            .where(models.Message.thread_id == duplicate_id)
            .values(thread_id=primary_id)
        )

        primary_members = await self.get_participant_ids(primary_id)
        moved_participants = await self.session.execute(
            update(models.Participant)
            .where(
                models.Participant.thread_id == duplicate_id,
                models.Participant.user_id.not_in(primary_members),
            )
            .values(thread_id=primary_id)
        )

        uow_primary = UoWModel(primary, self.uow)
        if duplicate.updated_at > primary.updated_at:
            uow_primary.updated_at = duplicate.updated_at
        if not primary.title and duplicate.title:
            uow_primary.title = duplicate.title

        uow_duplicate = UoWModel(duplicate, self.uow)
        uow_duplicate.status = ThreadStatus.MERGED.value
        uow_duplicate.title = (
            f"MERGED_{duplicate.title or ''}_{utcnow().strftime('%Y%m%d%H%M%S')}"
        )
        uow_duplicate.participant_key = None
        await self.uow.flush()

        return MergeOutcome(
            duplicate_id=duplicate_id,
            status="merged",
            moved_messages=moved_messages.rowcount,
            moved_participants=moved_participants.rowcount,
        )

    async def count_active(self, kind: str) -> int:
        stmt = select(func.count(models.Thread.id)).filter(
            models.Thread.kind == kind,
            models.Thread.status == ThreadStatus.ACTIVE.value,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()
