# schoolchat/interactors/thread_interactor.py
import logging
from collections import defaultdict

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from schoolchat.domain.entities import (
    MergeOutcome,
    MergeReport,
    ParticipantRole,
    ThreadKind,
    ThreadStatus,
    utcnow,
)
from schoolchat.domain.events import ParticipantAdded, ThreadCreated
from schoolchat.domain.exceptions import (
    ChatValidationError,
    Forbidden,
    InvalidParticipantCount,
    NotAModerator,
    NotAParticipant,
    ThreadNotActive,
    ThreadNotFound,
    UserNotFound,
)
from schoolchat.domain.policy import ModerationPolicy
from schoolchat.gateways.interfaces import IMessageGateway, IThreadGateway, IUserGateway
from schoolchat.infrastructure import schemas
from schoolchat.infrastructure.event_dispatcher import EventDispatcher
from schoolchat.infrastructure.uow import UnitOfWork


class ThreadInteractor:
    """Keeps one canonical active thread per participant set.

    Duplicates left behind by concurrent creation are merged into the most
    recently updated thread whenever a lookup runs into them.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        thread_gateway: IThreadGateway,
        user_gateway: IUserGateway,
        message_gateway: IMessageGateway,
        policy: ModerationPolicy,
        event_dispatcher: EventDispatcher,
        logger: logging.Logger,
    ):
        self.uow = uow
        self.thread_gateway = thread_gateway
        self.user_gateway = user_gateway
        self.message_gateway = message_gateway
        self.policy = policy
        self.event_dispatcher = event_dispatcher
        self.logger = logger

    def _candidate_set(
        self, participant_ids: list[int], kind: ThreadKind, requester_id: int
    ) -> list[int]:
        ids = sorted(set(participant_ids) | {requester_id})
        if kind == ThreadKind.DIRECT and len(ids) != 2:
            raise InvalidParticipantCount(
                "Direct threads need exactly one other participant"
            )
        if kind == ThreadKind.GROUP and len(ids) < 2:
            raise InvalidParticipantCount(
                "Group threads need at least one other participant"
            )
        return ids

    async def _ensure_users(self, user_ids: list[int]) -> None:
        users = await self.user_gateway.get_users(user_ids)
        missing = sorted(set(user_ids) - {user.id for user in users})
        if missing:
            raise UserNotFound(f"Users not found: {', '.join(map(str, missing))}")

    async def merge_duplicates(
        self, kind: ThreadKind, participant_ids: list[int]
    ) -> MergeReport | None:
        """Merge every active thread with this participant set into the newest.

        Each duplicate is merged in its own transaction, so one failure leaves
        the others merged. Returns None when there is nothing to merge.
        """
        threads = await self.thread_gateway.find_threads_by_participants(
            kind.value, participant_ids
        )
        if len(threads) < 2:
            return None
        primary_id = threads[0].id
        duplicate_ids = [thread.id for thread in threads[1:]]
        report = MergeReport(primary_id=primary_id, participant_ids=participant_ids)
        self.logger.info(
            f"Found {len(threads)} {kind.value} threads for participants "
            f"{participant_ids}, merging into {primary_id}"
        )

        for duplicate_id in duplicate_ids:
            try:
                outcome = await self.thread_gateway.merge_thread(primary_id, duplicate_id)
                await self.uow.commit()
            except SQLAlchemyError as e:
                await self.uow.rollback()
                self.logger.exception(
                    f"Merging thread {duplicate_id} into {primary_id} failed"
                )
                outcome = MergeOutcome(
                    duplicate_id=duplicate_id, status="failed", error=str(e)
                )
            else:
                self.logger.info(
                    f"Thread {duplicate_id} -> {primary_id}: {outcome.status}, "
                    f"{outcome.moved_messages} messages, "
                    f"{outcome.moved_participants} participants moved"
                )
            report.outcomes.append(outcome)
        return report

    async def _find_canonical(self, kind: ThreadKind, participant_ids: list[int]):
        threads = await self.thread_gateway.find_threads_by_participants(
            kind.value, participant_ids
        )
        if not threads:
            return None
        if len(threads) > 1:
            await self.merge_duplicates(kind, participant_ids)
            return await self.thread_gateway.get_thread(threads[0].id)
        return threads[0]

    async def find_existing_thread(
        self, participant_ids: list[int], kind: ThreadKind, requester: schemas.User
    ) -> schemas.Thread | None:
        ids = self._candidate_set(participant_ids, kind, requester.id)
        thread = await self._find_canonical(kind, ids)
        return schemas.Thread.model_validate(thread) if thread else None

    async def resolve_or_create_thread(
        self,
        participant_ids: list[int],
        kind: ThreadKind,
        requester: schemas.User,
        title: str | None = None,
        creator_is_admin: bool = False,
    ) -> tuple[schemas.Thread, bool]:
        """Return the canonical thread for the participant set, creating it if needed.

        The second element tells whether this call created the thread.
        """
        ids = self._candidate_set(participant_ids, kind, requester.id)
        await self._ensure_users(ids)

        thread = await self._find_canonical(kind, ids)
        if thread is not None:
            return schemas.Thread.model_validate(thread), False

        try:
            thread = await self.thread_gateway.create_thread(
                kind.value, title, requester.id, ids, creator_is_admin
            )
            await self.uow.commit()
        except IntegrityError:
            # another request created the same direct thread first
            await self.uow.rollback()
            self.logger.info(
                f"Concurrent creation of {kind.value} thread for {ids}, "
                f"retrying lookup"
            )
            thread = await self._find_canonical(kind, ids)
            if thread is None:
                raise
            return schemas.Thread.model_validate(thread), False

        result = schemas.Thread.model_validate(thread)
        self.logger.info(f"Created {kind.value} thread {result.id} for {ids}")
        await self.event_dispatcher.dispatch(
            ThreadCreated(
                actor_id=requester.id,
                recipient_ids=ids,
                thread_id=result.id,
                kind=result.kind.value,
                title=result.title,
                created_by=requester.id,
                participant_ids=ids,
            )
        )
        return result, True

    async def resolve_all_duplicates(
        self, kind: ThreadKind, actor: schemas.User
    ) -> schemas.DuplicateResolution:
        if not self.policy.is_moderator(actor.role):
            raise NotAModerator("Only moderators can resolve duplicate threads")

        total_before = await self.thread_gateway.count_active(kind.value)
        groups: dict[tuple[int, ...], list[int]] = defaultdict(list)
        for thread_id, ids in (
            await self.thread_gateway.get_participant_sets(kind.value)
        ).items():
            groups[tuple(ids)].append(thread_id)
        duplicate_groups = [list(key) for key, threads in groups.items() if len(threads) > 1]

        reports = []
        for participant_ids in duplicate_groups:
            report = await self.merge_duplicates(kind, participant_ids)
            if report is not None:
                reports.append(report)
        total_after = await self.thread_gateway.count_active(kind.value)

        self.logger.info(
            f"Duplicate sweep over {kind.value} threads: {len(duplicate_groups)} "
            f"groups, {total_before} -> {total_after} active threads"
        )
        return schemas.DuplicateResolution(
            thread_type=kind,
            total_threads_before=total_before,
            total_threads_after=total_after,
            duplicate_groups_found=len(duplicate_groups),
            resolved_groups=sum(1 for report in reports if not report.failed),
            reports=[schemas.MergeReport.model_validate(report) for report in reports],
        )

    async def _summarize(self, thread, viewer: schemas.User) -> schemas.ThreadSummary:
        include_unapproved = self.policy.is_moderator(viewer.role)
        last = await self.message_gateway.get_visible(
            thread.id, viewer.id, include_unapproved, limit=1
        )
        summary = schemas.ThreadSummary.model_validate(thread)
        summary.participant_ids = await self.thread_gateway.get_participant_ids(thread.id)
        summary.unread_count = await self.message_gateway.count_unread(
            viewer.id, thread.id
        )
        summary.last_message = schemas.Message.model_validate(last[0]) if last else None
        return summary

    async def list_threads(
        self, user: schemas.User, skip: int = 0, limit: int = 50
    ) -> list[schemas.ThreadSummary]:
        threads = await self.thread_gateway.get_user_threads(user.id, skip, limit)
        return [await self._summarize(thread, user) for thread in threads]

    async def get_thread(
        self, thread_id: int, viewer: schemas.User
    ) -> schemas.ThreadDetail:
        thread = await self.thread_gateway.get_thread(thread_id)
        if thread is None:
            raise ThreadNotFound(f"Thread {thread_id} not found")
        participants = await self.thread_gateway.get_participants(thread_id)
        if not self.policy.is_moderator(viewer.role) and viewer.id not in {
            p.user_id for p in participants
        }:
            raise NotAParticipant(f"User {viewer.id} is not in thread {thread_id}")
        detail = schemas.ThreadDetail.model_validate(thread)
        detail.participants = [schemas.Participant.model_validate(p) for p in participants]
        return detail

    async def add_participants(
        self, thread_id: int, user_ids: list[int], actor: schemas.User
    ) -> schemas.ThreadDetail:
        thread = await self.thread_gateway.get_thread(thread_id)
        if thread is None:
            raise ThreadNotFound(f"Thread {thread_id} not found")
        if thread.kind != ThreadKind.GROUP.value:
            raise ChatValidationError("Participants can only be added to group threads")
        if thread.status != ThreadStatus.ACTIVE.value:
            raise ThreadNotActive(f"Thread {thread_id} is {thread.status}")

        membership = await self.thread_gateway.get_participant(thread_id, actor.id)
        if membership is None:
            raise NotAParticipant(f"User {actor.id} is not in thread {thread_id}")
        if membership.role != ParticipantRole.ADMIN.value:
            raise Forbidden("Only thread admins can add participants")

        await self._ensure_users(sorted(set(user_ids)))
        added = await self.thread_gateway.add_participants(thread_id, user_ids)
        if added:
            await self.thread_gateway.touch(thread_id, utcnow())
        await self.uow.commit()

        detail = await self.get_thread(thread_id, actor)
        if added:
            self.logger.info(f"Added {added} to thread {thread_id}")
            await self.event_dispatcher.dispatch(
                ParticipantAdded(
                    actor_id=actor.id,
                    recipient_ids=[p.user_id for p in detail.participants],
                    thread_id=thread_id,
                    title=detail.title,
                    added_user_ids=added,
                )
            )
        return detail
