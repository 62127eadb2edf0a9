# schoolchat/tests/unit/test_thread_gateway.py
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from schoolchat.domain.entities import ParticipantRole, ThreadStatus, utcnow
from schoolchat.gateways.thread_gateway import ThreadGateway, participant_key
from schoolchat.infrastructure import models


@pytest.fixture
def thread_gateway(db_session, uow):
    return ThreadGateway(db_session, uow)


def test_participant_key_ignores_order_and_repeats():
    assert participant_key([3, 1, 2]) == participant_key([1, 2, 3, 3])
    assert participant_key([1, 2]) != participant_key([1, 2, 3])


async def test_create_direct_thread(thread_gateway, uow, teacher, parent):
    thread = await thread_gateway.create_thread(
        "direct", None, teacher.id, [parent.id, teacher.id], creator_is_admin=True
    )
    await uow.commit()

    assert thread.participant_key == participant_key([teacher.id, parent.id])
    participants = await thread_gateway.get_participants(thread.id)
    roles = {p.user_id: p.role for p in participants}
    assert roles == {
        teacher.id: ParticipantRole.ADMIN.value,
        parent.id: ParticipantRole.MEMBER.value,
    }


async def test_group_threads_have_no_key(thread_gateway, uow, teacher, parent):
    first = await thread_gateway.create_thread("group", "5B", teacher.id, [teacher.id, parent.id])
    second = await thread_gateway.create_thread("group", "5B", teacher.id, [teacher.id, parent.id])
    await uow.commit()

    assert first.participant_key is None
    assert first.id != second.id


async def test_second_active_direct_thread_is_refused(
    thread_gateway, db_session, uow, teacher, parent
):
    await thread_gateway.create_thread("direct", None, teacher.id, [teacher.id, parent.id])
    await uow.commit()

    with pytest.raises(IntegrityError):
        await thread_gateway.create_thread(
            "direct", None, parent.id, [parent.id, teacher.id]
        )
    await uow.rollback()


async def test_find_matches_exact_set_only(thread_gateway, uow, teacher, parent, student):
    pair = await thread_gateway.create_thread("direct", None, teacher.id, [teacher.id, parent.id])
    await thread_gateway.create_thread(
        "direct", None, teacher.id, [teacher.id, parent.id, student.id]
    )
    await thread_gateway.create_thread("group", None, teacher.id, [teacher.id, parent.id])
    await uow.commit()

    found = await thread_gateway.find_threads_by_participants(
        "direct", [parent.id, teacher.id]
    )

    assert [thread.id for thread in found] == [pair.id]
    assert await thread_gateway.find_threads_by_participants("direct", []) == []


async def test_find_orders_most_recent_first(
    thread_gateway, legacy_thread, teacher, parent
):
    older = await legacy_thread([teacher, parent], age_minutes=30)
    newer = await legacy_thread([teacher, parent], age_minutes=5)

    found = await thread_gateway.find_threads_by_participants(
        "direct", [teacher.id, parent.id]
    )

    assert [thread.id for thread in found] == [newer.id, older.id]
    sets = await thread_gateway.get_participant_sets("direct")
    assert sets[older.id] == sorted([teacher.id, parent.id])


async def test_merge_moves_messages_and_retires_duplicate(
    thread_gateway, legacy_thread, db_session, uow, teacher, parent
):
    primary = await legacy_thread([teacher, parent], age_minutes=10, messages=1)
    duplicate = await legacy_thread(
        [teacher, parent], title="Homework", age_minutes=1, messages=2
    )

    outcome = await thread_gateway.merge_thread(primary.id, duplicate.id)
    await uow.commit()

    assert outcome.status == "merged"
    assert outcome.moved_messages == 2
    assert outcome.moved_participants == 0

    result = await db_session.execute(
        select(models.Message.thread_id).filter(models.Message.thread_id == primary.id)
    )
    assert len(result.all()) == 3

    merged = await thread_gateway.get_thread(duplicate.id)
    assert merged.status == ThreadStatus.MERGED.value
    assert merged.title.startswith("MERGED_Homework_")
    assert merged.participant_key is None

    kept = await thread_gateway.get_thread(primary.id)
    assert kept.title == "Homework"
    assert kept.updated_at == duplicate.updated_at


async def test_merge_moves_missing_participants(
    thread_gateway, legacy_thread, uow, teacher, parent, student
):
    primary = await legacy_thread([teacher, parent], kind="group")
    duplicate = await legacy_thread([teacher, student], kind="group")

    outcome = await thread_gateway.merge_thread(primary.id, duplicate.id)
    await uow.commit()

    assert outcome.moved_participants == 1
    assert await thread_gateway.get_participant_ids(primary.id) == sorted(
        [teacher.id, parent.id, student.id]
    )


async def test_merge_twice_reports_already_merged(
    thread_gateway, legacy_thread, uow, teacher, parent
):
    primary = await legacy_thread([teacher, parent], age_minutes=10)
    duplicate = await legacy_thread([teacher, parent])

    await thread_gateway.merge_thread(primary.id, duplicate.id)
    await uow.commit()
    outcome = await thread_gateway.merge_thread(primary.id, duplicate.id)

    assert outcome.status == "already_merged"
    assert await thread_gateway.count_active("direct") == 1


async def test_touch_never_moves_backwards(thread_gateway, legacy_thread, db_session, teacher, parent):
    thread = await legacy_thread([teacher, parent])
    original = thread.updated_at

    await thread_gateway.touch(thread.id, original - timedelta(hours=1))
    await thread_gateway.touch(thread.id, original + timedelta(minutes=1))
    await db_session.commit()

    refreshed = await db_session.get(models.Thread, thread.id, populate_existing=True)
    assert refreshed.updated_at == original + timedelta(minutes=1)


async def test_advance_last_read_is_monotonic(
    thread_gateway, legacy_thread, db_session, teacher, parent
):
    thread = await legacy_thread([teacher, parent])
    now = utcnow()

    await thread_gateway.advance_last_read(thread.id, parent.id, now)
    await thread_gateway.advance_last_read(thread.id, parent.id, now - timedelta(days=1))
    await db_session.commit()

    participant = await thread_gateway.get_participant(thread.id, parent.id)
    await db_session.refresh(participant._model)
    assert participant.last_read_at == now


async def test_add_participants_skips_members(thread_gateway, uow, teacher, parent, student):
    thread = await thread_gateway.create_thread(
        "group", "5B", teacher.id, [teacher.id, parent.id]
    )

    added = await thread_gateway.add_participants(thread.id, [parent.id, student.id])
    await uow.commit()

    assert added == [student.id]
    user_threads = await thread_gateway.get_user_threads(student.id)
    assert [t.id for t in user_threads] == [thread.id]
