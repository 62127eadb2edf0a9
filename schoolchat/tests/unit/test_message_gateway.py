# schoolchat/tests/unit/test_message_gateway.py
from datetime import timedelta

import pytest

from schoolchat.domain.entities import ApprovalState, utcnow
from schoolchat.gateways.message_gateway import MessageGateway
from schoolchat.gateways.thread_gateway import ThreadGateway


@pytest.fixture
def message_gateway(db_session, uow):
    return MessageGateway(db_session, uow)


@pytest.fixture
async def thread(db_session, uow, teacher, parent):
    thread_gateway = ThreadGateway(db_session, uow)
    thread = await thread_gateway.create_thread(
        "direct", None, teacher.id, [teacher.id, parent.id]
    )
    await uow.commit()
    return thread


async def test_create_message(message_gateway, uow, thread, teacher):
    approved = await message_gateway.create_message(
        thread.id, teacher.id, "Hello", "text", ApprovalState.APPROVED
    )
    pending = await message_gateway.create_message(
        thread.id, teacher.id, "Grades attached", "text", ApprovalState.PENDING
    )
    await uow.commit()

    assert approved.id is not None
    assert approved.approval_state == "approved"
    assert approved.approved_at is not None
    assert pending.approval_state == "pending"
    assert pending.approved_at is None


async def test_visibility_hides_others_pending(
    message_gateway, uow, thread, teacher, parent
):
    await message_gateway.create_message(
        thread.id, teacher.id, "visible", "text", ApprovalState.APPROVED
    )
    await message_gateway.create_message(
        thread.id, teacher.id, "waiting", "text", ApprovalState.PENDING
    )
    await uow.commit()

    for_parent = await message_gateway.get_visible(thread.id, parent.id, False)
    for_sender = await message_gateway.get_visible(thread.id, teacher.id, False)
    for_moderator = await message_gateway.get_visible(thread.id, parent.id, True)

    assert [m.content for m in for_parent] == ["visible"]
    assert [m.content for m in for_sender] == ["waiting", "visible"]
    assert len(for_moderator) == 2


async def test_transition_is_one_way(message_gateway, uow, thread, teacher, principal):
    message = await message_gateway.create_message(
        thread.id, teacher.id, "Grades", "text", ApprovalState.PENDING
    )
    await uow.commit()

    assert await message_gateway.transition(message.id, ApprovalState.APPROVED, principal.id)
    assert not await message_gateway.transition(
        message.id, ApprovalState.REJECTED, principal.id, "too late"
    )
    assert not await message_gateway.transition(
        message.id, ApprovalState.APPROVED, principal.id
    )

    stored = await message_gateway.get_message(message.id)
    assert stored.approval_state == "approved"
    assert stored.approved_by == principal.id
    assert stored.rejection_reason is None


async def test_rejection_records_reason(message_gateway, uow, thread, teacher, principal):
    message = await message_gateway.create_message(
        thread.id, teacher.id, "Grades", "text", ApprovalState.PENDING
    )
    await uow.commit()

    await message_gateway.transition(
        message.id, ApprovalState.REJECTED, principal.id, "Use the report portal"
    )

    stored = await message_gateway.get_message(message.id)
    assert stored.approval_state == "rejected"
    assert stored.rejection_reason == "Use the report portal"
    assert stored.approved_at is None


async def test_record_read_is_idempotent(message_gateway, uow, thread, teacher, parent):
    message = await message_gateway.create_message(
        thread.id, teacher.id, "Hello", "text", ApprovalState.APPROVED
    )
    await uow.commit()
    first_read = utcnow()

    assert await message_gateway.record_read(message.id, parent.id, first_read)
    assert not await message_gateway.record_read(
        message.id, parent.id, first_read + timedelta(minutes=5)
    )

    receipts = await message_gateway.get_read_receipts(message.id)
    assert len(receipts) == 1
    receipt, reader = receipts[0]
    assert reader.id == parent.id
    assert receipt.read_at == first_read


async def test_unread_counts(message_gateway, uow, thread, teacher, parent):
    first = await message_gateway.create_message(
        thread.id, teacher.id, "one", "text", ApprovalState.APPROVED
    )
    await message_gateway.create_message(
        thread.id, teacher.id, "two", "text", ApprovalState.APPROVED
    )
    await message_gateway.create_message(
        thread.id, teacher.id, "pending", "text", ApprovalState.PENDING
    )
    await message_gateway.create_message(
        thread.id, parent.id, "own", "text", ApprovalState.APPROVED
    )
    await uow.commit()

    assert await message_gateway.count_unread(parent.id, thread.id) == 2
    assert await message_gateway.count_unread(parent.id) == 2

    await message_gateway.record_read(first.id, parent.id, utcnow())

    unread = await message_gateway.get_unread(thread.id, parent.id)
    assert [m.content for m in unread] == ["two"]
    assert await message_gateway.count_unread(parent.id) == 1
    assert await message_gateway.count_unread(teacher.id) == 1


async def test_moderation_counters(message_gateway, uow, thread, teacher, parent):
    for content in ("a", "b"):
        await message_gateway.create_message(
            thread.id, teacher.id, content, "text", ApprovalState.PENDING
        )
    await message_gateway.create_message(
        thread.id, parent.id, "c", "text", ApprovalState.APPROVED
    )
    await uow.commit()

    assert await message_gateway.count_by_state() == {"pending": 2, "approved": 1}
    assert await message_gateway.count_pending_by_sender() == {teacher.id: 2}
    pending = await message_gateway.get_pending()
    assert [m.content for m in pending] == ["a", "b"]


async def test_delete_removes_receipts(message_gateway, uow, thread, teacher, parent):
    message = await message_gateway.create_message(
        thread.id, teacher.id, "Hello", "text", ApprovalState.APPROVED
    )
    await uow.commit()
    await message_gateway.record_read(message.id, parent.id, utcnow())

    await message_gateway.delete_message(message)
    await uow.commit()

    assert await message_gateway.get_message(message.id) is None
    assert await message_gateway.get_read_receipts(message.id) == []


async def test_update_content_sets_updated_at(message_gateway, uow, thread, teacher):
    message = await message_gateway.create_message(
        thread.id, teacher.id, "Helo", "text", ApprovalState.APPROVED
    )
    await uow.commit()

    await message_gateway.update_content(message, "Hello")
    await uow.commit()

    stored = await message_gateway.get_message(message.id)
    assert stored.content == "Hello"
    assert stored.updated_at is not None
