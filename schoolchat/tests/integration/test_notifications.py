# schoolchat/tests/integration/test_notifications.py
import pytest

from schoolchat.domain.exceptions import ChatValidationError
from schoolchat.interactors.notification_interactor import topic_for

NOTIFICATIONS = "/api/v1/notifications"


def test_topic_for_each_kind():
    assert topic_for("attendance", student_id=3) == "student_3"
    assert topic_for("announcement", class_id=7) == "class_7"
    assert topic_for("announcement") == "school_announcements"
    assert topic_for("general") is None
    with pytest.raises(ChatValidationError):
        topic_for("attendance")


@pytest.mark.asyncio
async def test_attendance_goes_to_student_topic(
    client, auth_header, settle, push_provider, teacher
):
    response = await client.post(
        f"{NOTIFICATIONS}/",
        json={
            "kind": "attendance",
            "title": "Attendance",
            "body": "Sam was marked absent today",
            "student_id": 3,
        },
        headers=auth_header(teacher),
    )
    await settle()

    assert response.status_code == 200
    assert response.json()["data"] == {
        "topic": "student_3",
        "topic_delivered": True,
        "recipients": 0,
    }
    [(topic, notification)] = push_provider.topic_sends
    assert topic == "student_3"
    assert notification.data == {"type": "attendance"}


@pytest.mark.asyncio
async def test_direct_recipients_use_the_chat_channels(
    client, auth_header, settle, connect, push_provider, database, principal, parent, student
):
    parent_socket = await connect(parent)
    await client.post(
        "/api/v1/devices/", json={"token": "student-phone"}, headers=auth_header(student)
    )

    response = await client.post(
        f"{NOTIFICATIONS}/",
        json={
            "kind": "general",
            "title": "Sports day",
            "body": "Bring a water bottle",
            "user_ids": [parent.id, student.id, 9999],
            "data": {"event_id": "42"},
        },
        headers=auth_header(principal),
    )
    await settle()

    assert response.status_code == 200
    assert response.json()["data"] == {
        "topic": None,
        "topic_delivered": False,
        "recipients": 2,
    }
    assert push_provider.topic_sends == []
    assert parent_socket.types() == ["notification_published"]
    assert parent_socket.sent[0]["data"]["title"] == "Sports day"
    assert push_provider.tokens_sent() == ["student-phone"]


@pytest.mark.asyncio
async def test_only_staff_publish(client, auth_header, parent):
    response = await client.post(
        f"{NOTIFICATIONS}/",
        json={"kind": "announcement", "title": "Hi", "body": "Hello"},
        headers=auth_header(parent),
    )
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


@pytest.mark.asyncio
async def test_attendance_needs_student(client, auth_header, teacher):
    response = await client.post(
        f"{NOTIFICATIONS}/",
        json={"kind": "attendance", "title": "Attendance", "body": "Absent"},
        headers=auth_header(teacher),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
