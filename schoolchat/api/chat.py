# schoolchat/api/chat.py
import json
from datetime import datetime

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from schoolchat.api.dependencies import (
    authenticate,
    get_current_user,
    get_message_interactor,
    get_thread_interactor,
)
from schoolchat.domain.entities import ApprovalState, ThreadKind
from schoolchat.domain.exceptions import ChatError
from schoolchat.gateways.message_gateway import MessageGateway
from schoolchat.gateways.thread_gateway import ThreadGateway
from schoolchat.gateways.user_gateway import UserGateway
from schoolchat.infrastructure import schemas
from schoolchat.infrastructure.uow import UnitOfWork
from schoolchat.interactors.message_interactor import MessageInteractor
from schoolchat.interactors.thread_interactor import ThreadInteractor

router = APIRouter()


@router.post("/start-conversation", response_model=schemas.Envelope[schemas.Conversation])
async def start_conversation(
    data: schemas.ConversationStart,
    thread_interactor: ThreadInteractor = Depends(get_thread_interactor),
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    thread, created = await thread_interactor.resolve_or_create_thread(
        data.participants,
        data.thread_type,
        current_user,
        title=data.title,
        creator_is_admin=data.thread_type == ThreadKind.GROUP,
    )
    message = await message_interactor.create_message(
        schemas.MessageCreate(
            thread_id=thread.id,
            content=data.message_content,
            message_type=data.message_type,
        ),
        current_user,
    )
    detail = await thread_interactor.get_thread(thread.id, current_user)
    return schemas.Envelope(
        data=schemas.Conversation(
            thread=thread, message=message, participants=len(detail.participants)
        ),
        message="Conversation started" if created else "Message sent to existing thread",
    )


@router.post("/threads", response_model=schemas.Envelope[schemas.Thread])
async def create_thread(
    data: schemas.ThreadCreate,
    thread_interactor: ThreadInteractor = Depends(get_thread_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    thread, created = await thread_interactor.resolve_or_create_thread(
        data.participants, data.thread_type, current_user, title=data.title
    )
    return schemas.Envelope(
        data=thread, message="Thread created" if created else "Existing thread returned"
    )


@router.post(
    "/check-existing-thread", response_model=schemas.Envelope[schemas.Thread]
)
async def check_existing_thread(
    data: schemas.ThreadCreate,
    thread_interactor: ThreadInteractor = Depends(get_thread_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    thread = await thread_interactor.find_existing_thread(
        data.participants, data.thread_type, current_user
    )
    return schemas.Envelope(
        data=thread, message="Thread found" if thread else "No existing thread"
    )


@router.get("/threads", response_model=schemas.Envelope[list[schemas.ThreadSummary]])
async def list_threads(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    thread_interactor: ThreadInteractor = Depends(get_thread_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    threads = await thread_interactor.list_threads(current_user, skip, limit)
    return schemas.Envelope(data=threads)


@router.get("/threads/{thread_id}", response_model=schemas.Envelope[schemas.ThreadDetail])
async def read_thread(
    thread_id: int,
    thread_interactor: ThreadInteractor = Depends(get_thread_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    thread = await thread_interactor.get_thread(thread_id, current_user)
    return schemas.Envelope(data=thread)


@router.post(
    "/threads/{thread_id}/participants",
    response_model=schemas.Envelope[schemas.ThreadDetail],
)
async def add_participants(
    thread_id: int,
    data: schemas.ParticipantsAdd,
    thread_interactor: ThreadInteractor = Depends(get_thread_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    thread = await thread_interactor.add_participants(
        thread_id, data.user_ids, current_user
    )
    return schemas.Envelope(data=thread, message="Participants updated")


@router.get(
    "/threads/{thread_id}/messages", response_model=schemas.Envelope[list[schemas.Message]]
)
async def read_messages(
    thread_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    messages = await message_interactor.list_messages(
        thread_id, current_user, skip, limit
    )
    return schemas.Envelope(data=messages)


@router.post(
    "/threads/{thread_id}/mark-all-read",
    response_model=schemas.Envelope[schemas.ThreadReadMark],
)
async def mark_all_read(
    thread_id: int,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    marked = await message_interactor.mark_all_read(thread_id, current_user)
    return schemas.Envelope(data=marked)


@router.get(
    "/threads/{thread_id}/unread-count",
    response_model=schemas.Envelope[schemas.UnreadCount],
)
async def thread_unread_count(
    thread_id: int,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    count = await message_interactor.unread_count(thread_id, current_user)
    return schemas.Envelope(data=count)


@router.get("/offline-messages", response_model=schemas.Envelope[schemas.OfflineMessages])
async def offline_messages(
    last_check_time: datetime,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    missed = await message_interactor.offline_messages(current_user, last_check_time)
    return schemas.Envelope(data=missed)


@router.get("/unread-count", response_model=schemas.Envelope[schemas.UnreadCount])
async def total_unread_count(
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    count = await message_interactor.total_unread_count(current_user)
    return schemas.Envelope(data=count)


@router.post("/messages", response_model=schemas.Envelope[schemas.Message])
async def create_message(
    data: schemas.MessageCreate,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    message = await message_interactor.create_message(data, current_user)
    return schemas.Envelope(
        data=message,
        message="Message sent"
        if message.approval_state == ApprovalState.APPROVED
        else "Message sent for approval",
    )


@router.get("/messages/pending", response_model=schemas.Envelope[list[schemas.Message]])
async def pending_messages(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    messages = await message_interactor.list_pending(current_user, skip, limit)
    return schemas.Envelope(data=messages)


@router.get(
    "/messages/approval-stats", response_model=schemas.Envelope[schemas.ApprovalStats]
)
async def approval_stats(
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    stats = await message_interactor.approval_stats(current_user)
    return schemas.Envelope(data=stats)


@router.put("/messages/{message_id}", response_model=schemas.Envelope[schemas.Message])
async def update_message(
    message_id: int,
    data: schemas.MessageUpdate,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    message = await message_interactor.update_message_content(
        message_id, current_user, data.content
    )
    return schemas.Envelope(data=message, message="Message updated")


@router.delete("/messages/{message_id}", response_model=schemas.Envelope[schemas.Message])
async def delete_message(
    message_id: int,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    message = await message_interactor.delete_message(message_id, current_user)
    return schemas.Envelope(data=message, message="Message deleted")


@router.post(
    "/messages/{message_id}/approve",
    response_model=schemas.Envelope[schemas.ModerationResult],
)
async def approve_message(
    message_id: int,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    result = await message_interactor.approve_message(message_id, current_user)
    return schemas.Envelope(
        data=result,
        message="Message approved" if result.changed else "Message was already approved",
    )


@router.post(
    "/messages/{message_id}/reject",
    response_model=schemas.Envelope[schemas.ModerationResult],
)
async def reject_message(
    message_id: int,
    data: schemas.MessageReject | None = None,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    reason = data.reason if data else None
    result = await message_interactor.reject_message(message_id, current_user, reason)
    return schemas.Envelope(
        data=result,
        message="Message rejected" if result.changed else "Message was already rejected",
    )


@router.post("/messages/{message_id}/read", response_model=schemas.Envelope[schemas.ReadMark])
async def mark_read(
    message_id: int,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    mark = await message_interactor.record_read(message_id, current_user)
    return schemas.Envelope(data=mark, message="Message marked as read")


@router.get("/messages/{message_id}/read-by", response_model=schemas.Envelope[schemas.ReadBy])
async def read_by(
    message_id: int,
    message_interactor: MessageInteractor = Depends(get_message_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    receipts = await message_interactor.list_read_by(message_id, current_user)
    return schemas.Envelope(data=receipts)


@router.post(
    "/admin/resolve-duplicates",
    response_model=schemas.Envelope[schemas.DuplicateResolution],
)
async def resolve_duplicates(
    data: schemas.DuplicateResolutionRequest | None = None,
    thread_interactor: ThreadInteractor = Depends(get_thread_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    kind = data.thread_type if data else ThreadKind.DIRECT
    resolution = await thread_interactor.resolve_all_duplicates(kind, current_user)
    return schemas.Envelope(
        data=resolution,
        message=f"Resolved {resolution.resolved_groups} of "
        f"{resolution.duplicate_groups_found} duplicate groups",
    )


def _message_interactor(state, session) -> MessageInteractor:
    uow = UnitOfWork(session)
    return MessageInteractor(
        uow,
        MessageGateway(session, uow),
        ThreadGateway(session, uow),
        UserGateway(session, uow),
        state.policy,
        state.event_dispatcher,
        state.logger,
    )


async def _handle_frame(websocket: WebSocket, user: schemas.User, frame: dict) -> None:
    state = websocket.app.state
    registry = state.connection_registry
    frame_type = frame.get("type")

    if frame_type in ("ping", "heartbeat", "heartbeat_response"):
        registry.heartbeat(user.id)
        if frame_type == "ping":
            await websocket.send_json({"type": "pong"})
        return

    if frame_type in ("subscribe_thread", "unsubscribe_thread"):
        thread_id = frame.get("thread_id")
        if not isinstance(thread_id, int):
            await websocket.send_json({"type": "error", "message": "thread_id is required"})
            return
        if frame_type == "unsubscribe_thread":
            registry.unsubscribe(user.id, thread_id)
            await websocket.send_json(
                {"type": "thread_unsubscribed", "data": {"thread_id": thread_id}}
            )
            return
        async with state.database.session() as session:
            gateway = ThreadGateway(session, UnitOfWork(session))
            participant = await gateway.get_participant(thread_id, user.id)
        if participant is None:
            await websocket.send_json(
                {"type": "error", "message": "Not a participant of this thread"}
            )
            return
        registry.subscribe(user.id, thread_id)
        await websocket.send_json(
            {"type": "thread_subscribed", "data": {"thread_id": thread_id}}
        )
        return

    if frame_type == "send_message":
        data = schemas.MessageCreate.model_validate(frame)
        async with state.database.session() as session:
            message = await _message_interactor(state, session).create_message(data, user)
        await websocket.send_json(
            {"type": "message_sent", "data": message.model_dump(mode="json")}
        )
        return

    await websocket.send_json(
        {"type": "error", "message": f"Unknown message type: {frame_type}"}
    )


@router.websocket("/ws")
async def chat_websocket(websocket: WebSocket, token: str | None = None):
    state = websocket.app.state
    async with state.database.session() as session:
        user = await authenticate(
            token, state.security_service, UserGateway(session, UnitOfWork(session))
        )
    if user is None:
        await websocket.close(code=1008, reason="Invalid token")
        return

    await websocket.accept()
    registry = state.connection_registry
    await registry.connect(user.id, websocket)
    await websocket.send_json(
        {"type": "connection_established", "data": {"user_id": user.id}}
    )
    try:
        while True:
            try:
                frame = json.loads(await websocket.receive_text())
            except json.JSONDecodeError:
                frame = None
            if not isinstance(frame, dict) or "type" not in frame:
                await websocket.send_json(
                    {"type": "error", "message": "Message type is required"}
                )
                continue
            try:
                await _handle_frame(websocket, user, frame)
            except ChatError as e:
                await websocket.send_json(
                    {"type": "error", "error": e.kind, "message": e.message}
                )
            except ValidationError as e:
                await websocket.send_json(
                    {"type": "error", "error": "validation_error", "message": str(e)}
                )
    except WebSocketDisconnect:
        pass
    finally:
        await registry.disconnect(user.id, websocket)
