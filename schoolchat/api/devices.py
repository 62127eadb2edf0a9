# schoolchat/api/devices.py
from fastapi import APIRouter, Depends

from schoolchat.api.dependencies import get_current_user, get_device_interactor
from schoolchat.infrastructure import schemas
from schoolchat.interactors.device_interactor import DeviceInteractor

router = APIRouter()


@router.post("/", response_model=schemas.Envelope[schemas.DeviceRegistration])
async def register_device(
    data: schemas.DeviceRegister,
    device_interactor: DeviceInteractor = Depends(get_device_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    registration = await device_interactor.register_device(data, current_user)
    return schemas.Envelope(data=registration, message="Device registered")


@router.get("/my-tokens", response_model=schemas.Envelope[list[schemas.DeviceToken]])
async def my_tokens(
    device_interactor: DeviceInteractor = Depends(get_device_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    devices = await device_interactor.list_devices(current_user)
    return schemas.Envelope(data=devices)


@router.get("/available-topics", response_model=schemas.Envelope[schemas.AvailableTopics])
async def available_topics(
    device_interactor: DeviceInteractor = Depends(get_device_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    topics = await device_interactor.available_topics(current_user)
    return schemas.Envelope(data=topics)


@router.post(
    "/subscribe-topic", response_model=schemas.Envelope[schemas.TopicSubscription]
)
async def subscribe_topic(
    data: schemas.TopicChange,
    device_interactor: DeviceInteractor = Depends(get_device_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    result = await device_interactor.subscribe_topic(data, current_user)
    message = (
        f"Subscribed to {data.topic}"
        if result.success
        else f"Failed to subscribe to {data.topic}"
    )
    return schemas.Envelope(data=result, message=message)


@router.post(
    "/unsubscribe-topic", response_model=schemas.Envelope[schemas.TopicSubscription]
)
async def unsubscribe_topic(
    data: schemas.TopicChange,
    device_interactor: DeviceInteractor = Depends(get_device_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    result = await device_interactor.unsubscribe_topic(data, current_user)
    message = (
        f"Unsubscribed from {data.topic}"
        if result.success
        else f"Failed to unsubscribe from {data.topic}"
    )
    return schemas.Envelope(data=result, message=message)


@router.delete("/{token}", response_model=schemas.Envelope[None])
async def unregister_device(
    token: str,
    device_interactor: DeviceInteractor = Depends(get_device_interactor),
    current_user: schemas.User = Depends(get_current_user),
):
    await device_interactor.unregister_device(token, current_user)
    return schemas.Envelope(message="Device unregistered")
