# schoolchat/api/notifications.py
from fastapi import APIRouter, Depends

from schoolchat.api.dependencies import get_current_user, get_notification_interactor
from schoolchat.infrastructure import schemas
from schoolchat.interactors.notification_interactor import NotificationInteractor

router = APIRouter()


@router.post("/", response_model=schemas.Envelope[schemas.NotificationResult])
async def publish_notification(
    data: schemas.NotificationCreate,
    notification_interactor: NotificationInteractor = Depends(
        get_notification_interactor
    ),
    current_user: schemas.User = Depends(get_current_user),
):
    result = await notification_interactor.publish(data, current_user)
    return schemas.Envelope(data=result, message="Notification published")
