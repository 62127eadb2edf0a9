# schoolchat/domain/exceptions.py


class ChatError(Exception):
    """Base class for errors surfaced to API callers.

    ``kind`` is a stable machine-readable identifier, ``status_code`` the HTTP
    status the API layer renders it with.
    """

    kind = "chat_error"
    status_code = 400

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return self.kind.replace("_", " ").capitalize()


class ChatValidationError(ChatError):
    kind = "validation_error"
    status_code = 400


class InvalidParticipantCount(ChatValidationError):
    kind = "invalid_participant_count"


class NotFoundError(ChatError):
    kind = "not_found"
    status_code = 404


class ThreadNotFound(NotFoundError):
    kind = "thread_not_found"


class MessageNotFound(NotFoundError):
    kind = "message_not_found"


class UserNotFound(NotFoundError):
    kind = "user_not_found"


class AccessDenied(ChatError):
    kind = "access_denied"
    status_code = 403


class NotAParticipant(AccessDenied):
    kind = "not_a_participant"


class Forbidden(AccessDenied):
    kind = "forbidden"


class NotAModerator(AccessDenied):
    kind = "not_a_moderator"


class ThreadNotActive(ChatError):
    kind = "thread_not_active"
    status_code = 409


class InvalidTransition(ChatError):
    kind = "invalid_transition"
    status_code = 409
