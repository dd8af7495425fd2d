# ============================================================================
# RELAY Chat - Error Taxonomy
# ============================================================================
# Store operations raise these; the router turns them into failure acks or
# drops the event, and the HTTP layer maps them onto status codes.
# ============================================================================


class ChatError(Exception):
    """Base class for every expected chat failure."""

    code = "error"
    status_code = 400

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self):
        return {"success": False, "code": self.code, "message": self.message}


class NotFound(ChatError):
    code = "not_found"
    status_code = 404


class RequestNotFound(NotFound):
    code = "request_not_found"


class Conflict(ChatError):
    code = "conflict"
    status_code = 409


class UsernameTaken(Conflict):
    code = "username_taken"


class EmailTaken(Conflict):
    code = "email_taken"


class AlreadyFriends(Conflict):
    code = "already_friends"


class AlreadyRequested(Conflict):
    code = "already_requested"


class AccessDenied(ChatError):
    code = "access_denied"
    status_code = 403


class Unauthenticated(ChatError):
    code = "unauthenticated"
    status_code = 401


class InvalidPayload(ChatError):
    code = "invalid_payload"
    status_code = 400
