class AuthError(Exception):
    """Base class for handshake failures. ``code`` is sent to the client as the close reason."""

    code = "unauthorized"

    def __init__(self, message: str = None, code: str = None):
        super().__init__(message or self.code)
        if code:
            self.code = code


class CredentialMissing(AuthError):
    code = "credential_missing"


class CredentialInvalid(AuthError):
    code = "credential_invalid"


class SubjectNotFound(AuthError):
    code = "subject_not_found"


class RoomError(Exception):
    """A join/leave request that cannot be honoured. Reported on the connection, never fatal."""

    def __init__(self, code: str, room_id: str = None, message: str = None):
        super().__init__(message or code)
        self.code = code
        self.room_id = room_id
        self.message = message or code.replace("_", " ")


class DispatchError(Exception):
    """Failure while pushing one event to one connection."""
