"""
Error taxonomy for the quiz client.
Malformed event payloads never raise; see events.py.
"""


class QuizClientError(Exception):
    """Base class for every error raised by the quiz client."""


class HubConnectionError(QuizClientError, ConnectionError):
    """The hub transport could not be established or was lost beyond reconnection."""


class NotConnectedError(HubConnectionError):
    """An operation needed a live connection but the hub is not connected."""


class HubInvocationError(QuizClientError):
    """The server completed an invocation with an error message."""

    def __init__(self, method: str, message: str):
        super().__init__(f"{method} failed: {message}")
        self.method = method
        self.server_message = message


class JoinFailedError(QuizClientError):
    """The join handshake did not complete within the retry budget."""

    def __init__(self, room_code: str, attempts: int, cause: BaseException | None = None):
        super().__init__(f"Could not join room {room_code} after {attempts} attempts")
        self.room_code = room_code
        self.attempts = attempts
        self.cause = cause


class SessionNotFoundError(QuizClientError):
    """The server no longer knows the game session; rejoining will not help."""


def is_session_not_found(message: str | None) -> bool:
    """Check whether a server error message reports a missing session."""
    return bool(message) and "session not found" in message.lower()
