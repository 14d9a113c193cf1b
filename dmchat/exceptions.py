class ChatError(Exception):
    pass


class BackendUnavailable(ChatError):
    """Read against the backend could not complete."""


class WriteRejected(ChatError):
    """Insert or update was denied or failed."""
