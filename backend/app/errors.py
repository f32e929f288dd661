"""Chat error hierarchy.

Services raise these; the handler registered in ``main.py`` turns them into
``{"detail": message}`` JSON responses with the matching status code.
"""


class ChatError(Exception):
    """Base class for every error a chat operation surfaces to the caller."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class Unauthenticated(ChatError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class Forbidden(ChatError):
    status_code = 403


class NotFound(ChatError):
    status_code = 404


class InvalidInput(ChatError):
    status_code = 422


class DeliveryFailed(ChatError):
    """A database or storage call failed partway through a write."""

    status_code = 502


class StorageError(ChatError):
    status_code = 502
