"""
Errors raised by the booking engine.

The HTTP layer decides how each one maps to a response; see api.py.
"""


class BookingEngineError(Exception):
    """Base class for errors the engine reports to its caller."""


class NotFoundError(BookingEngineError):
    pass


class ThrottledError(BookingEngineError):
    """A message for the same conversation was sent inside the cooldown window."""

    def __init__(self, message: str = "must wait until cooldown elapses") -> None:
        super().__init__(message)


class ValidationError(BookingEngineError):
    pass


class ProviderError(BookingEngineError):
    """The messaging provider failed or could not be reached."""


class PersistenceError(BookingEngineError):
    pass
