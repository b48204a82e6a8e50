from __future__ import annotations


class CrossWatchError(Exception):
    """Base class for errors raised by crosswatch."""


class StreamConnectionError(CrossWatchError, ConnectionError):
    """
    Stream handshake failed or timed out.

    Raised from ConnectionManager.open() only after every retry attempt
    has been used up.
    """

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class MessageParseError(CrossWatchError):
    """A stream frame could not be decoded. The frame is dropped."""

    def __init__(self, message: str, raw: object = None):
        super().__init__(message)
        self.raw = raw


class DataInvariantError(CrossWatchError):
    """A decoded value (price, volume) is not usable. The tick is dropped."""


class FetchError(CrossWatchError):
    """Historical or price lookup over REST failed."""
