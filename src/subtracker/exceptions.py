from __future__ import annotations


class SubTrackerError(Exception):
    pass


class TextExtractionError(SubTrackerError):
    """Raised when a document yields no usable text."""


class NoTransactionsExtracted(SubTrackerError):
    """Raised when a non-empty statement yields zero transactions."""

    def __init__(self, message: str = "Could not extract any transactions from the statement.") -> None:
        super().__init__(message)


class StatementTooLarge(SubTrackerError):
    pass


class InvalidSubscriptionInput(SubTrackerError):
    pass


class GuideNotFound(SubTrackerError):
    pass


class SubscriptionNotFound(SubTrackerError):
    pass
