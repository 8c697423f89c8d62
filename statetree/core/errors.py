# statetree/core/errors.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details


class HSMError(Exception):
    """
    Base exception class for errors within the hierarchical state machine library.
    """


class StateNotFoundError(HSMError):
    """
    Raised when a requested state does not exist in the machine or hierarchy.
    """


class TransitionError(HSMError):
    """
    Raised when an attempted state transition is invalid or cannot be completed.
    """


class ValidationError(HSMError):
    """
    Raised when validation detects configuration or runtime constraints violations.
    """


class DefinitionError(ValidationError):
    """
    Raised synchronously while a machine is being defined or first started:
    duplicate ids, unresolved initial states, malformed targets, unknown
    registry names, or mutation of a frozen tree. A machine that raised one
    of these never starts.
    """


class InvalidSnapshotError(ValidationError):
    """
    Raised by restore when a snapshot does not carry both a state path and a
    context mapping.
    """


class QueueClearedError(HSMError):
    """
    Delivered to the future of every queued event that was discarded before
    it started processing.
    """

    def __init__(self, message: str = "Event was cancelled due to queue being cleared") -> None:
        super().__init__(message)


class HistoryError(HSMError):
    """
    Raised when a rollback names a history entry that has already been
    evicted or discarded.
    """
