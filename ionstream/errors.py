"""
errors.py - Exception hierarchy for ionstream

Data errors (malformed input, unknown versions, unresolvable symbols) are
kept apart from API misuse (unbalanced containers, stepping past the end of
a container). IncrementalInputPending is a control signal, not an error.
"""

from typing import Optional, Tuple


class IonError(Exception):
    """Base class for every error raised by ionstream."""


class MalformedInput(IonError, ValueError):
    """Structural or grammar violation in the input.

    `offset` is the absolute byte (binary) or character (text) position of
    the failure. Text failures also carry 1-based `line` and `column`.
    """

    def __init__(self, message: str, offset: Optional[int] = None,
                 line: Optional[int] = None, column: Optional[int] = None):
        self.reason = message
        self.offset = offset
        self.line = line
        self.column = column
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        elif offset is not None:
            message = f"{message} (at offset {offset})"
        super().__init__(message)


class TruncatedInput(MalformedInput):
    """Input ended before the current value was complete."""


class UnresolvedSymbol(IonError, LookupError):
    """A symbol id has no entry in the active symbol table."""

    def __init__(self, sid: int, max_id: Optional[int] = None):
        self.sid = sid
        self.max_id = max_id
        msg = f"symbol id ${sid} is not defined"
        if max_id is not None:
            msg += f" (max id {max_id})"
        super().__init__(msg)


class UnsupportedVersion(IonError):
    """A version marker named a format version this codec cannot read."""

    def __init__(self, version: Tuple[int, int], offset: Optional[int] = None):
        self.version = version
        self.offset = offset
        msg = f"unsupported Ion version {version[0]}.{version[1]}"
        if offset is not None:
            msg += f" (at offset {offset})"
        super().__init__(msg)


class IonUsageError(IonError):
    """The reader or writer API was called in an invalid state."""


class StepOutRequired(IonUsageError):
    """next() was called again after the end of the current container."""


class IncompleteStream(IonUsageError):
    """A writer was finalized with containers still open."""


class IonTypeError(IonError, TypeError):
    """A value does not have the Ion type the caller asked for."""


class IncrementalInputPending(Exception):
    """More input is needed; call feed() (or close_input()) and retry."""
