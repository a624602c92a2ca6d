"""Error taxonomy shared by ingestion, generation, push and broadcast.

- TransientTimeoutError: a bounded wait ran out; the user may retry
- RemoteFailureError: an external service reported a hard error
- ShapeError: generative output did not parse or validate
- StateConflictError: the requested transition is not allowed right now
- ConnectionLossError: a broadcast handle stopped accepting data
"""

from __future__ import annotations


class LiveQuizError(Exception):
    """Base class for livequiz errors."""

    pass


class TransientTimeoutError(LiveQuizError):
    """A bounded wait was exhausted."""

    pass


class IngestionTimeoutError(TransientTimeoutError):
    """The extraction service did not become ready within the poll budget."""

    pass


class GenerationTimeoutError(TransientTimeoutError):
    """The generative service did not answer within the deadline."""

    pass


class RemoteFailureError(LiveQuizError):
    """An external service reported a hard failure."""

    pass


class ShapeError(LiveQuizError):
    """Generative output has the wrong shape."""

    pass


class ParseError(ShapeError):
    """Generative output is not JSON, even after sanitizing."""

    pass


class SchemaError(ShapeError):
    """Generative output is JSON but violates the quiz schema."""

    pass


class StateConflictError(LiveQuizError):
    """Operation rejected because of the current persisted state."""

    pass


class NothingToPushError(StateConflictError):
    """Every quiz item of the session has already been pushed."""

    pass


class ConnectionLossError(LiveQuizError):
    """A broadcast subscription can no longer receive events."""

    pass


class PoolSaturatedError(LiveQuizError):
    """The ingestion pool refuses new jobs until pending ones drain."""

    pass
