"""Custom exception hierarchy for the question supply."""
from __future__ import annotations


class TriviaError(Exception):
    """Base class for question supply errors."""


class InvalidQuestionError(TriviaError, ValueError):
    """Raised when a question payload violates the model invariants."""


class BundleEmptyError(TriviaError):
    """Raised when the packaged question set holds no usable question."""


class SourceUnavailableError(TriviaError):
    """A remote source could not provide questions.

    The manager treats every subclass as "try the next source".
    """


# ---------------------------------------------------------------------------
# Cloud record store
# ---------------------------------------------------------------------------


class RecordStoreError(SourceUnavailableError):
    """Base class for record store failures."""


class RecordStoreNotConfigured(RecordStoreError):
    """No record store URL has been configured."""


class RecordStoreNetworkError(RecordStoreError):
    """Transport level failure talking to the record store."""


class RecordStoreNoResults(RecordStoreError):
    """The query matched no usable record."""


class RecordStorePermissionDenied(RecordStoreError):
    """The record store rejected our credentials."""


class RecordStoreServerError(RecordStoreError):
    """The record store reported a server side failure."""


# ---------------------------------------------------------------------------
# Open Trivia DB
# ---------------------------------------------------------------------------


class OpenTriviaError(SourceUnavailableError):
    """Base class for Open Trivia DB failures."""


class OpenTriviaNetworkError(OpenTriviaError):
    """Transport level failure talking to Open Trivia DB."""


class OpenTriviaInvalidResponse(OpenTriviaError):
    """Unexpected HTTP status or response code."""


class OpenTriviaDecodingError(OpenTriviaError):
    """The response body could not be decoded."""


class OpenTriviaNoResults(OpenTriviaError):
    """No questions available with the current filters."""


class OpenTriviaInvalidParameter(OpenTriviaError):
    """The API rejected one of the query parameters."""


class OpenTriviaTokenNotFound(OpenTriviaError):
    """The session token is unknown to the API."""


class OpenTriviaTokenExhausted(OpenTriviaError):
    """Every question reachable with the session token has been served."""


class OpenTriviaRateLimited(OpenTriviaError):
    """The API asked us to slow down."""


__all__ = [
    "TriviaError",
    "InvalidQuestionError",
    "BundleEmptyError",
    "SourceUnavailableError",
    "RecordStoreError",
    "RecordStoreNotConfigured",
    "RecordStoreNetworkError",
    "RecordStoreNoResults",
    "RecordStorePermissionDenied",
    "RecordStoreServerError",
    "OpenTriviaError",
    "OpenTriviaNetworkError",
    "OpenTriviaInvalidResponse",
    "OpenTriviaDecodingError",
    "OpenTriviaNoResults",
    "OpenTriviaInvalidParameter",
    "OpenTriviaTokenNotFound",
    "OpenTriviaTokenExhausted",
    "OpenTriviaRateLimited",
]
