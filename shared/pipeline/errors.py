"""Error taxonomy shared by the pipeline stages.

Every failure inside a stage is turned into a ``ClassifiedError`` exactly once,
by ``classify_exception``. The stage then decides between retry and terminal
failure based on the kind alone.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

import httpx


MAX_ERROR_MESSAGE_LENGTH = 1000

# 4xx codes that signal a temporary condition rather than a broken request
_RETRYABLE_CLIENT_STATUS = {408, 425, 429}


class ErrorKind(str, Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"
    INVARIANT_VIOLATION = "invariant_violation"


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT


T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: ClassifiedError


Result = Union[Ok[T], Err]


##########################################
########### DOMAIN EXCEPTIONS ############
##########################################

class PipelineError(Exception):
    """Base class for errors raised by pipeline code. Subclasses fix the kind."""

    kind: ErrorKind = ErrorKind.TRANSIENT


class UnsupportedMimeTypeError(PipelineError):
    kind = ErrorKind.PERMANENT

    def __init__(self, mime_type: str):
        super().__init__(f"Unsupported MIME type: {mime_type}")
        self.mime_type = mime_type


class MissingCredentialError(PipelineError):
    kind = ErrorKind.PERMANENT

    def __init__(self, user_id: str):
        super().__init__(f"No file source credential stored for user '{user_id}'.")
        self.user_id = user_id


class InvariantViolationError(PipelineError):
    kind = ErrorKind.INVARIANT_VIOLATION


##########################################
############## CLASSIFIER ################
##########################################

def truncate_message(message: str, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    return message if len(message) <= limit else message[:limit]


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or exc.__class__.__name__


def classify_exception(exc: BaseException) -> ClassifiedError:
    """Map any exception raised inside a stage to a ClassifiedError.

    Args:
        exc (BaseException): The caught exception.

    Returns:
        ClassifiedError: Kind and a message capped at 1,000 characters.
    """
    if isinstance(exc, PipelineError):
        return ClassifiedError(kind=exc.kind, message=truncate_message(_describe(exc)))

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        message = truncate_message(f"HTTP {status} from {exc.request.url}: {exc.response.text}".strip())
        if 400 <= status < 500 and status not in _RETRYABLE_CLIENT_STATUS:
            return ClassifiedError(kind=ErrorKind.PERMANENT, message=message)
        return ClassifiedError(kind=ErrorKind.TRANSIENT, message=message)

    if isinstance(exc, httpx.TransportError):
        return ClassifiedError(kind=ErrorKind.TRANSIENT, message=truncate_message(f"Transport error: {_describe(exc)}"))

    return ClassifiedError(kind=ErrorKind.TRANSIENT, message=truncate_message(_describe(exc)))
