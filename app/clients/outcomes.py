"""
Outcome of a single author lookup against the user service.

``Found`` and ``NotFound`` are authoritative answers.  ``TransientFailure``
is worth retrying; ``PermanentFailure`` is not.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Union

from app.schemas import AuthorView


class FailureKind(str, Enum):
    DEADLINE_EXCEEDED = "deadline_exceeded"
    UNAVAILABLE = "unavailable"
    OVERLOADED = "overloaded"
    MALFORMED = "malformed"
    INVALID_ARGUMENT = "invalid_argument"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Found:
    author: AuthorView


@dataclass(frozen=True)
class NotFound:
    author_id: int


@dataclass(frozen=True)
class TransientFailure:
    kind: FailureKind
    detail: str = ""


@dataclass(frozen=True)
class PermanentFailure:
    kind: FailureKind
    detail: str = ""


UpstreamOutcome = Union[Found, NotFound, TransientFailure, PermanentFailure]


def author_of(outcome: UpstreamOutcome) -> AuthorView | None:
    """The author carried by *outcome*, or None for anything but ``Found``."""
    if isinstance(outcome, Found):
        return outcome.author
    return None
