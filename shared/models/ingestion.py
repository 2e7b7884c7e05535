"""Ingestion phase state machine and queue job payloads.

A file moves forward through

    discovered → fetching → chunk_pending → vectorizing → indexed

and may end in ``failed`` from one of the two active stages. Every backwards
move is an explicit reset (staleness, manual retry, unsupported file) and has
to be requested with ``reset=True``.
"""

import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class IngestionPhase(str, Enum):
    DISCOVERED = "discovered"
    FETCHING = "fetching"
    CHUNK_PENDING = "chunk_pending"
    VECTORIZING = "vectorizing"
    INDEXED = "indexed"
    FAILED = "failed"


_FORWARD_TRANSITIONS: dict[IngestionPhase, set[IngestionPhase]] = {
    IngestionPhase.DISCOVERED: {IngestionPhase.FETCHING},
    IngestionPhase.FETCHING: {IngestionPhase.FETCHING, IngestionPhase.CHUNK_PENDING, IngestionPhase.FAILED},
    IngestionPhase.CHUNK_PENDING: {IngestionPhase.VECTORIZING},
    IngestionPhase.VECTORIZING: {IngestionPhase.VECTORIZING, IngestionPhase.INDEXED, IngestionPhase.FAILED},
    IngestionPhase.INDEXED: set(),
    IngestionPhase.FAILED: set(),
}

RESET_TARGETS: frozenset[IngestionPhase] = frozenset({
    IngestionPhase.DISCOVERED,
    IngestionPhase.CHUNK_PENDING,
    IngestionPhase.FAILED,
})

# phases in which a stage accepts a job; fetching/vectorizing cover retries and redeliveries
FETCH_ENTRY_PHASES: frozenset[IngestionPhase] = frozenset({IngestionPhase.DISCOVERED, IngestionPhase.FETCHING})
VECTORIZE_ENTRY_PHASES: frozenset[IngestionPhase] = frozenset({IngestionPhase.CHUNK_PENDING, IngestionPhase.VECTORIZING})

IN_PROGRESS_PHASES: frozenset[IngestionPhase] = frozenset({
    IngestionPhase.DISCOVERED,
    IngestionPhase.FETCHING,
    IngestionPhase.CHUNK_PENDING,
    IngestionPhase.VECTORIZING,
})


class InvalidPhaseTransitionError(Exception):
    """Raised when a phase change would break the forward-only ordering."""

    def __init__(self, current: IngestionPhase, target: IngestionPhase):
        super().__init__(f"Invalid ingestion phase transition {current.value} → {target.value}.")
        self.current = current
        self.target = target


def next_phase_allowed(current: IngestionPhase | str, target: IngestionPhase | str, reset: bool = False) -> bool:
    """Check whether a file may move from ``current`` to ``target``.

    Args:
        current (IngestionPhase | str): The phase the file is in.
        target (IngestionPhase | str): The requested phase.
        reset (bool): True for explicit resets (staleness, manual retry, unsupported file).

    Returns:
        bool: True if the transition is allowed.
    """
    current = IngestionPhase(current)
    target = IngestionPhase(target)
    if reset:
        return target in RESET_TARGETS
    return target in _FORWARD_TRANSITIONS[current]


def assert_transition(current: IngestionPhase | str, target: IngestionPhase | str, reset: bool = False) -> IngestionPhase:
    """Validate a transition and return the target phase.

    Raises:
        InvalidPhaseTransitionError: If the transition is not allowed.
    """
    if not next_phase_allowed(current, target, reset=reset):
        raise InvalidPhaseTransitionError(IngestionPhase(current), IngestionPhase(target))
    return IngestionPhase(target)


##########################################
############### QUEUE JOBS ###############
##########################################

def _now_ms() -> int:
    return int(time.time() * 1000)


class QueueJob(BaseModel):
    """Immutable (user_id, file_id, enqueued_at) tuple appended to a job stream."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    file_id: str = Field(min_length=1)
    enqueued_at: int = Field(default_factory=_now_ms)

    def to_fields(self) -> dict[str, str]:
        """Flatten the job into the string field map stored in the stream."""
        return {key: str(value) for key, value in self.model_dump().items()}

    def requeued(self) -> "QueueJob":
        """Return a fresh copy of this job with a new enqueue timestamp."""
        return self.model_copy(update={"enqueued_at": _now_ms()})


class FetchJob(QueueJob):
    job_type: Literal["drive_fetch"] = "drive_fetch"


class VectorizeJob(QueueJob):
    job_type: Literal["drive_vectorize"] = "drive_vectorize"
