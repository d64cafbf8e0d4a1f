"""
Job lifecycle states, progress events and the aggregate batch result.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple

from .track import TrackRequest


class JobState(Enum):
    """States of a single track job, in pipeline order."""

    QUEUED = "queued"
    FETCHING = "fetching"
    RESOLVING_METADATA = "resolving_metadata"
    FILTERING = "filtering"
    TRANSCODING = "transcoding"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})

# Position of each non-terminal state in the pipeline; transitions may only
# move forward along this order.
PIPELINE_ORDER: Dict[JobState, int] = {
    JobState.QUEUED: 0,
    JobState.FETCHING: 1,
    JobState.RESOLVING_METADATA: 2,
    JobState.FILTERING: 3,
    JobState.TRANSCODING: 4,
    JobState.EMBEDDING: 5,
    JobState.COMPLETED: 6,
}


def is_valid_transition(current: JobState, new: JobState) -> bool:
    """Checks that a state change moves strictly forward."""
    if current.is_terminal:
        return False
    if new in (JobState.FAILED, JobState.CANCELLED):
        return True
    return PIPELINE_ORDER[new] > PIPELINE_ORDER[current]


@dataclass(frozen=True)
class ProgressEvent:
    """A single state transition of one job."""

    job_id: str
    state: JobState
    previous: Optional[JobState]
    label: str
    timestamp: float = field(default_factory=time.time)
    reason: Optional[str] = None


@dataclass(frozen=True)
class JobOutcome:
    """The terminal report for one job."""

    job_id: str
    request: TrackRequest
    state: JobState
    output_path: Optional[Path] = None
    reason: Optional[str] = None
    retries: int = 0
    stage_retries: Dict[str, int] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExpansionFailure:
    """An input (playlist entry, playlist or CSV row) that produced no request."""

    origin: str
    reason: str


@dataclass(frozen=True)
class BatchResult:
    """Aggregate of every job's terminal state for one batch run."""

    outcomes: Tuple[JobOutcome, ...]
    expansion_failures: Tuple[ExpansionFailure, ...] = ()
    started_at: float = 0.0
    finished_at: float = 0.0
    peak_active: int = 0

    @property
    def completed(self) -> Tuple[JobOutcome, ...]:
        return tuple(o for o in self.outcomes if o.state is JobState.COMPLETED)

    @property
    def failed(self) -> Tuple[JobOutcome, ...]:
        return tuple(o for o in self.outcomes if o.state is JobState.FAILED)

    @property
    def cancelled(self) -> Tuple[JobOutcome, ...]:
        return tuple(o for o in self.outcomes if o.state is JobState.CANCELLED)

    @property
    def duration(self) -> float:
        return max(0.0, self.finished_at - self.started_at)

    def summary(self) -> Dict[str, int]:
        return {
            "completed": len(self.completed),
            "failed": len(self.failed),
            "cancelled": len(self.cancelled),
            "expansion_failures": len(self.expansion_failures),
            "retries": sum(o.retries for o in self.outcomes),
        }
