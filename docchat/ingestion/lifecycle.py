"""
docchat/ingestion/lifecycle.py

Per-file upload state machine.

    Selected ──> Transferring ──> Processing ──> Indexed
                   │   ^  │            │
                   └───┘  └──> Failed <┘
    any non-terminal phase ──> Cancelled

UploadTask is the mutable record owned by the IngestionController; every
other component sees immutable UploadSnapshots.  Progress only moves
forward while transferring and is pinned to 1.0 on entering Processing.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from docchat.models.schemas.document import DocumentType


class Phase(str, Enum):
    selected = "selected"
    transferring = "transferring"
    processing = "processing"
    indexed = "indexed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (Phase.indexed, Phase.failed, Phase.cancelled)


_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.selected: frozenset({Phase.transferring, Phase.cancelled}),
    Phase.transferring: frozenset(
        {Phase.transferring, Phase.processing, Phase.failed, Phase.cancelled}
    ),
    Phase.processing: frozenset({Phase.indexed, Phase.failed, Phase.cancelled}),
    Phase.indexed: frozenset(),
    Phase.failed: frozenset(),
    Phase.cancelled: frozenset(),
}


class InvalidTransition(RuntimeError):
    """A phase change the state machine does not allow."""

    def __init__(self, current: Phase, target: Phase) -> None:
        super().__init__(f"Cannot move an upload from {current.value} to {target.value}.")
        self.current = current
        self.target = target


@dataclass(frozen=True)
class UploadSnapshot:
    """What observers of an upload see at one point in time."""
    task_id: str
    filename: str
    phase: Phase
    progress: float
    error_kind: str | None = None
    error_reason: str | None = None
    document_id: str | None = None


@dataclass
class UploadTask:
    id: str
    filename: str
    payload: bytes = field(repr=False)
    document_type: DocumentType
    phase: Phase = Phase.selected
    progress: float = 0.0
    error_kind: str | None = None
    error_reason: str | None = None
    document_id: str | None = None
    handle: str | None = None

    @property
    def size(self) -> int:
        return len(self.payload)

    def advance(self, target: Phase) -> bool:
        """Move to *target*. Returns False for the Transferring self-loop.

        Raises:
            InvalidTransition: *target* is not reachable from the current phase.
        """
        if target not in _TRANSITIONS[self.phase]:
            raise InvalidTransition(self.phase, target)
        changed = target is not self.phase
        self.phase = target
        if target is Phase.processing:
            self.progress = 1.0
        return changed

    def report_progress(self, fraction: float) -> bool:
        """Apply a transfer progress update.

        Updates outside Transferring, and updates that do not move progress
        forward, are discarded. Returns whether the update was applied.
        """
        if self.phase is not Phase.transferring:
            return False
        fraction = min(max(fraction, 0.0), 1.0)
        if fraction <= self.progress:
            return False
        self.progress = fraction
        return True

    def fail(self, kind: str, reason: str) -> None:
        self.advance(Phase.failed)
        self.error_kind = kind
        self.error_reason = reason

    def complete(self, document_id: str) -> None:
        self.advance(Phase.indexed)
        self.document_id = document_id

    def snapshot(self) -> UploadSnapshot:
        return UploadSnapshot(
            task_id=self.id,
            filename=self.filename,
            phase=self.phase,
            progress=self.progress,
            error_kind=self.error_kind,
            error_reason=self.error_reason,
            document_id=self.document_id,
        )
