"""Pipeline state models shared by the orchestrator and its observers."""

from __future__ import annotations

import base64
import logging
import re
import threading
from dataclasses import dataclass, replace
from enum import Enum

ANCHOR_RANK = 4
DEPENDENT_RANKS = (1, 2, 3)

log = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:image/(png|jpeg|jpg|webp);base64,")


class StageStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Artifact:
    data: bytes
    mime_type: str = "image/png"

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    @classmethod
    def from_data_url(cls, value: str) -> "Artifact":
        """Parse a base64 image data URL, or bare base64 assumed to be PNG."""
        match = _DATA_URL_RE.match(value)
        mime_type = "image/png"
        if match:
            kind = match.group(1)
            mime_type = "image/jpeg" if kind == "jpg" else f"image/{kind}"
            value = value[match.end():]
        try:
            data = base64.b64decode(value, validate=True)
        except ValueError as e:
            raise ValueError(f"Invalid base64 image data: {e}") from e
        if not data:
            raise ValueError("Image data is empty")
        return cls(data=data, mime_type=mime_type)


@dataclass(frozen=True)
class Stage:
    rank: int
    label: str
    description: str
    status: StageStatus = StageStatus.IDLE
    artifact: Artifact | None = None
    error: str | None = None

    @property
    def is_anchor(self) -> bool:
        return self.rank == ANCHOR_RANK


INITIAL_STAGES = (
    Stage(rank=1, label="Initial Mass",
          description="The raw form emerging from the block of clay."),
    Stage(rank=2, label="Structure",
          description="Division into sub-blocks and orientation of the volumes."),
    Stage(rank=3, label="Emergence",
          description="Details begin to appear on the surface."),
    Stage(rank=4, label="Final Work",
          description="The finished sculpture with all its details."),
)


class PipelineState:
    """The four stage records, observable while a run is in flight.

    Records are immutable; every write swaps a whole record under a lock,
    so readers only ever see complete records.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._stages = {s.rank: s for s in INITIAL_STAGES}
        self._observers = []

    def subscribe(self, callback):
        """Register callback(stage), called after each record changes."""
        self._observers.append(callback)

    def reset(self):
        with self._lock:
            for rank, stage in self._stages.items():
                self._stages[rank] = replace(
                    stage, status=StageStatus.LOADING, artifact=None, error=None,
                )
            changed = list(self._stages.values())
        for stage in changed:
            self._notify(stage)

    def update(self, rank: int, status: StageStatus,
               artifact: Artifact | None = None, error: str | None = None) -> Stage:
        with self._lock:
            current = self._stages[rank]
            stage = replace(current, status=status, artifact=artifact, error=error)
            self._stages[rank] = stage
        self._notify(stage)
        return stage

    def get(self, rank: int) -> Stage:
        with self._lock:
            return self._stages[rank]

    def snapshot(self) -> list[Stage]:
        with self._lock:
            return [self._stages[rank] for rank in sorted(self._stages)]

    def _notify(self, stage):
        # A failing observer must not stop the remaining stage writes.
        for callback in list(self._observers):
            try:
                callback(stage)
            except Exception:
                log.exception("Stage observer failed", extra={"rank": stage.rank})
