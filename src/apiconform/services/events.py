"""Shared event types for pipeline progress reporting."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from apiconform.constants import STAGE_LABELS, StageProgress


@dataclass(frozen=True)
class StageEvent:
    """Typed event emitted during pipeline progress."""

    name: str
    status: StageProgress
    message: str = ""
    duration_ms: float = 0.0
    # Progress fields (present during the export stage)
    completed: int | None = None
    total: int | None = None

    @property
    def label(self) -> str:
        """User-friendly display label from STAGE_LABELS."""
        return STAGE_LABELS[self.name]

    @property
    def percent(self) -> float | None:
        if self.completed is None or not self.total:
            return None
        return round(100 * self.completed / self.total, 1)


type ProgressCallback = Callable[[StageEvent], None]
