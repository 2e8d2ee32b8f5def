"""
Pipeline state: the coordinator's state machine and run record.

PipelineStage enumerates the states; PipelineState records the current
stage, the transitions taken, and the intermediate results of a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from nhk_vod.exceptions import PipelineError, ProcessingError


class PipelineStage(Enum):
    """Processing stage of a single download job."""

    IDLE = "idle"
    RESOLVING_IDENTIFIER = "resolving_identifier"
    RESOLVING_PLAYLIST = "resolving_playlist"
    ENUMERATING = "enumerating"
    FETCHING = "fetching"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


_TERMINAL = {PipelineStage.DONE, PipelineStage.FAILED}

_ALLOWED: dict[PipelineStage, set[PipelineStage]] = {
    PipelineStage.IDLE: {PipelineStage.RESOLVING_IDENTIFIER, PipelineStage.RESOLVING_PLAYLIST},
    PipelineStage.RESOLVING_IDENTIFIER: {PipelineStage.RESOLVING_PLAYLIST},
    PipelineStage.RESOLVING_PLAYLIST: {PipelineStage.ENUMERATING},
    PipelineStage.ENUMERATING: {PipelineStage.FETCHING},
    # skip-merge ends the run straight after fetching
    PipelineStage.FETCHING: {PipelineStage.ASSEMBLING, PipelineStage.DONE},
    PipelineStage.ASSEMBLING: {PipelineStage.DONE},
}


@dataclass
class PipelineState:
    """Top-level state for a single pipeline run."""

    run_id: str = ""
    stage: PipelineStage = PipelineStage.IDLE
    output_dir: Path = field(default_factory=lambda: Path("."))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Stage outputs
    identifier: Optional[str] = None
    variant_playlist_url: Optional[str] = None
    segment_urls: list[str] = field(default_factory=list)
    staged_paths: list[str] = field(default_factory=list)
    output_path: Optional[Path] = None

    history: list[PipelineStage] = field(default_factory=lambda: [PipelineStage.IDLE])
    errors: list[ProcessingError] = field(default_factory=list)

    def advance(self, stage: PipelineStage) -> None:
        """Move to ``stage``; FAILED is reachable from any non-terminal stage."""
        if self.stage in _TERMINAL:
            raise PipelineError(
                f"Cannot leave terminal stage {self.stage.value} for {stage.value}"
            )
        if stage != PipelineStage.FAILED and stage not in _ALLOWED.get(self.stage, set()):
            raise PipelineError(
                f"Invalid transition: {self.stage.value} -> {stage.value}"
            )
        self.stage = stage
        self.history.append(stage)

    @property
    def is_terminal(self) -> bool:
        return self.stage in _TERMINAL

    @property
    def failed(self) -> bool:
        return self.stage == PipelineStage.FAILED
