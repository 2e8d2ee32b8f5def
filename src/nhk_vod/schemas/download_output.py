"""
Stage 3/4 output contracts: Segment Fetcher and Assembler.

Defines SegmentResult, FetchReport, AssemblyResult and the top-level
PipelineResult returned by the orchestrator.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator


class SegmentResult(BaseModel):
    """A single segment persisted to the staging directory."""

    index: int = Field(..., ge=0, description="Position in the media playlist")
    url: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1, description="Local staged file")
    size_bytes: int = Field(..., ge=0)
    attempts: int = Field(default=1, ge=1)


class FetchReport(BaseModel):
    """Result of downloading every segment of one playlist."""

    identifier: str = Field(..., min_length=1)
    staging_dir: str = Field(..., min_length=1)
    segments: list[SegmentResult] = Field(default_factory=list)
    total_bytes: int = Field(default=0, ge=0)
    duration_seconds: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def validate_segment_order(self) -> FetchReport:
        for position, segment in enumerate(self.segments):
            if segment.index != position:
                raise ValueError(
                    f"segments must be in playlist order: slot {position} "
                    f"holds segment {segment.index}"
                )
        return self

    @property
    def paths(self) -> list[str]:
        return [s.path for s in self.segments]


class AssemblyResult(BaseModel):
    """The single output artifact produced by the Assembler."""

    output_path: str = Field(..., min_length=1)
    segment_count: int = Field(..., ge=0)
    total_bytes: int = Field(..., ge=0)


class PipelineResult(BaseModel):
    """Top-level output contract for one pipeline run."""

    identifier: str = Field(..., min_length=1)
    variant_playlist_url: str = Field(..., min_length=1)
    segment_count: int = Field(..., ge=1)
    fetch_report: FetchReport = Field(...)
    assembly: Optional[AssemblyResult] = Field(None, description="None when merge is skipped")
    merged: bool = Field(...)
    cleaned_up: bool = Field(default=False)
    duration_seconds: float = Field(default=0.0, ge=0)
    summary: str = Field(..., min_length=10, description="Human-readable summary")
    stage_history: list[str] = Field(
        default_factory=list, description="Pipeline stages visited, starting at idle"
    )

    @model_validator(mode="after")
    def validate_merge_consistency(self) -> PipelineResult:
        if self.merged and self.assembly is None:
            raise ValueError("Merged result must have an assembly")
        if not self.merged and self.assembly is not None:
            raise ValueError("Unmerged result cannot have an assembly")
        if not self.merged and self.cleaned_up:
            raise ValueError("Staged segments are the deliverable when merge is skipped")
        if len(self.fetch_report.segments) != self.segment_count:
            raise ValueError(
                f"fetch_report segments ({len(self.fetch_report.segments)}) must match "
                f"segment_count ({self.segment_count})"
            )
        return self
