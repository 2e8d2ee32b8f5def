"""
Pipeline configuration: the settings surface consumed by the orchestrator.

Populated by the CLI (or any other caller) and validated before any
network activity starts.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from nhk_vod.config.constants import (
    BROWSER_HEADLESS,
    CLEANUP_STAGING,
    DOWNLOAD_BACKOFF_BASE,
    DOWNLOAD_RETRIES,
    HTTP_TIMEOUT,
    IDENTIFIER_WAIT_TIMEOUT,
    MAX_CONCURRENT_DOWNLOADS,
    PIPELINE_OUTPUT_DIR,
)


class PipelineConfig(BaseModel):
    """Settings for a single download job."""

    source_page_url: Optional[str] = Field(None, description="NHK VOD page to resolve")
    identifier: Optional[str] = Field(
        None, description="Pre-resolved content identifier; skips the browser"
    )
    output_dir: str = Field(default=PIPELINE_OUTPUT_DIR, min_length=1)
    skip_merge: bool = Field(default=False)
    headless: bool = Field(default=BROWSER_HEADLESS)
    cleanup: bool = Field(default=CLEANUP_STAGING)
    max_workers: int = Field(default=MAX_CONCURRENT_DOWNLOADS, ge=1, le=64)
    retries: int = Field(default=DOWNLOAD_RETRIES, ge=0, le=10)
    backoff_base: float = Field(default=DOWNLOAD_BACKOFF_BASE, ge=0)
    timeout: float = Field(default=HTTP_TIMEOUT, gt=0)
    identifier_timeout: float = Field(default=IDENTIFIER_WAIT_TIMEOUT, gt=0)

    @model_validator(mode="after")
    def validate_source(self) -> PipelineConfig:
        if not self.source_page_url and not self.identifier:
            raise ValueError("Either source_page_url or identifier is required")
        if self.identifier is not None and not self.identifier.strip():
            raise ValueError("identifier must not be blank")
        if self.source_page_url and not self.source_page_url.startswith(("http://", "https://")):
            raise ValueError(f"source_page_url must be an http(s) URL: {self.source_page_url}")
        return self
