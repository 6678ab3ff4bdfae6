"""Data models for the snapshot pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class CapturedPage:
    request_path: str
    file_path: str
    depth: int
    generated_at: Optional[datetime] = None
    generator_version: str = ""


@dataclass
class AssetReference:
    source_url: str
    derived_filename: str
    state: str = "pending"  # pending, fetched, failed
    local_path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PageMetadata:
    """Generation stamp embedded in a captured page."""
    generated_at: datetime
    generator_version: str


@dataclass
class RequestContext:
    """What the host knows about the request that produced the HTML."""
    path: str = "/"
    method: str = "GET"
    is_admin: bool = False
    logged_in: bool = False
    # normal, error, search, preview, feed, api, trackback
    page_type: str = "normal"


@dataclass
class RewriteResult:
    html: str
    assets: List[str] = field(default_factory=list)


@dataclass
class BatchResult:
    processed: int = 0
    failed: int = 0
    remaining: int = 0

    def as_dict(self) -> dict:
        return {"processed": self.processed, "failed": self.failed, "remaining": self.remaining}
