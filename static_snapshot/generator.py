"""Capture decisions and static page output.

Decides per request whether to capture at all, whether an existing page is
still fresh, and otherwise rewrites the HTML, queues its assets and replaces
the captured file.
"""

import logging
import os
import re
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from .assets import AssetStore
from .config import GENERATOR_VERSION, AppConfig
from .files import atomic_write, ensure_within
from .models import CapturedPage, PageMetadata, RequestContext
from .rewriter import PageRewriter
from .url_helper import depth_of, static_file_path

logger = logging.getLogger("static_snapshot")

METADATA_RE = re.compile(r"<!--\s*StaticSnapshot:\s*generated=([^;]+);\s*version=([^\s;]+)\s*-->")
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Page types that are never mirrored.
SKIP_PAGE_TYPES = {"error", "search", "preview", "feed", "comment_feed", "api", "trackback"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def version_key(version: str) -> Tuple[int, ...]:
    return tuple(int(p) for p in re.findall(r"\d+", version))


def parse_metadata(html: str) -> Optional[PageMetadata]:
    m = METADATA_RE.search(html)
    if not m:
        return None
    try:
        generated = datetime.strptime(m.group(1).strip(), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    return PageMetadata(generated_at=generated, generator_version=m.group(2).strip())


class Generator:
    def __init__(self, config: AppConfig, rewriter: PageRewriter, assets: AssetStore,
                 static_dir: str, clock: Callable[[], datetime] = utc_now):
        self.config = config
        self.rewriter = rewriter
        self.assets = assets
        self.static_dir = static_dir
        self.clock = clock

    @staticmethod
    def should_capture(ctx: RequestContext) -> bool:
        """Only anonymous, canonical GET responses are mirrored."""
        return (
            ctx.method.upper() == "GET"
            and not ctx.is_admin
            and not ctx.logged_in
            and ctx.page_type not in SKIP_PAGE_TYPES
        )

    def file_path(self, request_path: str) -> str:
        path = os.path.join(self.static_dir, *static_file_path(request_path).split("/"))
        ensure_within(self.static_dir, path)
        return path

    def read_metadata(self, file_path: str) -> Optional[PageMetadata]:
        if not os.path.exists(file_path):
            return None
        with open(file_path, "r", encoding="utf-8", errors="replace") as f:
            return parse_metadata(f.read())

    def is_stale(self, file_path: str) -> bool:
        name = os.path.relpath(file_path, self.static_dir)
        metadata = self.read_metadata(file_path)

        if metadata is None:
            logger.debug(f"No metadata found, marking stale: {name}")
            return True

        if version_key(metadata.generator_version) < version_key(GENERATOR_VERSION):
            logger.debug(f"Generator upgraded, marking stale: {name} "
                         f"(cached: {metadata.generator_version}, current: {GENERATOR_VERSION})")
            return True

        ttl = self.config.cache.ttl
        if ttl > 0:
            age = (self.clock() - metadata.generated_at).total_seconds()
            if age > ttl:
                logger.debug(f"TTL exceeded, marking stale: {name} (age: {age:.0f}s, ttl: {ttl}s)")
                return True

        return False

    def capture(self, html: str, request_path: str) -> Optional[CapturedPage]:
        """Rewrite and save ``html`` for ``request_path`` unless a fresh copy exists.

        Returns the captured page, or None when the existing copy was fresh.
        Raises OSError / UnsafePathError on filesystem problems.
        """
        file_path = self.file_path(request_path)
        if os.path.exists(file_path) and not self.is_stale(file_path):
            return None

        now = self.clock()
        result = self.rewriter.rewrite(html, request_path, now)
        self.assets.queue(result.assets)
        atomic_write(file_path, result.html.encode("utf-8"))

        logger.info(f"Captured {request_path} -> {os.path.relpath(file_path, self.static_dir)} "
                    f"({len(result.assets)} assets)")
        return CapturedPage(
            request_path=request_path,
            file_path=file_path,
            depth=depth_of(request_path),
            generated_at=now,
            generator_version=GENERATOR_VERSION,
        )
