"""Entry points for hosts, the CLI and the HTTP API.

``StaticSite`` wires the asset store, page rewriter and capture generator
together around one key-value store and one scheduler, and owns the static
tree on disk.
"""

import logging
import os
from datetime import datetime
from typing import Callable, Optional

from .archive import archive_name, create_archive
from .assets import PROCESS_JOB, AssetStore
from .config import AppConfig
from .db import KeyValueStore
from .downloader import Downloader
from .errors import SnapshotError
from .files import count_files, delete_tree_contents, directory_size, format_bytes
from .generator import Generator, utc_now
from .models import BatchResult, CapturedPage, RequestContext
from .rewriter import PageRewriter
from .scheduler import Scheduler, ThreadScheduler

logger = logging.getLogger("static_snapshot")

ENABLED_KEY = "enabled"


class StaticSite:
    def __init__(self, config: AppConfig, store: KeyValueStore,
                 scheduler: Optional[Scheduler] = None,
                 downloader: Optional[Downloader] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.config = config
        self.store = store
        self.clock = clock
        self.static_dir = os.path.abspath(config.static_dir)
        self.assets_dir = os.path.join(self.static_dir, "assets")

        if scheduler is None:
            scheduler = ThreadScheduler()
        if isinstance(scheduler, ThreadScheduler):
            scheduler.register(PROCESS_JOB, self.run_background_batch)
        self.scheduler = scheduler

        self.downloader = downloader or Downloader(config.download)
        self.assets = AssetStore(config, store, self.downloader, scheduler, self.assets_dir)
        self.rewriter = PageRewriter(config.site_url, self.assets.local_name, config.cleanup)
        self.generator = Generator(config, self.rewriter, self.assets, self.static_dir, clock)

        self.create_directories()

    def create_directories(self):
        for directory in (self.static_dir, self.assets_dir):
            os.makedirs(directory, exist_ok=True)

    def close(self):
        self.downloader.close()
        if isinstance(self.scheduler, ThreadScheduler):
            self.scheduler.cancel_all()

    # -- toggle --------------------------------------------------------

    def is_enabled(self) -> bool:
        return bool(self.store.get(ENABLED_KEY, False))

    def set_enabled(self, enabled: bool):
        self.store.set(ENABLED_KEY, bool(enabled))
        logger.info(f"Static generation {'enabled' if enabled else 'disabled'}")

    def enable(self):
        self.set_enabled(True)

    def disable(self):
        self.set_enabled(False)

    # -- capture -------------------------------------------------------

    def capture(self, html: str, request_path: str,
                ctx: Optional[RequestContext] = None) -> Optional[CapturedPage]:
        """Post-render hook. Never raises and never changes what the requester receives."""
        ctx = ctx or RequestContext(path=request_path)
        try:
            if not self.is_enabled() or not self.generator.should_capture(ctx):
                return None
            return self.generator.capture(html, request_path)
        except (OSError, SnapshotError) as e:
            logger.error(f"Capture of {request_path} abandoned: {e}")
        except Exception as e:
            # store, scheduler or parser failures must not reach the host response
            logger.exception(f"Unexpected error capturing {request_path}: {e}")
        return None

    # -- batches -------------------------------------------------------

    def process_pending_batch(self, max_n: Optional[int] = None) -> BatchResult:
        """Small synchronous batch for interactive "process now" callers."""
        return self.assets.drain_batch(max_n or self.config.batch.interactive_size)

    def run_background_batch(self) -> BatchResult:
        result = self.assets.drain_batch(self.config.batch.background_size)
        logger.info(f"Background batch: {result.processed} processed, "
                    f"{result.failed} failed, {result.remaining} remaining")
        return result

    def process_all(self, batch_size: Optional[int] = None,
                    progress: Optional[Callable[[BatchResult], None]] = None) -> BatchResult:
        """Drain the whole backlog one bounded batch at a time."""
        total = BatchResult(remaining=len(self.assets.pending()))
        while total.remaining:
            result = self.assets.drain_batch(batch_size or self.config.batch.background_size)
            total.processed += result.processed
            total.failed += result.failed
            total.remaining = result.remaining
            if progress:
                progress(result)
            if not result.processed and not result.failed:
                break
        return total

    # -- maintenance ---------------------------------------------------

    def clear_all(self) -> bool:
        """Delete captured pages and assets and reset the asset queues."""
        ok = delete_tree_contents(self.static_dir) if os.path.isdir(self.static_dir) else True
        self.assets.clear_state()
        self.create_directories()
        logger.info("Cleared static tree and asset state")
        return ok

    def create_archive(self, output: Optional[str] = None) -> Optional[str]:
        if output is None:
            output = os.path.join(self.config.archive_dir, archive_name(self.clock()))
        return create_archive(self.static_dir, output)

    def static_tree_root(self) -> str:
        return self.static_dir

    def asset_root(self) -> str:
        return self.assets_dir

    def file_count(self) -> int:
        return count_files(self.static_dir, ".html")

    def tree_size_bytes(self) -> int:
        return directory_size(self.static_dir)

    def status(self) -> dict:
        size = self.tree_size_bytes()
        return {
            "enabled": self.is_enabled(),
            "static_files": self.file_count(),
            "total_size_bytes": size,
            "total_size": format_bytes(size),
            "pending_assets": len(self.assets.pending()),
            "downloaded_assets": len(self.assets.downloaded()),
            "static_dir": self.static_dir,
            "assets_dir": self.assets_dir,
        }
