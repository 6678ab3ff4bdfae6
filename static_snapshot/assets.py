"""Asset store: naming, fetching, nested CSS/JS localization, and the durable queue.

All localized assets live in one flat directory, so references inside a
fetched stylesheet are rewritten to the bare filename and references inside
a script to ``/assets/<filename>``. Only page HTML needs depth-relative paths.
"""

import logging
import os
import re
from typing import Iterable, List, Optional, Set
from urllib.parse import urlsplit

from .config import AppConfig
from .db import KeyValueStore
from .downloader import Downloader
from .errors import FetchError, UnsafePathError
from .files import atomic_write, ensure_within
from .models import AssetReference, BatchResult
from .scheduler import Scheduler
from .url_helper import (
    absolute, derive_filename, extension_of, hash_filename, is_same_origin,
    is_special, normalize_path,
)

logger = logging.getLogger("static_snapshot")

PENDING_KEY = "pending_assets"
DOWNLOADED_KEY = "downloaded_assets"
FAILED_KEY = "failed_assets"
NAMES_KEY = "asset_names"
PROCESS_JOB = "process_assets"

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"@import\s+([\"'])([^\"']+)\1", re.IGNORECASE)
JS_ASSET_EXTS = r"png|jpe?g|gif|svg|webp|avif|ico|woff2?|ttf|otf|eot"

TYPE_EXTENSIONS = {
    "text/css": "css",
    "text/javascript": "js",
    "application/javascript": "js",
    "application/x-javascript": "js",
}


class AssetStore:
    def __init__(self, config: AppConfig, store: KeyValueStore, downloader: Downloader,
                 scheduler: Scheduler, asset_dir: str):
        self.config = config
        self.store = store
        self.downloader = downloader
        self.scheduler = scheduler
        self.asset_dir = asset_dir
        self.site_url = config.site_url.rstrip("/")
        host = re.escape(urlsplit(self.site_url).netloc)
        self._js_url_re = re.compile(
            r"([\"'`])((?:https?:)?//" + host + r"/[^\"'`\s]*?\.(?:" + JS_ASSET_EXTS + r"))\1",
            re.IGNORECASE,
        )

    # -- naming --------------------------------------------------------

    def local_name(self, url: str) -> str:
        """Derived filename for ``url``, or the hash name if another URL already owns it."""
        name = derive_filename(url)
        if name.endswith(".dat"):
            return name

        owners = self.store.get(NAMES_KEY, {})
        owner = owners.get(name)
        if owner is None:
            owners[name] = url
            self.store.set(NAMES_KEY, owners)
            return name
        if owner == url:
            return name

        logger.debug(f"Filename {name} already taken by {owner}, using hash name for {url}")
        return hash_filename(url)

    def local_path(self, url: str) -> str:
        path = os.path.join(self.asset_dir, self.local_name(url))
        ensure_within(self.asset_dir, path)
        return path

    def reference(self, url: str) -> AssetReference:
        name = self.local_name(url)
        path = os.path.join(self.asset_dir, name)
        if url in self.store.get(DOWNLOADED_KEY, []) and os.path.exists(path):
            return AssetReference(url, name, state="fetched", local_path=path)
        return AssetReference(url, name)

    # -- fetching ------------------------------------------------------

    def ensure_local(self, url: str) -> Optional[str]:
        """Local path of ``url``, fetching it first if needed. None on terminal failure."""
        try:
            return self._localize(url, 0, set())
        except (FetchError, UnsafePathError, OSError) as e:
            logger.error(f"Failed to localize {url}: {e}")
            return None

    def _localize(self, url: str, depth: int, active: Set[str]) -> str:
        dest = self.local_path(url)
        if url in active:
            return dest

        if os.path.exists(dest):
            self._mark_downloaded(url)
            return dest

        active.add(url)
        try:
            body, content_type = self.downloader.fetch_typed(url)
            ext = extension_of(dest)
            # hash-named assets (style.php, ?custom-css=1) fall back to the served type
            if ext == "dat":
                ext = TYPE_EXTENSIONS.get(content_type, ext)
            if ext == "css":
                text = body.decode("utf-8", "surrogateescape")
                body = self.rewrite_css(text, url, depth, active).encode("utf-8", "surrogateescape")
            elif ext == "js":
                text = body.decode("utf-8", "surrogateescape")
                body = self.rewrite_js(text, depth, active).encode("utf-8", "surrogateescape")

            atomic_write(dest, body)
        finally:
            active.discard(url)

        self._mark_downloaded(url)
        logger.info(f"Downloaded: {url} -> {os.path.basename(dest)} ({len(body):,} bytes)")
        return dest

    def _nested(self, url: str, depth: int, active: Set[str]) -> Optional[str]:
        if depth > self.config.download.max_nested_depth:
            self.queue([url])
            return self.local_name(url)
        try:
            return os.path.basename(self._localize(url, depth, active))
        except (FetchError, UnsafePathError, OSError) as e:
            logger.warning(f"Nested asset {url} not localized: {e}")
            return None

    def _mark_downloaded(self, url: str):
        downloaded = self.store.get(DOWNLOADED_KEY, [])
        if url not in downloaded:
            downloaded.append(url)
            self.store.set(DOWNLOADED_KEY, downloaded)

    # -- payload rewriting ---------------------------------------------

    def rewrite_css(self, css: str, css_url: str, depth: int = 0,
                    active: Optional[Set[str]] = None) -> str:
        """Localize ``url(...)`` and ``@import "..."`` references, relative to the stylesheet's own URL."""
        active = active if active is not None else set()

        def resolve(raw: str) -> Optional[str]:
            raw = raw.strip()
            if is_special(raw):
                return None
            abs_url = normalize_path(absolute(raw, css_url))
            if not is_same_origin(abs_url, self.site_url):
                return None
            return self._nested(abs_url, depth + 1, active)

        def repl_url(m: re.Match) -> str:
            name = resolve(m.group(2))
            if not name:
                return m.group(0)
            q = m.group(1)
            return f"url({q}{name}{q})"

        def repl_import(m: re.Match) -> str:
            name = resolve(m.group(2))
            if not name:
                return m.group(0)
            return f'@import "{name}"'

        css = CSS_URL_RE.sub(repl_url, css)
        return CSS_IMPORT_RE.sub(repl_import, css)

    def rewrite_js(self, js: str, depth: int = 0, active: Optional[Set[str]] = None) -> str:
        """Localize quoted same-origin image and font URLs hard-coded in a script."""
        active = active if active is not None else set()

        def repl(m: re.Match) -> str:
            q = m.group(1)
            abs_url = normalize_path(absolute(m.group(2), self.site_url))
            name = self._nested(abs_url, depth + 1, active)
            if not name:
                return m.group(0)
            return f"{q}/assets/{name}{q}"

        return self._js_url_re.sub(repl, js)

    # -- queue ---------------------------------------------------------

    def pending(self) -> List[str]:
        return list(self.store.get(PENDING_KEY, []))

    def downloaded(self) -> List[str]:
        return list(self.store.get(DOWNLOADED_KEY, []))

    def queue(self, urls: Iterable[str]) -> int:
        """Merge ``urls`` into the pending set and make sure a batch job is scheduled."""
        pending = self.pending()
        known = set(pending) | set(self.downloaded())
        added = 0
        for url in urls:
            if url not in known:
                pending.append(url)
                known.add(url)
                added += 1

        if added:
            self.store.set(PENDING_KEY, pending)
            logger.debug(f"Queued {added} assets ({len(pending)} pending)")

        if pending and not self.scheduler.is_scheduled(PROCESS_JOB):
            self.scheduler.defer(PROCESS_JOB, self.config.batch.initial_delay)
        return added

    def drain_batch(self, max_n: int) -> BatchResult:
        """Localize up to ``max_n`` pending URLs.

        A URL leaves the pending set only after its outcome is known, so a
        crash mid-batch never loses it.
        """
        result = BatchResult()
        for url in self.pending()[:max_n]:
            ok = self.ensure_local(url) is not None
            self._settle(url, ok)
            if ok:
                result.processed += 1
            else:
                result.failed += 1

        result.remaining = len(self.pending())
        if result.remaining and not self.scheduler.is_scheduled(PROCESS_JOB):
            self.scheduler.defer(PROCESS_JOB, self.config.batch.reschedule_delay)
        return result

    def _settle(self, url: str, ok: bool):
        pending = [u for u in self.pending() if u != url]
        failures = self.store.get(FAILED_KEY, {})

        if ok:
            if failures.pop(url, None) is not None:
                self.store.set(FAILED_KEY, failures)
        else:
            count = failures.get(url, 0) + 1
            failures[url] = count
            self.store.set(FAILED_KEY, failures)
            if self.config.batch.failure_policy == "requeue" and count < self.config.batch.max_requeues:
                pending.append(url)
                logger.info(f"Requeued {url} (failure {count}/{self.config.batch.max_requeues})")
            else:
                logger.error(f"Giving up on {url} after {count} failed batch(es)")

        if pending:
            self.store.set(PENDING_KEY, pending)
        else:
            self.store.delete(PENDING_KEY)

    def clear_state(self):
        for key in (PENDING_KEY, DOWNLOADED_KEY, FAILED_KEY, NAMES_KEY):
            self.store.delete(key)
