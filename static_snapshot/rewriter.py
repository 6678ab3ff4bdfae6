"""Page rewriter: turns live-server HTML into a page that works from the static tree.

Asset references become ``<depth prefix>assets/<filename>``, internal links
become ``<depth prefix><path>/index.html``, and framework-only tags are
stripped. Every step is isolated; a step that fails leaves its part of the
document as it was.
"""

import logging
import re
from datetime import datetime
from typing import Callable, List, Optional
from urllib.parse import urlsplit, urlunsplit

from bs4 import BeautifulSoup, Comment
from bs4.element import Tag

from .assets import CSS_IMPORT_RE, CSS_URL_RE
from .config import GENERATOR_VERSION, CleanupConfig
from .models import RewriteResult
from .url_helper import (
    absolute, depth_of, depth_prefix, derive_filename, is_same_origin, is_special,
    normalize_path, path_segments, static_file_path,
)

logger = logging.getLogger("static_snapshot")

ICON_EXT_RE = re.compile(r"\.(?:ico|png|svg|gif|jpe?g|webp|avif)$", re.IGNORECASE)
PRELOAD_TYPES = {"style", "font", "image", "script"}
SOCIAL_IMAGE_KEYS = {"og:image", "twitter:image"}
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")

METADATA_TEMPLATE = " StaticSnapshot: generated={generated}; version={version} "


class PageRewriter:
    def __init__(self, site_url: str, name_for: Callable[[str], str],
                 cleanup: Optional[CleanupConfig] = None):
        self.site_url = site_url.rstrip("/")
        self.name_for = name_for
        self.cleanup = cleanup or CleanupConfig()

    def rewrite(self, html: str, request_path: str, now: datetime) -> RewriteResult:
        try:
            soup = BeautifulSoup(html, "html.parser")
        except Exception as e:
            logger.warning(f"Could not parse HTML for {request_path}: {e}")
            return RewriteResult(html=html)

        page = _Page(self, soup, request_path)
        for step in (page.strip_framework_tags, page.rewrite_assets,
                     page.rewrite_inline_css, page.rewrite_links):
            try:
                step()
            except Exception as e:
                logger.warning(f"{step.__name__} failed for {request_path}: {e}")

        try:
            page.inject_metadata(now)
        except Exception as e:
            logger.warning(f"Metadata injection failed for {request_path}: {e}")

        return RewriteResult(html=str(soup), assets=page.assets)


class _Page:
    """Rewrite state for one document."""

    def __init__(self, rewriter: PageRewriter, soup: BeautifulSoup, request_path: str):
        self.rewriter = rewriter
        self.soup = soup
        self.site_url = rewriter.site_url
        self.prefix = depth_prefix(depth_of(request_path))
        segments = path_segments(request_path)
        self.page_url = self.site_url + "/" + "".join(s + "/" for s in segments)
        base = soup.find("base", href=True)
        if base is not None:
            self.page_url = absolute(base["href"], self.page_url)
        self.assets: List[str] = []
        self._seen = set()

    # -- helpers -------------------------------------------------------

    def _resolve(self, raw: Optional[str]) -> Optional[str]:
        """Absolute same-origin URL for ``raw``, or None if it must be left alone."""
        if not raw or is_special(raw):
            return None
        abs_url = normalize_path(absolute(raw.strip(), self.page_url))
        if not is_same_origin(abs_url, self.site_url):
            return None
        return abs_url

    def _localize(self, raw: Optional[str]) -> Optional[str]:
        abs_url = self._resolve(raw)
        if abs_url is None:
            return None
        if abs_url not in self._seen:
            self._seen.add(abs_url)
            self.assets.append(abs_url)
        return self.prefix + "assets/" + self.rewriter.name_for(abs_url)

    def _rewrite_attr(self, tag: Tag, attr: str, media: bool = False):
        value = tag.get(attr)
        if not isinstance(value, str):
            return
        # audio/video payloads stay on the live server
        if media:
            abs_url = self._resolve(value)
            if abs_url is None or derive_filename(abs_url).endswith(".dat"):
                return
        local = self._localize(value)
        if local:
            tag[attr] = local
            for stale in ("integrity", "crossorigin"):
                if stale in tag.attrs:
                    del tag.attrs[stale]

    def _rewrite_srcset(self, tag: Tag):
        value = tag.get("srcset")
        if not isinstance(value, str) or not value.strip():
            return
        parts = []
        for candidate in SRCSET_SPLIT_RE.split(value.strip()):
            if not candidate:
                continue
            comp = WS_RE.split(candidate.strip())
            url_part, descriptor = comp[0], " ".join(comp[1:])
            local = self._localize(url_part)
            parts.append(f"{local or url_part} {descriptor}".strip())
        tag["srcset"] = ", ".join(parts)

    def _rewrite_css_text(self, css: str) -> str:
        def repl_url(m: re.Match) -> str:
            local = self._localize(m.group(2))
            if not local:
                return m.group(0)
            q = m.group(1)
            return f"url({q}{local}{q})"

        def repl_import(m: re.Match) -> str:
            local = self._localize(m.group(2))
            if not local:
                return m.group(0)
            return f'@import "{local}"'

        css = CSS_URL_RE.sub(repl_url, css)
        return CSS_IMPORT_RE.sub(repl_import, css)

    @staticmethod
    def _rels(tag: Tag) -> List[str]:
        rel = tag.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        return [r.lower() for r in rel]

    # -- steps ---------------------------------------------------------

    def strip_framework_tags(self):
        cleanup = self.rewriter.cleanup
        strip_rels = {r.lower() for r in cleanup.strip_rels}

        for link in self.soup.find_all("link"):
            if strip_rels & set(self._rels(link)):
                link.decompose()

        if cleanup.strip_meta_generator:
            for meta in self.soup.find_all("meta", attrs={"name": re.compile("^generator$", re.I)}):
                meta.decompose()

        markers = cleanup.strip_script_markers
        if markers:
            for script in self.soup.find_all("script"):
                body = (script.get("src") or "") + (script.string or "")
                if any(marker in body for marker in markers):
                    script.decompose()

        for attr in cleanup.strip_attributes:
            for tag in self.soup.find_all(attrs={attr: True}):
                del tag.attrs[attr]

    def rewrite_assets(self):
        for link in self.soup.find_all("link", href=True):
            rels = self._rels(link)
            href = link["href"]
            path = href.split("?", 1)[0].split("#", 1)[0]
            is_css = "stylesheet" in rels or path.lower().endswith(".css")
            is_icon = any("icon" in r for r in rels) or bool(ICON_EXT_RE.search(path))
            as_type = (link.get("as") or "").lower()
            is_preload = "modulepreload" in rels or (
                "preload" in rels and (as_type in PRELOAD_TYPES or path.lower().endswith(".js")))
            if is_css or is_icon or is_preload:
                self._rewrite_attr(link, "href")

        for script in self.soup.find_all("script", src=True):
            self._rewrite_attr(script, "src")

        for img in self.soup.find_all(["img", "input"]):
            if img.name == "input" and (img.get("type") or "").lower() != "image":
                continue
            self._rewrite_attr(img, "src")
            self._rewrite_srcset(img)

        for source in self.soup.find_all("source"):
            self._rewrite_srcset(source)
            self._rewrite_attr(source, "src", media=True)

        for video in self.soup.find_all("video"):
            self._rewrite_attr(video, "poster")
            self._rewrite_attr(video, "src", media=True)

        for meta in self.soup.find_all("meta", content=True):
            key = (meta.get("property") or meta.get("name") or "").lower()
            if key in SOCIAL_IMAGE_KEYS:
                self._rewrite_attr(meta, "content")

    def rewrite_inline_css(self):
        for tag in self.soup.find_all(style=True):
            css = tag["style"]
            new_css = self._rewrite_css_text(css)
            if new_css != css:
                tag["style"] = new_css

        for style in self.soup.find_all("style"):
            if style.string:
                new_text = self._rewrite_css_text(str(style.string))
                if new_text != style.string:
                    style.string.replace_with(new_text)

    def rewrite_links(self):
        for a in self.soup.find_all("a", href=True):
            href = a["href"]
            abs_url = self._resolve(href)
            if abs_url is None:
                continue

            parts = urlsplit(abs_url)
            target = urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))
            frag = "#" + parts.fragment if parts.fragment else ""

            if _has_file_extension(parts.path) and not derive_filename(target).endswith(".dat"):
                # direct links to documents and images point into assets/
                a["href"] = self._localize(target) + frag
                continue

            query = "?" + parts.query if parts.query else ""
            a["href"] = self.prefix + static_file_path(parts.path) + query + frag

    def inject_metadata(self, now: datetime):
        stamp = now.strftime("%Y-%m-%dT%H:%M:%SZ")
        nodes = [
            Comment(METADATA_TEMPLATE.format(generated=stamp, version=GENERATOR_VERSION)),
            Comment(f" Static version generated: {now.strftime('%Y-%m-%d %H:%M:%S')} "),
            Comment(" To use offline: extract the ZIP and open index.html in a browser "),
        ]
        target = self.soup.body or self.soup
        for node in nodes:
            target.append("\n")
            target.append(node)
        target.append("\n")


def _has_file_extension(path: str) -> bool:
    last = path.rstrip("/").rsplit("/", 1)[-1]
    return not path.endswith("/") and "." in last
