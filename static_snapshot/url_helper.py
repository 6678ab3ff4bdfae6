"""URL and path helpers: resolution, same-origin checks, depth and safe asset filenames.

Every function here is pure. ``derive_filename`` is the main defence against
hostile input: asset URLs come out of page HTML, stylesheets and scripts that
the site's contributors control, so every path through it ends in either a
validated name or the hash fallback.
"""

import hashlib
import logging
import posixpath
import re
from typing import List
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit

logger = logging.getLogger("static_snapshot")

# Video and audio are left on the live server to bound disk usage.
ALLOWED_EXTENSIONS = {
    "css",
    "js",
    "jpg", "jpeg", "png", "gif", "svg", "webp", "avif", "ico", "bmp",
    "woff", "woff2", "ttf", "otf", "eot",
    "pdf",
}

DANGEROUS_EXTENSIONS = {
    "php", "phtml", "php3", "php4", "php5", "phps", "pht", "phar",
    "sh", "bash", "cgi", "pl", "py", "exe", "bat", "com",
}

SPECIAL_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "blob:")

MAX_FILENAME = 255
MAX_VERSION = 20

_FILENAME_SPECIAL_CHARS = set("?[]/\\=<>:;,'\"&$#*()|~`!{}%+’«»”“")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_WS_RE = re.compile(r"\s+")
_DASHES_RE = re.compile(r"-{2,}")
_VER_RE = re.compile(r"(?:^|&)ver=([^&]+)", re.IGNORECASE)
_SEGMENT_RE = re.compile(r"[^A-Za-z0-9._-]")


def absolute(url: str, base: str) -> str:
    """Resolve ``url`` against ``base``; absolute http(s) URLs come back untouched."""
    url = url.strip()
    if url.startswith("//"):
        scheme = urlsplit(base).scheme or "https"
        return f"{scheme}:{url}"
    if re.match(r"^https?://", url, re.IGNORECASE):
        return url
    return urljoin(base, url)


def is_special(url: str) -> bool:
    u = url.strip().lower()
    return not u or u.startswith("#") or u.startswith(SPECIAL_SCHEMES)


def is_same_origin(url: str, base: str) -> bool:
    if is_special(url):
        return False
    site_host = urlsplit(base).hostname
    if not site_host:
        return False
    host = urlsplit(absolute(url, base)).hostname
    return (host or "").lower() == site_host.lower()


def normalize_path(url: str) -> str:
    """Collapse ``.`` and ``..`` path segments. ``..`` above the root is discarded."""
    parts = urlsplit(url)
    if not parts.path:
        return url

    stack: List[str] = []
    for segment in parts.path.split("/"):
        if segment == "..":
            if stack:
                stack.pop()
        elif segment not in (".", ""):
            stack.append(segment)

    path = "/" + "/".join(stack)
    if stack and parts.path.endswith("/"):
        path += "/"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def path_segments(request_path: str) -> List[str]:
    """Filesystem-safe segments of a request path; traversal segments are dropped."""
    path = urlsplit(request_path or "/").path
    segments = []
    for raw in path.split("/"):
        seg = _SEGMENT_RE.sub("", raw)
        if seg in ("", ".", ".."):
            continue
        segments.append(seg)
    return segments


def depth_of(request_path: str) -> int:
    return len(path_segments(request_path))


def depth_prefix(depth: int) -> str:
    return "../" * depth


def static_file_path(request_path: str) -> str:
    """Relative location of the captured page, always ``.../index.html``."""
    segments = path_segments(request_path)
    return posixpath.join(*segments, "index.html") if segments else "index.html"


def sanitize_file_name(name: str) -> str:
    name = "".join(c for c in name if c not in _FILENAME_SPECIAL_CHARS)
    name = _CONTROL_RE.sub("", name)
    name = _WS_RE.sub("-", name)
    name = _DASHES_RE.sub("-", name)
    return name.strip(".-_")


def hash_filename(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest() + ".dat"


def extension_of(name: str) -> str:
    _, dot, ext = name.rpartition(".")
    return ext.lower() if dot else ""


def has_dangerous_pattern(name: str) -> bool:
    if ".." in name or "/" in name or "\\" in name:
        return True
    if _CONTROL_RE.search(name):
        return True
    # executable extensions hidden anywhere after the first dot
    return any(seg.lower() in DANGEROUS_EXTENSIONS for seg in name.split(".")[1:])


def _version_token(query: str) -> str:
    m = _VER_RE.search(query or "")
    if not m:
        return ""
    ver = sanitize_file_name(unquote(m.group(1)))
    for bad in ("..", "/", "\\"):
        ver = ver.replace(bad, "")
    ver = ver[:MAX_VERSION].strip(".-_")
    if not ver or not re.fullmatch(r"[A-Za-z0-9._-]+", ver) or not re.search(r"[A-Za-z0-9]", ver):
        return ""
    return ver


def derive_filename(url: str) -> str:
    """Local asset filename for ``url``: deterministic, flat, and safe to join onto a directory."""
    parts = urlsplit(url)
    path = unquote(parts.path)
    if not path:
        return hash_filename(url)

    if "\0" in path or "\\" in path or ".." in path.split("/"):
        logger.debug(f"Traversal in asset path, using hash name: {url}")
        return hash_filename(url)

    base = path.rsplit("/", 1)[-1]
    if base in ("", ".", ".."):
        return hash_filename(url)

    ext = extension_of(base)
    if ext not in ALLOWED_EXTENSIONS:
        logger.debug(f"Extension {ext!r} not allowed, using hash name: {url}")
        return hash_filename(url)

    base = sanitize_file_name(base)

    ver = _version_token(parts.query)
    if ver:
        stem, dot, suffix = base.rpartition(".")
        base = f"{stem}.{ver}.{suffix}" if dot else f"{base}.{ver}"
        base = sanitize_file_name(base)

    if not base or has_dangerous_pattern(base):
        logger.debug(f"Dangerous filename pattern, using hash name: {url}")
        return hash_filename(url)

    final_ext = extension_of(base)
    if final_ext not in ALLOWED_EXTENSIONS:
        return hash_filename(url)

    if len(base) > MAX_FILENAME:
        suffix = "." + final_ext
        base = base[:MAX_FILENAME - len(suffix)] + suffix

    return base
