"""Filesystem helpers scoped to the static tree."""

import logging
import os
import shutil
import tempfile

from .errors import UnsafePathError

logger = logging.getLogger("static_snapshot")


def ensure_within(root: str, path: str) -> str:
    """Return the resolved ``path``, raising UnsafePathError if it leaves ``root``."""
    real_root = os.path.realpath(root)
    resolved = os.path.realpath(path)
    if resolved != real_root and not resolved.startswith(real_root + os.sep):
        raise UnsafePathError(f"{path} resolves outside {root}")
    return resolved


def atomic_write(path: str, data: bytes) -> None:
    """Write to a temp file in the target directory, then rename over ``path``."""
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def count_files(root: str, extension: str = ".html") -> int:
    count = 0
    for _, _, names in os.walk(root):
        count += sum(1 for n in names if n.lower().endswith(extension))
    return count


def directory_size(root: str) -> int:
    size = 0
    for dirpath, _, names in os.walk(root):
        for name in names:
            path = os.path.join(dirpath, name)
            if not os.path.islink(path):
                size += os.path.getsize(path)
    return size


def delete_tree_contents(root: str) -> bool:
    """Empty ``root`` without following symlinks out of it.

    Refuses a symlinked or missing root. Symlinks inside the tree are unlinked,
    never followed.
    """
    if not os.path.isdir(root):
        logger.error(f"Refusing to clear {root}: not a directory")
        return False
    if os.path.islink(root):
        logger.error(f"Refusing to clear symlinked directory: {root}")
        return False

    ok = True
    for name in os.listdir(root):
        path = os.path.join(root, name)
        try:
            if os.path.islink(path) or not os.path.isdir(path):
                os.remove(path)
            else:
                ensure_within(root, path)
                shutil.rmtree(path)
        except (OSError, UnsafePathError) as e:
            logger.error(f"Failed to delete {path}: {e}")
            ok = False
    return ok


def format_bytes(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    elif n < 1024 ** 2:
        return f"{n / 1024:.1f} KB"
    elif n < 1024 ** 3:
        return f"{n / 1024 ** 2:.1f} MB"
    else:
        return f"{n / 1024 ** 3:.2f} GB"
