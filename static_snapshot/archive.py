"""ZIP export of the static tree."""

import logging
import os
import zipfile
from datetime import datetime
from typing import Optional

logger = logging.getLogger("static_snapshot")


def archive_name(now: datetime) -> str:
    return f"static-site-{now.strftime('%Y-%m-%d-%H-%M-%S')}.zip"


def create_archive(static_dir: str, output_path: str) -> Optional[str]:
    """Zip every regular file under ``static_dir``; symlinks are skipped.

    Returns the archive path, or None if the tree does not exist.
    """
    if not os.path.isdir(static_dir):
        logger.error(f"Nothing to archive: {static_dir} does not exist")
        return None

    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    added = 0
    with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for dirpath, dirnames, filenames in os.walk(static_dir):
            dirnames[:] = [d for d in dirnames if not os.path.islink(os.path.join(dirpath, d))]
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                if os.path.islink(path):
                    logger.warning(f"Skipping symlink in archive: {path}")
                    continue
                if name.startswith(".tmp-"):
                    continue
                arcname = os.path.relpath(path, static_dir).replace(os.sep, "/")
                zf.write(path, arcname)
                added += 1

    logger.info(f"Archive created: {output_path} ({added} files)")
    return output_path
