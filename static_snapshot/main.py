"""CLI entry point."""

import argparse
import sys

from .config import load_config
from .core import StaticSite
from .db import Database
from .logger import setup_logger
from .models import RequestContext


def show_status(site: StaticSite):
    """Display generation and asset statistics."""
    status = site.status()
    print("\n" + "=" * 60)
    print("  STATIC SITE STATUS")
    print("=" * 60)
    print(f"{'Static Generation':<22} {'Enabled' if status['enabled'] else 'Disabled'}")
    print(f"{'Static Files':<22} {status['static_files']}")
    print(f"{'Total Size':<22} {status['total_size']}")
    print(f"{'Pending Assets':<22} {status['pending_assets']}")
    print(f"{'Downloaded Assets':<22} {status['downloaded_assets']}")
    print(f"{'Static Directory':<22} {status['static_dir']}")
    print(f"{'Assets Directory':<22} {status['assets_dir']}")
    print()


def run_process(site: StaticSite, batch_size=None, drain_all=False):
    pending = len(site.assets.pending())
    if pending == 0:
        print("No pending assets to process.")
        return

    print(f"Found {pending} pending assets. Processing...")
    if drain_all:
        def progress(result):
            print(f"  batch: {result.processed} downloaded, {result.failed} failed, "
                  f"{result.remaining} remaining")
        total = site.process_all(batch_size, progress=progress)
    else:
        total = site.process_pending_batch(batch_size)

    print(f"Downloaded {total.processed} assets. {total.remaining} remaining.")
    if total.failed:
        print(f"Failed to download {total.failed} assets.")


def run_capture(site: StaticSite, html_file: str, path: str):
    with open(html_file, "r", encoding="utf-8") as f:
        html = f.read()

    if not site.is_enabled():
        print("Static generation is disabled; run 'enable' first.")
        return 1

    page = site.capture(html, path, RequestContext(path=path))
    if page is None:
        print(f"{path}: existing capture is fresh (or capture failed, see log).")
    else:
        print(f"{path}: saved {page.file_path}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Static site snapshot generator")
    parser.add_argument("--config", type=str, default="config.yaml",
                        help="Path to config file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show generation status and asset counts")
    sub.add_parser("enable", help="Enable static generation")
    sub.add_parser("disable", help="Disable static generation")

    p_process = sub.add_parser("process", help="Download pending assets")
    p_process.add_argument("--batch", type=int, default=None, help="Assets per batch")
    p_process.add_argument("--all", action="store_true", help="Keep going until the queue is empty")

    p_clear = sub.add_parser("clear", help="Delete all captured pages and assets")
    p_clear.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    p_zip = sub.add_parser("zip", help="Export the static site as a ZIP file")
    p_zip.add_argument("--output", type=str, default=None, help="Output path for the ZIP file")

    p_capture = sub.add_parser("capture", help="Capture a rendered HTML file for a request path")
    p_capture.add_argument("file", help="Rendered HTML file")
    p_capture.add_argument("--path", type=str, default="/", help="Request path the HTML was rendered for")

    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logger(config.log_dir, config.log_level)
    db = Database(config.db_path)
    site = StaticSite(config, db)

    try:
        if args.command == "status":
            show_status(site)
        elif args.command == "enable":
            site.enable()
            print("Static generation enabled.")
        elif args.command == "disable":
            site.disable()
            print("Static generation disabled.")
        elif args.command == "process":
            run_process(site, args.batch, args.all)
        elif args.command == "clear":
            if not args.yes:
                answer = input("Delete all static files and assets? [y/N] ")
                if answer.strip().lower() != "y":
                    print("Aborted.")
                    return 1
            if not site.clear_all():
                print("Some files could not be deleted, see log.")
                return 1
            print("All static files cleared.")
        elif args.command == "zip":
            path = site.create_archive(args.output)
            if not path:
                print("ZIP creation failed, see log.")
                return 1
            print(f"ZIP file created: {path}")
        elif args.command == "capture":
            return run_capture(site, args.file, args.path)
    finally:
        site.close()
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
