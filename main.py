import argparse
import sys
from pathlib import Path

import feedparser

# --- Configuration (Loads env vars, sets up logging, defines constants) ---
from config import (
    logger, STORAGE_BASE_URL, FEED_ID, FEED_TITLE, FEED_FILE_NAME,
    STORE_DIR, PRESERVE_PUBLISHED, PUBLISH_MAX_ATTEMPTS
)

# --- Core Components ---
from gallery import GalleryFeedMerger
from feed_store import LocalFeedStore, ConcurrentUpdateError, publish_package
from vsix_package import PackageError


def build_parser():
    parser = argparse.ArgumentParser(description="Publish VSIX packages to a static Visual Studio gallery Atom feed.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    publish = subparsers.add_parser("publish", help="Add or update packages in the gallery feed.")
    publish.add_argument("vsix", nargs="+", help="Path(s) to the .vsix package(s) to publish.")
    publish.add_argument("--blob_name", type=str, default=None, help="Stored name of the package without extension (default: the file name without .vsix). Only valid with a single package.")
    publish.add_argument("--store_dir", type=str, default=STORE_DIR, help=f"Directory holding the feed, packages and icons (default: {STORE_DIR}).")
    publish.add_argument("--base_url", type=str, default=STORAGE_BASE_URL, help="Base URL the store directory is served from (can also be set via STORAGE_BASE_URL env var).")
    publish.add_argument("--feed_id", type=str, default=FEED_ID, help=f"Atom feed id (default: {FEED_ID}).")
    publish.add_argument("--feed_title", type=str, default=FEED_TITLE, help=f"Atom feed title (default: {FEED_TITLE}).")
    publish.add_argument("--feed_name", type=str, default=FEED_FILE_NAME, help=f"File name of the feed inside the store (default: {FEED_FILE_NAME}).")
    publish.add_argument("--preserve_published", default=PRESERVE_PUBLISHED, action=argparse.BooleanOptionalAction, help="Keep the original published time when a package is republished (can also be set via PRESERVE_PUBLISHED env var).")

    list_cmd = subparsers.add_parser("list", help="Show the entries of the gallery feed.")
    list_cmd.add_argument("--store_dir", type=str, default=STORE_DIR, help=f"Directory holding the feed (default: {STORE_DIR}).")
    list_cmd.add_argument("--feed_name", type=str, default=FEED_FILE_NAME, help=f"File name of the feed inside the store (default: {FEED_FILE_NAME}).")
    return parser


def run_publish(args):
    if not args.base_url:
        logger.error("A base URL must be provided either via the STORAGE_BASE_URL environment variable or the --base_url command-line argument.")
        return 1
    if args.blob_name and len(args.vsix) > 1:
        logger.error("--blob_name can only be used when publishing a single package.")
        return 1

    gallery = GalleryFeedMerger(
        args.base_url,
        feed_id=args.feed_id,
        feed_title=args.feed_title,
        preserve_published=args.preserve_published,
    )
    store = LocalFeedStore(args.store_dir, feed_name=args.feed_name)
    logger.info(f"Publishing {len(args.vsix)} package(s) to {store.feed_path} (links under {gallery.storage_base_url})")

    for vsix_path in map(Path, args.vsix):
        blob_name = args.blob_name or vsix_path.stem
        try:
            package = vsix_path.read_bytes()
        except OSError as e:
            logger.error(f"Could not read package {vsix_path}: {e}")
            return 1

        try:
            update = publish_package(store, gallery, package, blob_name, max_attempts=PUBLISH_MAX_ATTEMPTS)
        except PackageError as e:
            logger.error(f"Invalid package {vsix_path}: {e}")
            return 1
        except ConcurrentUpdateError as e:
            logger.error(f"{e}")
            return 1

        if update.skipped:
            logger.warning(f"Skipped {vsix_path}: no extension manifest found.")
            continue
        store.write_blob(f"{blob_name}.vsix", package)
    return 0


def run_list(args):
    feed_path = Path(args.store_dir) / args.feed_name
    if not feed_path.exists():
        logger.error(f"No gallery feed found at {feed_path}.")
        return 1

    parsed = feedparser.parse(feed_path.read_bytes())
    if parsed.bozo:
        logger.warning(f"Gallery feed {feed_path} may be malformed. Bozo reason: {parsed.bozo_exception}.")

    print(f"{parsed.feed.get('title', '')} ({len(parsed.entries)} entries)")
    for entry in parsed.entries:
        print(f"  {entry.get('id', '')}\t{entry.get('title', '')}\t{entry.get('updated', '')}\t{entry.get('link', '')}")
    return 0


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "publish":
        return run_publish(args)
    return run_list(args)


if __name__ == "__main__":
    sys.exit(main())
